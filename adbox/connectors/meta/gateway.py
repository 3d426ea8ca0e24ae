"""AdBox — Meta implementation of the Remote Platform Gateway."""

from typing import Dict, List, Optional

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.connectors.meta import transformer
from adbox.connectors.meta.client import MetaAPIError, MetaClient
from adbox.connectors.meta.endpoints import MetaEndpoints
from adbox.core.logging import get_logger
from adbox.models.snapshot_models import (
    AdAccountSnapshot,
    AdSetSnapshot,
    AdSnapshot,
    CampaignSnapshot,
    ConversationSnapshot,
    MessageSnapshot,
    SendResult,
)

logger = get_logger("meta.gateway")


class MetaGateway(RemotePlatformGateway):
    """Graph API gateway for one tenant's user token.

    Page tokens are taken from ``page_tokens`` when known and otherwise
    exchanged once per gateway instance.
    """

    def __init__(
        self,
        access_token: str | None = None,
        page_tokens: Dict[str, str] | None = None,
    ):
        self.client = MetaClient(access_token)
        self.endpoints = MetaEndpoints(self.client)
        self._page_tokens: Dict[str, str] = {
            k: v for k, v in (page_tokens or {}).items() if v
        }

    async def _page_token(self, page_id: str) -> str:
        token = self._page_tokens.get(page_id)
        if token is None:
            token = await self.client.get_page_token(page_id)
            self._page_tokens[page_id] = token
        return token

    # ── Inbox ──

    async def list_conversations(self, page_id: str) -> List[ConversationSnapshot]:
        token = await self._page_token(page_id)
        rows = await self.endpoints.fetch_conversations(page_id, token)
        return transformer.transform_rows(rows, transformer.to_conversation, "conversation")

    async def list_messages(
        self, conversation_id: str, page_id: str
    ) -> List[MessageSnapshot]:
        token = await self._page_token(page_id)
        rows = await self.endpoints.fetch_messages(conversation_id, token)
        messages = transformer.transform_rows(rows, transformer.to_message, "message")
        # API returns newest first
        messages.reverse()
        return messages

    async def send_message(
        self, page_id: str, recipient_id: str, text: str
    ) -> SendResult:
        token = await self._page_token(page_id)
        result = await self.endpoints.send_message(token, recipient_id, text)
        return SendResult(
            message_id=result.get("message_id"),
            recipient_id=result.get("recipient_id"),
        )

    async def get_user_name(self, page_id: str, user_id: str) -> Optional[str]:
        token = await self._page_token(page_id)
        try:
            profile = await self.endpoints.fetch_user_profile(user_id, token)
        except MetaAPIError as e:
            # Profiles are often hidden by privacy settings
            logger.warning(f"Profile lookup for {user_id} failed: {e}")
            return None
        return profile.get("name") or None

    # ── Ads ──

    async def list_ad_accounts(self) -> List[AdAccountSnapshot]:
        rows = await self.endpoints.fetch_ad_accounts()
        return transformer.transform_rows(rows, transformer.to_ad_account, "ad account")

    async def list_campaigns(self, ad_account_id: str) -> List[CampaignSnapshot]:
        rows = await self.endpoints.fetch_campaigns(ad_account_id)
        return transformer.transform_rows(rows, transformer.to_campaign, "campaign")

    async def list_ad_sets(self, ad_account_id: str) -> List[AdSetSnapshot]:
        rows = await self.endpoints.fetch_adsets(ad_account_id)
        return transformer.transform_rows(rows, transformer.to_ad_set, "ad set")

    async def list_ads(self, ad_account_id: str) -> List[AdSnapshot]:
        rows = await self.endpoints.fetch_ads(ad_account_id)
        return transformer.transform_rows(rows, transformer.to_ad, "ad")

    async def close(self) -> None:
        await self.client.close()
