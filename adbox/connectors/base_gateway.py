"""AdBox — Abstract Remote Platform Gateway."""

from abc import ABC, abstractmethod
from typing import List, Optional

from adbox.models.snapshot_models import (
    AdAccountSnapshot,
    AdSetSnapshot,
    AdSnapshot,
    CampaignSnapshot,
    ConversationSnapshot,
    MessageSnapshot,
    SendResult,
)


class RemotePlatformGateway(ABC):
    """Narrow view of the social platform the sync engine depends on.

    Every call may fail, be rate limited, or return stale/partial data.
    Implementations raise on transport failure; callers decide what to skip.
    """

    # ── Inbox ──

    @abstractmethod
    async def list_conversations(self, page_id: str) -> List[ConversationSnapshot]:
        ...

    @abstractmethod
    async def list_messages(
        self, conversation_id: str, page_id: str
    ) -> List[MessageSnapshot]:
        """Messages of one conversation, oldest first."""
        ...

    @abstractmethod
    async def send_message(
        self, page_id: str, recipient_id: str, text: str
    ) -> SendResult:
        ...

    @abstractmethod
    async def get_user_name(self, page_id: str, user_id: str) -> Optional[str]:
        """Profile name of a participant as seen by the page, if obtainable."""
        ...

    # ── Ads ──

    @abstractmethod
    async def list_ad_accounts(self) -> List[AdAccountSnapshot]:
        ...

    @abstractmethod
    async def list_campaigns(self, ad_account_id: str) -> List[CampaignSnapshot]:
        ...

    @abstractmethod
    async def list_ad_sets(self, ad_account_id: str) -> List[AdSetSnapshot]:
        ...

    @abstractmethod
    async def list_ads(self, ad_account_id: str) -> List[AdSnapshot]:
        ...

    async def close(self) -> None:
        """Release transport resources."""
