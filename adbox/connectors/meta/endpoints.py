"""AdBox — Meta API Endpoints.

Raw fetch functions for each Graph API resource the sync engine consumes.
Each returns the untouched JSON rows; ``transformer`` turns them into snapshots.
"""

from typing import Any, Dict, List

from adbox.config import settings
from adbox.connectors.meta.client import MetaAPIError, MetaClient, META_BASE
from adbox.core.logging import get_logger

logger = get_logger("meta.endpoints")

# Error raised when the page has not accepted the Page Contact terms
LABELS_TOS_ERROR = (2, 2018344)

CONVERSATION_FIELDS = (
    "snippet,updated_time,participants{id,name,email,username,link},"
    "message_count,unread_count,link"
)
MESSAGE_FIELDS = "message,from,created_time,attachments,sticker"

INSIGHT_FIELDS = (
    "impressions,reach,spend,clicks,actions,"
    "video_avg_time_watched_actions,video_p25_watched_actions,"
    "video_p50_watched_actions,video_p75_watched_actions,"
    "video_p95_watched_actions,video_p100_watched_actions,video_play_actions"
)

ACCOUNT_FIELDS = (
    "id,account_id,name,currency,account_status,timezone_name,timezone_offset_hours_utc"
)
CAMPAIGN_FIELDS = (
    "id,name,status,effective_status,objective,daily_budget,lifetime_budget,"
    "budget_remaining,start_time,stop_time,"
    "insights.date_preset(maximum){impressions,reach,spend,clicks,actions}"
)
ADSET_FIELDS = (
    "id,name,campaign_id,status,effective_status,daily_budget,lifetime_budget,"
    "budget_remaining,optimization_goal,billing_event,"
    "insights.date_preset(maximum){impressions,reach,spend,clicks,actions}"
)
AD_FIELDS = (
    "id,name,adset_id,campaign_id,status,effective_status,"
    "adset{daily_budget,lifetime_budget},"
    "creative{id,thumbnail_url,image_url,object_story_spec,actor_id},"
    f"insights.date_preset(maximum){{{INSIGHT_FIELDS}}}"
)


class MetaEndpoints:
    """Fetch raw data from the Graph API."""

    def __init__(self, client: MetaClient):
        self.client = client

    # ── Messenger ──

    async def fetch_conversations(
        self, page_id: str, page_token: str, include_labels: bool = True
    ) -> List[Dict[str, Any]]:
        """Latest conversations of a page; falls back to no labels on TOS errors."""
        url = f"{META_BASE}/{page_id}/conversations"
        fields = CONVERSATION_FIELDS + (",labels" if include_labels else "")
        params = {"fields": fields, "platform": "messenger", "limit": 20}
        try:
            data = await self.client._paginated_get(
                url, params, max_pages=1, token=page_token
            )
        except MetaAPIError as e:
            if include_labels and (e.error_code, e.error_subcode) == LABELS_TOS_ERROR:
                logger.warning(
                    "Page Contact TOS not accepted. Retrying without labels.",
                    extra={"page_id": page_id},
                )
                return await self.fetch_conversations(page_id, page_token, False)
            raise
        logger.info(
            f"Fetched {len(data)} conversations for page {page_id}",
            extra={"page_id": page_id},
        )
        return data

    async def fetch_messages(
        self, conversation_id: str, page_token: str
    ) -> List[Dict[str, Any]]:
        """Latest messages of a conversation, newest first as the API returns them."""
        url = f"{META_BASE}/{conversation_id}/messages"
        params = {"fields": MESSAGE_FIELDS, "limit": settings.messages_per_conversation}
        return await self.client._paginated_get(
            url, params, max_pages=1, token=page_token
        )

    async def send_message(
        self, page_token: str, recipient_id: str, text: str
    ) -> Dict[str, Any]:
        url = f"{META_BASE}/me/messages"
        body = {
            "recipient": {"id": recipient_id},
            "message": {"text": text},
            "messaging_type": "RESPONSE",
        }
        return await self.client._request("POST", url, json=body, token=page_token)

    async def fetch_user_profile(self, user_id: str, page_token: str) -> Dict[str, Any]:
        url = f"{META_BASE}/{user_id}"
        return await self.client._request(
            "GET", url, {"fields": "name"}, token=page_token
        )

    # ── Marketing ──

    async def fetch_ad_accounts(self) -> List[Dict[str, Any]]:
        url = f"{META_BASE}/me/adaccounts"
        return await self.client._paginated_get(
            url, {"fields": ACCOUNT_FIELDS, "limit": 100}
        )

    async def fetch_campaigns(self, ad_account_id: str) -> List[Dict[str, Any]]:
        """Fetch campaign structure with lifetime insights."""
        url = f"{META_BASE}/{ad_account_id}/campaigns"
        params = {"fields": CAMPAIGN_FIELDS, "limit": 500}
        return await self.client._paginated_get(url, params)

    async def fetch_adsets(self, ad_account_id: str) -> List[Dict[str, Any]]:
        """Fetch ad set structure with lifetime insights."""
        url = f"{META_BASE}/{ad_account_id}/adsets"
        params = {"fields": ADSET_FIELDS, "limit": 500}
        return await self.client._paginated_get(url, params)

    async def fetch_ads(self, ad_account_id: str) -> List[Dict[str, Any]]:
        """Fetch ads with creative and lifetime insights."""
        url = f"{META_BASE}/{ad_account_id}/ads"
        params = {"fields": AD_FIELDS, "limit": 500}
        return await self.client._paginated_get(url, params)
