"""AdBox — Remote Snapshot Schemas.

What the gateway hands the sync engine. Every field is optional or defaulted:
the platform may omit anything, and partial data must never fail a record.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


# ─────────────────────────────────────────────
# INBOX SNAPSHOTS
# ─────────────────────────────────────────────


class Participant(BaseModel):
    id: str = ""
    name: str = ""


class ConversationSnapshot(BaseModel):
    """One row of ``/{page_id}/conversations``."""

    id: str
    snippet: str = ""
    updated_time: Optional[datetime] = None
    unread_count: int = 0
    participants: List[Participant] = []
    ad_id: Optional[str] = None
    link: Optional[str] = None


class AttachmentSnapshot(BaseModel):
    type: str = "file"  # image | sticker | video | audio | file | like | fallback
    url: Optional[str] = None
    sticker_id: Optional[str] = None


class MessageSnapshot(BaseModel):
    """One row of ``/{conversation_id}/messages``."""

    id: str
    sender_id: str = ""
    sender_name: str = ""
    text: Optional[str] = None
    attachments: List[AttachmentSnapshot] = []
    sticker: Optional[str] = None
    created_time: Optional[datetime] = None


class SendResult(BaseModel):
    message_id: Optional[str] = None
    recipient_id: Optional[str] = None


# ─────────────────────────────────────────────
# AD SNAPSHOTS
# ─────────────────────────────────────────────


class AdMetrics(BaseModel):
    """Lifetime performance bundle shared by every ad level."""

    impressions: int = 0
    reach: int = 0
    spend: float = 0.0
    clicks: int = 0
    results: int = 0


class AdAccountSnapshot(BaseModel):
    id: str
    account_id: str = ""
    name: str = ""
    currency: Optional[str] = None
    account_status: Optional[int] = None
    timezone_name: Optional[str] = None
    timezone_offset_hours_utc: Optional[float] = None


class CampaignSnapshot(AdMetrics):
    id: str
    name: str = ""
    status: Optional[str] = None
    effective_status: Optional[str] = None
    objective: Optional[str] = None
    daily_budget: Optional[float] = None
    lifetime_budget: Optional[float] = None
    budget_remaining: Optional[float] = None
    start_time: Optional[datetime] = None
    stop_time: Optional[datetime] = None


class AdSetSnapshot(AdMetrics):
    id: str
    campaign_id: str = ""
    name: str = ""
    status: Optional[str] = None
    effective_status: Optional[str] = None
    daily_budget: Optional[float] = None
    lifetime_budget: Optional[float] = None
    budget_remaining: Optional[float] = None
    optimization_goal: Optional[str] = None
    billing_event: Optional[str] = None


class AdSnapshot(AdMetrics):
    id: str
    ad_set_id: str = ""
    campaign_id: str = ""
    name: str = ""
    status: Optional[str] = None
    effective_status: Optional[str] = None
    thumbnail_url: Optional[str] = None
    page_id: Optional[str] = None
    budget: Optional[float] = None
    post_engagements: int = 0
    video_plays: int = 0
    video_p25: int = 0
    video_p50: int = 0
    video_p75: int = 0
    video_p95: int = 0
    video_p100: int = 0
    video_avg_time: float = 0.0
