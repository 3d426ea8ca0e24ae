"""AdBox — Ad Entity Models (AdAccount → Campaign → AdSet → Ad) and SyncLog."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field


# ─────────────────────────────────────────────
# AD ENTITY TREE: metrics are lifetime values, overwritten each cycle
# ─────────────────────────────────────────────


class AdAccount(SQLModel, table=True):
    """Top-level ad account owned by a tenant."""

    __tablename__ = "ad_accounts"

    id: str = Field(primary_key=True, description="act_<id>")
    tenant_id: str = Field(index=True)
    account_id: str = Field(default="")
    name: str = Field(default="")
    currency: str = Field(default="THB")
    account_status: int = Field(default=1)
    timezone: Optional[str] = Field(default=None)
    timezone_offset: float = Field(default=0)
    total_ads: int = Field(default=0)
    active_ads: int = Field(default=0)
    paused_ads: int = Field(default=0)
    total_spend: float = Field(default=0)
    total_impressions: int = Field(default=0)
    total_reach: int = Field(default=0)
    total_clicks: int = Field(default=0)
    last_sync_at: Optional[datetime] = Field(default=None)


class Campaign(SQLModel, table=True):
    __tablename__ = "campaigns"

    id: str = Field(primary_key=True)
    ad_account_id: str = Field(index=True, foreign_key="ad_accounts.id")
    name: str = Field(default="")
    status: str = Field(default="UNKNOWN")
    effective_status: str = Field(default="UNKNOWN")
    objective: Optional[str] = Field(default=None)
    daily_budget: Optional[float] = Field(default=None)
    lifetime_budget: Optional[float] = Field(default=None)
    budget_remaining: Optional[float] = Field(default=None)
    start_time: Optional[datetime] = Field(default=None)
    stop_time: Optional[datetime] = Field(default=None)
    impressions: int = Field(default=0)
    reach: int = Field(default=0)
    spend: float = Field(default=0)
    clicks: int = Field(default=0)
    results: int = Field(default=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AdSet(SQLModel, table=True):
    __tablename__ = "ad_sets"

    id: str = Field(primary_key=True)
    campaign_id: str = Field(index=True, foreign_key="campaigns.id")
    ad_account_id: str = Field(index=True, foreign_key="ad_accounts.id")
    name: str = Field(default="")
    status: str = Field(default="UNKNOWN")
    effective_status: str = Field(default="UNKNOWN")
    daily_budget: Optional[float] = Field(default=None)
    lifetime_budget: Optional[float] = Field(default=None)
    budget_remaining: Optional[float] = Field(default=None)
    optimization_goal: Optional[str] = Field(default=None)
    billing_event: Optional[str] = Field(default=None)
    impressions: int = Field(default=0)
    reach: int = Field(default=0)
    spend: float = Field(default=0)
    clicks: int = Field(default=0)
    results: int = Field(default=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FacebookAd(SQLModel, table=True):
    """Leaf of the ad tree, including the video funnel counters."""

    __tablename__ = "facebook_ads"

    id: str = Field(primary_key=True)
    ad_set_id: str = Field(index=True, foreign_key="ad_sets.id")
    campaign_id: str = Field(default="", index=True)
    ad_account_id: str = Field(index=True, foreign_key="ad_accounts.id")
    name: str = Field(default="")
    status: str = Field(default="UNKNOWN")
    effective_status: str = Field(default="UNKNOWN")
    thumbnail: Optional[str] = Field(default=None)
    page_id: Optional[str] = Field(default=None)
    budget: Optional[float] = Field(default=None)
    impressions: int = Field(default=0)
    reach: int = Field(default=0)
    spend: float = Field(default=0)
    clicks: int = Field(default=0)
    results: int = Field(default=0)
    post_engagements: int = Field(default=0)
    video_plays: int = Field(default=0)
    video_p25: int = Field(default=0)
    video_p50: int = Field(default=0)
    video_p75: int = Field(default=0)
    video_p95: int = Field(default=0)
    video_p100: int = Field(default=0)
    video_avg_time: float = Field(default=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# SYNC LOG: append-only audit of poll cycles
# ─────────────────────────────────────────────


class SyncStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SyncLog(SQLModel, table=True):
    """One row per sync attempt."""

    __tablename__ = "sync_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    sync_type: str = Field(default="FULL", description="FULL | MANUAL")
    status: SyncStatus = Field(default=SyncStatus.IN_PROGRESS, index=True)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = Field(default=None, index=True)
    conversations_count: int = Field(default=0)
    messages_count: int = Field(default=0)
    ads_count: int = Field(default=0)
    changes_count: int = Field(default=0)
    error: Optional[str] = Field(default=None)
