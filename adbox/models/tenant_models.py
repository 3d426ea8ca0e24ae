"""AdBox — Tenant Models.

A tenant is an operator account owning Pages and Ad Accounts.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(primary_key=True)
    name: str = Field(default="")
    access_token: Optional[str] = Field(
        default=None, description="User token with ads_read / pages_messaging"
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Page(SQLModel, table=True):
    """A Facebook Page whose inbox is synchronized."""

    __tablename__ = "pages"

    id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True, foreign_key="tenants.id")
    name: str = Field(default="")
    access_token: Optional[str] = Field(default=None)
