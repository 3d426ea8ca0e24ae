"""AdBox — Shared FastAPI dependencies."""

from typing import List, Optional

from fastapi import HTTPException

from adbox.sync.events import EventRegistry, ad_events, message_events
from adbox.sync.pipeline import GatewayFactory, meta_gateway_factory


def get_gateway_factory() -> GatewayFactory:
    """Dependency — builds the platform gateway for a tenant."""
    return meta_gateway_factory


def split_ids(raw: Optional[str], required: bool = False, name: str = "ids") -> List[str]:
    """Parse a comma-separated id list from a query string."""
    ids = [part.strip() for part in (raw or "").split(",") if part.strip()]
    if required and not ids:
        raise HTTPException(status_code=400, detail=f"Missing {name} parameter")
    return ids


def get_message_events() -> EventRegistry:
    return message_events


def get_ad_events() -> EventRegistry:
    return ad_events
