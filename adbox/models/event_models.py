"""AdBox — Change & Fan-Out Event Schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ChangeAction(str, Enum):
    """Semantic change kinds, in the order the detector emits them."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    UPDATED = "updated"
    DELETED = "deleted"


class FieldChange(BaseModel):
    old: Any = None
    new: Any = None


class AdChange(BaseModel):
    """One semantic change between two snapshots of an ad scope."""

    type: str = "ad"  # ad | campaign | adset | account
    action: ChangeAction
    id: str
    name: str = ""
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    changes: Dict[str, FieldChange] = {}


class EventType(str, Enum):
    NEW_MESSAGE = "new_message"
    CONVERSATION_UPDATED = "conversation_updated"
    MESSAGES_SYNCED = "messages_synced"
    AD_UPDATED = "ad_updated"
    SYNC_COMPLETED = "sync_completed"


class SyncEvent(BaseModel):
    """Payload pushed through the fan-out registry to viewer sessions."""

    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = {}
