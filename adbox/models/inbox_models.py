"""AdBox — Inbox Models (Conversations & Messages)."""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class Conversation(SQLModel, table=True):
    """A thread between a Page and one external participant.

    Keyed by the platform conversation id. Webhook-created threads use the
    composite ``{page_id}_{participant_id}`` id until a sync learns the real one.
    Rows are never hard-deleted.
    """

    __tablename__ = "conversations"

    id: str = Field(primary_key=True, description="Platform conversation ID")
    page_id: str = Field(index=True)
    participant_id: Optional[str] = Field(default=None, index=True)
    participant_name: str = Field(default="Facebook User")
    last_message_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
    snippet: str = Field(default="", description="Last message preview text")
    unread_count: int = Field(default=0, ge=0)
    last_read_at: Optional[datetime] = Field(default=None)
    ad_id: Optional[str] = Field(default=None, description="Originating ad, if any")
    facebook_link: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Message(SQLModel, table=True):
    """A single message inside a conversation.

    ``is_pending`` marks an optimistic local send still carrying a temporary
    ``local-…`` id; reconciliation swaps it for the platform id.
    """

    __tablename__ = "messages"

    id: str = Field(primary_key=True, description="Platform message ID (mid)")
    conversation_id: str = Field(index=True)
    sender_id: str = Field(default="unknown", index=True)
    sender_name: str = Field(default="Unknown")
    content: Optional[str] = Field(default=None)
    attachments: Optional[str] = Field(
        default=None, description="JSON list of {type, url, sticker_id}"
    )
    sticker_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
    is_from_page: bool = Field(default=False)
    is_pending: bool = Field(default=False)
