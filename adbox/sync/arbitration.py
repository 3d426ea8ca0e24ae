"""AdBox — Merge Rules for Inbox Reconciliation.

Pure functions deciding the canonical unread count, participant identity,
ad attribution and message text when a fresh snapshot meets stored state.
They never touch the store, so re-running them on the same inputs yields the
same answer.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from adbox.config import Settings, settings
from adbox.core.clock import as_utc
from adbox.models.inbox_models import Conversation
from adbox.models.snapshot_models import AttachmentSnapshot, Participant

DEFAULT_PARTICIPANT_NAME = "Facebook User"

# Names the platform (or older rows) use when the real profile is unknown
PLACEHOLDER_NAMES = frozenset(
    {
        "",
        "Facebook User",
        "User",
        "Customer",
        "Unknown",
        "ลูกค้า",
    }
)

ATTACHMENT_LABELS = {
    "sticker": "[Sticker]",
    "image": "[Image]",
    "video": "[Video]",
    "audio": "[Audio]",
    "file": "[File]",
    "like": "👍",
    "fallback": "👍",
}


@dataclass(frozen=True)
class UnreadRules:
    """Thresholds for unread arbitration.

    ``phantom_window`` drives a best-effort heuristic: two genuinely new,
    textually identical messages inside the window are indistinguishable from
    a platform re-notification and will be suppressed.
    """

    clock_skew: timedelta = timedelta(seconds=5)
    phantom_window: timedelta = timedelta(seconds=120)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "UnreadRules":
        return cls(
            clock_skew=timedelta(seconds=config.unread_clock_skew_seconds),
            phantom_window=timedelta(seconds=config.phantom_window_seconds),
        )


# ── Identity ──


def is_placeholder_name(name: Optional[str]) -> bool:
    return name is None or name.strip() in PLACEHOLDER_NAMES


def resolve_participant(
    participants: List[Participant], page_id: str
) -> Optional[Participant]:
    """The participant who is not the page itself."""
    for participant in participants:
        if participant.id and participant.id != page_id:
            return participant
    return None


def resolve_participant_name(fresh_name: Optional[str], stored_name: Optional[str]) -> str:
    """A placeholder never overwrites a real stored name."""
    if is_placeholder_name(fresh_name):
        if not is_placeholder_name(stored_name):
            return stored_name  # type: ignore[return-value]
        return (stored_name or "").strip() or DEFAULT_PARTICIPANT_NAME
    return fresh_name.strip()  # type: ignore[union-attr]


def resolve_ad_id(fresh_ad_id: Optional[str], stored_ad_id: Optional[str]) -> Optional[str]:
    return fresh_ad_id or stored_ad_id


# ── Unread ──


def arbitrate_unread(
    stored: Optional[Conversation],
    fresh_unread: Optional[int],
    fresh_updated: Optional[datetime],
    fresh_snippet: str,
    rules: UnreadRules,
) -> int:
    """Decide the unread count for a conversation, in rule order.

    1. Read locally at or after the fresh activity (minus clock skew) → 0.
    2. Gateway says unread, we already had 0, the snippet did not change and
       the activity is within ``phantom_window`` of the last read → 0.
    3. Otherwise trust the gateway.
    """
    reported = max(int(fresh_unread or 0), 0)
    if stored is None:
        return reported

    last_read = as_utc(stored.last_read_at)
    updated = as_utc(fresh_updated)

    if last_read is not None and updated is not None:
        if last_read >= updated - rules.clock_skew:
            return 0
        if (
            reported > 0
            and stored.unread_count == 0
            and (stored.snippet or "") == (fresh_snippet or "")
            and updated - last_read < rules.phantom_window
        ):
            return 0

    return reported


# ── Message content ──


def attachment_label(kind: Optional[str]) -> str:
    kind = (kind or "file").lower()
    return ATTACHMENT_LABELS.get(kind, f"[{kind}]")


def normalize_message_content(
    text: Optional[str],
    attachments: List[AttachmentSnapshot],
    sticker: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return ``(content, attachments_json, sticker_url)`` for storage.

    Attachment-only messages get a label derived from the first attachment so
    the inbox always has something to show.
    """
    attachments_json = None
    sticker_url = sticker or None
    if attachments:
        attachments_json = json.dumps([a.model_dump() for a in attachments])
        if sticker_url is None:
            for attachment in attachments:
                if attachment.type == "sticker" and attachment.url:
                    sticker_url = attachment.url
                    break

    content = text if text else None
    if content is None:
        if attachments:
            content = attachment_label(attachments[0].type)
        elif sticker_url:
            content = attachment_label("sticker")
    return content, attachments_json, sticker_url
