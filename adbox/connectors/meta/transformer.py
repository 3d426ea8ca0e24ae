"""AdBox — Meta Raw → Snapshot Transformer.

Converts raw Graph API rows into the snapshot schemas the sync engine
consumes. Missing fields fall back to defaults instead of failing the row.
"""

import re
from typing import Any, Dict, List, Optional

from adbox.core.clock import parse_timestamp
from adbox.core.logging import get_logger
from adbox.models.snapshot_models import (
    AdAccountSnapshot,
    AdSetSnapshot,
    AdSnapshot,
    AttachmentSnapshot,
    CampaignSnapshot,
    ConversationSnapshot,
    MessageSnapshot,
    Participant,
)

logger = get_logger("meta.transformer")

AD_ID_IN_LINK = re.compile(r"ad_id=(\d+)")

# Action types counted as "results", first match wins
RESULT_ACTIONS = ("omni_purchase", "purchase", "lead", "link_click")
CAMPAIGN_RESULT_ACTION = "onsite_conversion.messaging_first_reply"
ENGAGEMENT_ACTIONS = ("post_engagement", "page_engagement")


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _budget(value: Any) -> Optional[float]:
    """Graph API budgets are in minor currency units."""
    if value in (None, "", 0, "0"):
        return None
    return _safe_float(value) / 100


def _first_insight(row: Dict[str, Any]) -> Dict[str, Any]:
    insights = row.get("insights") or {}
    data = insights.get("data") or []
    return data[0] if data else {}


def _action_value(insight: Dict[str, Any], action_type: str) -> int:
    for action in insight.get("actions") or []:
        if action.get("action_type") == action_type:
            return _safe_int(action.get("value", 0))
    return 0


def _first_action(insight: Dict[str, Any], action_types: tuple) -> int:
    for action_type in action_types:
        value = _action_value(insight, action_type)
        if value:
            return value
    return 0


def _video_metric(insight: Dict[str, Any], key: str) -> float:
    for metric in insight.get(key) or []:
        if metric.get("action_type") == "video_view":
            return _safe_float(metric.get("value", 0))
    return 0.0


def _base_metrics(insight: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "impressions": _safe_int(insight.get("impressions")),
        "reach": _safe_int(insight.get("reach")),
        "spend": _safe_float(insight.get("spend")),
        "clicks": _safe_int(insight.get("clicks")),
    }


# ── Messenger ──


def extract_ad_id(row: Dict[str, Any]) -> Optional[str]:
    """Ad attribution from ``ad_id.<id>`` labels, falling back to the link."""
    labels = (row.get("labels") or {}).get("data") or []
    for label in labels:
        name = label.get("name") or ""
        if name.startswith("ad_id."):
            parts = name.split(".")
            if len(parts) > 1 and parts[1]:
                return parts[1]
    link = row.get("link") or ""
    match = AD_ID_IN_LINK.search(link)
    return match.group(1) if match else None


def to_conversation(row: Dict[str, Any]) -> ConversationSnapshot:
    participants = [
        Participant(id=str(p.get("id") or ""), name=p.get("name") or "")
        for p in (row.get("participants") or {}).get("data") or []
    ]
    return ConversationSnapshot(
        id=row["id"],
        snippet=row.get("snippet") or "",
        updated_time=parse_timestamp(row.get("updated_time")),
        unread_count=_safe_int(row.get("unread_count")),
        participants=participants,
        ad_id=extract_ad_id(row),
        link=row.get("link"),
    )


def to_attachment(raw: Dict[str, Any]) -> AttachmentSnapshot:
    """Graph API and webhook attachments share the ``type`` + ``payload`` shape."""
    payload = raw.get("payload") or {}
    kind = raw.get("type")
    url = payload.get("url")
    if not kind:
        # /messages attachments carry mime types and nested media instead
        mime = raw.get("mime_type") or ""
        if raw.get("image_data") or mime.startswith("image/"):
            kind = "image"
            url = url or (raw.get("image_data") or {}).get("url")
        elif raw.get("video_data") or mime.startswith("video/"):
            kind = "video"
            url = url or (raw.get("video_data") or {}).get("url")
        elif mime.startswith("audio/"):
            kind = "audio"
        else:
            kind = "file"
        url = url or raw.get("file_url")
    sticker_id = payload.get("sticker_id")
    return AttachmentSnapshot(
        type=kind,
        url=url,
        sticker_id=str(sticker_id) if sticker_id else None,
    )


def to_message(row: Dict[str, Any]) -> MessageSnapshot:
    sender = row.get("from") or {}
    attachments = (row.get("attachments") or {}).get("data") or []
    return MessageSnapshot(
        id=row["id"],
        sender_id=str(sender.get("id") or ""),
        sender_name=sender.get("name") or "",
        text=row.get("message") or None,
        attachments=[to_attachment(a) for a in attachments],
        sticker=row.get("sticker") or None,
        created_time=parse_timestamp(row.get("created_time")),
    )


# ── Marketing ──


def to_ad_account(row: Dict[str, Any]) -> AdAccountSnapshot:
    return AdAccountSnapshot(
        id=row["id"],
        account_id=str(row.get("account_id") or ""),
        name=row.get("name") or "",
        currency=row.get("currency"),
        account_status=row.get("account_status"),
        timezone_name=row.get("timezone_name"),
        timezone_offset_hours_utc=row.get("timezone_offset_hours_utc"),
    )


def to_campaign(row: Dict[str, Any]) -> CampaignSnapshot:
    insight = _first_insight(row)
    return CampaignSnapshot(
        id=row["id"],
        name=row.get("name") or "",
        status=row.get("status"),
        effective_status=row.get("effective_status"),
        objective=row.get("objective"),
        daily_budget=_budget(row.get("daily_budget")),
        lifetime_budget=_budget(row.get("lifetime_budget")),
        budget_remaining=_budget(row.get("budget_remaining")),
        start_time=parse_timestamp(row.get("start_time")),
        stop_time=parse_timestamp(row.get("stop_time")),
        results=_action_value(insight, CAMPAIGN_RESULT_ACTION),
        **_base_metrics(insight),
    )


def to_ad_set(row: Dict[str, Any]) -> AdSetSnapshot:
    insight = _first_insight(row)
    return AdSetSnapshot(
        id=row["id"],
        campaign_id=str(row.get("campaign_id") or ""),
        name=row.get("name") or "",
        status=row.get("status"),
        effective_status=row.get("effective_status"),
        daily_budget=_budget(row.get("daily_budget")),
        lifetime_budget=_budget(row.get("lifetime_budget")),
        budget_remaining=_budget(row.get("budget_remaining")),
        optimization_goal=row.get("optimization_goal"),
        billing_event=row.get("billing_event"),
        results=_first_action(insight, RESULT_ACTIONS),
        **_base_metrics(insight),
    )


def _creative_details(creative: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Return (thumbnail_url, page_id) from an ad creative."""
    spec = creative.get("object_story_spec") or {}
    page_id = creative.get("actor_id") or spec.get("page_id") or None
    thumbnail = creative.get("thumbnail_url") or creative.get("image_url")
    if not thumbnail and spec:
        link_data = spec.get("link_data") or {}
        thumbnail = (
            link_data.get("picture")
            or (spec.get("photo_data") or {}).get("url")
            or (spec.get("video_data") or {}).get("image_url")
        )
    return thumbnail or None, page_id


def to_ad(row: Dict[str, Any]) -> AdSnapshot:
    insight = _first_insight(row)
    adset = row.get("adset") or {}
    thumbnail, page_id = _creative_details(row.get("creative") or {})
    return AdSnapshot(
        id=row["id"],
        ad_set_id=str(row.get("adset_id") or ""),
        campaign_id=str(row.get("campaign_id") or ""),
        name=row.get("name") or "",
        status=row.get("status"),
        effective_status=row.get("effective_status"),
        thumbnail_url=thumbnail,
        page_id=page_id,
        budget=_budget(adset.get("daily_budget") or adset.get("lifetime_budget")),
        results=_first_action(insight, RESULT_ACTIONS),
        post_engagements=_first_action(insight, ENGAGEMENT_ACTIONS),
        video_plays=int(_video_metric(insight, "video_play_actions")),
        video_p25=int(_video_metric(insight, "video_p25_watched_actions")),
        video_p50=int(_video_metric(insight, "video_p50_watched_actions")),
        video_p75=int(_video_metric(insight, "video_p75_watched_actions")),
        video_p95=int(_video_metric(insight, "video_p95_watched_actions")),
        video_p100=int(_video_metric(insight, "video_p100_watched_actions")),
        video_avg_time=_video_metric(insight, "video_avg_time_watched_actions"),
        **_base_metrics(insight),
    )


def transform_rows(rows: List[Dict[str, Any]], parse, label: str) -> list:
    """Apply ``parse`` to each row, skipping (and logging) malformed ones."""
    parsed = []
    for row in rows:
        try:
            parsed.append(parse(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {label} row {row.get('id', '?')}: {e}")
    return parsed
