"""AdBox — Change Detector.

Diffs two snapshots of the same ad scope (one ad account) and emits semantic
change records. Pure: no I/O, inputs are not mutated.

Output order is fixed: created, status_changed, updated (each in fresh
snapshot order), then deleted (in previous snapshot order).
"""

from typing import Any, Dict, Iterable, List, Optional

from adbox.core.metric_registry import SIGNIFICANT_METRICS
from adbox.models.event_models import AdChange, ChangeAction, FieldChange


def _get(entity: Any, field: str) -> Any:
    if isinstance(entity, dict):
        return entity.get(field)
    return getattr(entity, field, None)


def _status(entity: Any) -> Optional[str]:
    """Effective status wins over the user-set status."""
    for field in ("effective_status", "effectiveStatus", "status"):
        value = _get(entity, field)
        if value:
            return value
    return None


def _keyed(entities: Iterable[Any]) -> Dict[str, Any]:
    keyed: Dict[str, Any] = {}
    for entity in entities:
        key = _get(entity, "id")
        if key:
            keyed[str(key)] = entity
    return keyed


def _field_changes(old: Any, new: Any, fields: List[str]) -> Dict[str, FieldChange]:
    changes: Dict[str, FieldChange] = {}
    for field in fields:
        before, after = _get(old, field), _get(new, field)
        if before != after:
            changes[field] = FieldChange(old=before, new=after)
    return changes


def detect_ad_changes(
    previous: Iterable[Any],
    fresh: Iterable[Any],
    entity_type: str = "ad",
    fields: Optional[List[str]] = None,
) -> List[AdChange]:
    """Compare previous vs fresh snapshots; entities may be dicts or models."""
    fields = fields or SIGNIFICANT_METRICS
    old_map = _keyed(previous)
    new_map = _keyed(fresh)

    created: List[AdChange] = []
    status_changed: List[AdChange] = []
    updated: List[AdChange] = []
    deleted: List[AdChange] = []

    for key, new in new_map.items():
        old = old_map.get(key)
        name = _get(new, "name") or ""
        if old is None:
            created.append(
                AdChange(
                    type=entity_type,
                    action=ChangeAction.CREATED,
                    id=key,
                    name=name,
                    new_status=_status(new),
                )
            )
            continue

        old_status, new_status = _status(old), _status(new)
        if old_status != new_status:
            # Takes precedence over metric diffs for this cycle
            status_changed.append(
                AdChange(
                    type=entity_type,
                    action=ChangeAction.STATUS_CHANGED,
                    id=key,
                    name=name,
                    old_status=old_status,
                    new_status=new_status,
                )
            )
            continue

        changes = _field_changes(old, new, fields)
        if changes:
            updated.append(
                AdChange(
                    type=entity_type,
                    action=ChangeAction.UPDATED,
                    id=key,
                    name=name,
                    old_status=old_status,
                    new_status=new_status,
                    changes=changes,
                )
            )

    for key, old in old_map.items():
        if key not in new_map:
            deleted.append(
                AdChange(
                    type=entity_type,
                    action=ChangeAction.DELETED,
                    id=key,
                    name=_get(old, "name") or "",
                    old_status=_status(old),
                )
            )

    return created + status_changed + updated + deleted
