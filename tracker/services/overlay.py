"""Overlay patch engine: partial updates of the locally owned item fields"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tracker.models.item import OVERLAY_COLUMNS, Priority, TrackedItem
from tracker.services.item_query import ItemView
from tracker.services.overdue import parse_timestamp

logger = logging.getLogger(__name__)

REASON_TAG = "[unsynced reason]"
PATCH_FIELDS = OVERLAY_COLUMNS + ("reason",)

_STRING_FIELDS = ("assignee", "assignee_group", "note", "estimated_resolve_at", "reason")


class ItemNotFoundError(LookupError):
    """No item matches the identity triple."""


class OverlayValidationError(ValueError):
    """Patch rejected by an overlay business rule."""


class OverlayPatch:
    """Sparse overlay changes.

    Only fields present in the patch are applied; an absent field leaves the
    stored value unchanged, while an empty string is an explicit "clear".
    ``None`` values count as absent. ``reason`` is never stored on its own,
    it only annotates the note when syncing to internal is off.
    """

    def __init__(self, changes: Optional[Mapping[str, Any]] = None, **fields: Any):
        merged = dict(changes or {})
        merged.update(fields)
        unknown = set(merged) - set(PATCH_FIELDS)
        if unknown:
            raise TypeError(f"Unknown overlay field(s): {', '.join(sorted(unknown))}")
        self._changes: Dict[str, Any] = {k: v for k, v in merged.items() if v is not None}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OverlayPatch":
        """Build a patch from loose input, ignoring unrecognized keys."""
        return cls({k: v for k, v in data.items() if k in PATCH_FIELDS})

    def __contains__(self, name: str) -> bool:
        return name in self._changes

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    def get(self, name: str, default: Any = None) -> Any:
        return self._changes.get(name, default)

    def __repr__(self):
        return f"OverlayPatch({self._changes!r})"


def _coerce(name: str, value: Any) -> Any:
    if name in _STRING_FIELDS:
        return value if isinstance(value, str) else str(value)
    if name == "sync_internal":
        return bool(value)
    if name == "priority":
        return Priority.normalize(value)
    if name == "due_at":
        text = value.strip() if isinstance(value, str) else str(value)
        if text and parse_timestamp(text) is None:
            raise OverlayValidationError(f"due date '{text}' is not a valid date")
        return text
    return value


def _with_reason(note: str, reason: str) -> str:
    line = f"{REASON_TAG} {reason}"
    return f"{note}\n{line}" if note else line


def resolve_changes(row: TrackedItem, patch: OverlayPatch) -> Dict[str, Any]:
    """Column values to write for ``patch`` applied on top of ``row``."""
    values = {name: _coerce(name, patch.get(name)) for name in patch}
    reason = values.pop("reason", "").strip()
    changes = {name: value for name, value in values.items() if name in OVERLAY_COLUMNS}

    sync_internal = changes.get("sync_internal", bool(row.sync_internal))
    if not sync_internal:
        note = changes.get("note", row.note or "")
        if reason:
            changes["note"] = _with_reason(note, reason)
        elif changes.get("sync_internal") is False and REASON_TAG not in note:
            raise OverlayValidationError("A reason is required when sync to internal is turned off")
    return changes


def apply_patch(
    db: Session,
    kind: str,
    repo_full_name: str,
    external_key: str,
    patch: OverlayPatch,
    *,
    now: Optional[datetime] = None,
) -> ItemView:
    """Apply ``patch`` to one item's overlay and return the merged item.

    The row is read and written in one transaction (row-locked where the
    database supports it). Raises ItemNotFoundError when the identity is
    unknown and OverlayValidationError when a rule rejects the patch; in both
    cases nothing is written.
    """
    row = (
        db.query(TrackedItem)
        .filter(
            TrackedItem.kind == kind,
            TrackedItem.repo_full_name == repo_full_name,
            TrackedItem.external_key == external_key,
        )
        .with_for_update()
        .one_or_none()
    )
    if row is None:
        db.rollback()
        raise ItemNotFoundError(f"{kind} {repo_full_name}#{external_key} not found")

    try:
        changes = resolve_changes(row, patch)
    except OverlayValidationError:
        db.rollback()
        raise

    for name, value in changes.items():
        setattr(row, name, value)

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to patch {kind} {repo_full_name}#{external_key}: {e}")
        raise

    logger.info(f"Patched {kind} {repo_full_name}#{external_key}: {sorted(changes)}")
    return ItemView.from_row(row, now or datetime.now(timezone.utc))
