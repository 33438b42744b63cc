"""Read side: item snapshots with derived fields, listing and summaries"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from tracker.models.item import ItemKind, TrackedItem
from tracker.services.overdue import effective_due, overdue_days, parse_timestamp

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ItemView:
    """Detached snapshot of an item including its derived overdue days"""

    kind: str
    repo_full_name: str
    external_key: str
    title: str
    state: str
    url: str
    author: str
    created_at: str
    updated_at: str
    assignee: str
    assignee_group: str
    note: str
    estimated_resolve_at: str
    sync_internal: bool
    priority: int
    due_at: str
    overdue_days: int

    @classmethod
    def from_row(cls, row: TrackedItem, now: datetime) -> "ItemView":
        return cls(
            kind=row.kind,
            repo_full_name=row.repo_full_name,
            external_key=row.external_key,
            title=row.title,
            state=row.state or "",
            url=row.url or "",
            author=row.author or "",
            created_at=row.created_at or "",
            updated_at=row.updated_at or "",
            assignee=row.assignee or "",
            assignee_group=row.assignee_group or "",
            note=row.note or "",
            estimated_resolve_at=row.estimated_resolve_at or "",
            sync_internal=bool(row.sync_internal),
            priority=row.priority,
            due_at=row.due_at or "",
            overdue_days=overdue_days(row.due_at, row.created_at, now),
        )

    @property
    def is_open(self) -> bool:
        return self.state.strip().lower() == "open"

    @property
    def effective_due(self) -> Optional[datetime]:
        return effective_due(self.due_at, self.created_at)


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _listing_key(view: ItemView) -> tuple:
    due = view.effective_due
    updated = parse_timestamp(view.updated_at) or _EPOCH
    return (
        due is not None,
        due or _EPOCH,
        updated,
        (view.kind, view.repo_full_name, view.external_key),
    )


def list_items(
    db: Session,
    *,
    kind: Optional[str] = None,
    repo_full_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[ItemView]:
    """List items, newest effective due date first.

    Items without any usable date sort last. Ties fall back to the remote
    update time (newest first) and finally to the identity triple.
    """
    query = db.query(TrackedItem)
    if kind:
        query = query.filter(TrackedItem.kind == ItemKind(kind).value)
    if repo_full_name:
        query = query.filter(TrackedItem.repo_full_name == repo_full_name)

    now = _now(now)
    views = [ItemView.from_row(row, now) for row in query.all()]
    views.sort(key=_listing_key, reverse=True)
    return views


def summarize(items: List[ItemView]) -> Dict[str, Any]:
    """Counts for the dashboard: totals, open and overdue, overall and per repository"""
    per_repo: Dict[str, Dict[str, Any]] = {}
    totals = {"total": 0, "open": 0, "overdue": 0, "issues": 0, "pull_requests": 0}
    for item in items:
        repo = per_repo.setdefault(
            item.repo_full_name,
            {"repo_full_name": item.repo_full_name, "total": 0, "open": 0, "overdue": 0},
        )
        for bucket in (totals, repo):
            bucket["total"] += 1
            if item.is_open:
                bucket["open"] += 1
            if item.overdue_days > 0:
                bucket["overdue"] += 1
        if item.kind == ItemKind.PULL_REQUEST.value:
            totals["pull_requests"] += 1
        else:
            totals["issues"] += 1
    return {**totals, "repositories": sorted(per_repo.values(), key=lambda r: r["repo_full_name"])}
