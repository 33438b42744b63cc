"""Tracked item model"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from tracker.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ItemKind(str, enum.Enum):
    """Kind of remote item"""
    ISSUE = "issue"
    PULL_REQUEST = "pr"


class Priority(int, enum.Enum):
    """Triage priority; lower is more urgent"""
    URGENT = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3

    @classmethod
    def normalize(cls, value) -> int:
        """Return value if it is a known priority, else LOW."""
        try:
            return cls(int(value)).value
        except (TypeError, ValueError):
            return cls.LOW.value


# Columns owned by the remote source; sync overwrites exactly these.
EXTERNAL_COLUMNS = ("title", "state", "url", "author", "created_at", "updated_at")

# Columns owned by local triage; only a patch changes them.
OVERLAY_COLUMNS = (
    "assignee",
    "assignee_group",
    "note",
    "estimated_resolve_at",
    "sync_internal",
    "priority",
    "due_at",
)


class TrackedItem(Base):
    """Issue or pull request mirrored from the remote, plus its local overlay"""

    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("kind", "repo_full_name", "external_key", name="uq_items_identity"),
        Index("idx_items_kind", "kind"),
        Index("idx_items_repo", "repo_full_name"),
        Index("idx_items_due", "due_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    kind = Column(String, nullable=False)  # issue|pr
    repo_full_name = Column(String, nullable=False)  # owner/repo
    external_key = Column(String, nullable=False)  # remote number, as text

    # External attributes (timestamps kept as the remote sent them)
    title = Column(String, nullable=False)
    state = Column(String, nullable=False, default="")
    url = Column(String, nullable=False, default="")
    author = Column(String, nullable=False, default="")
    created_at = Column(String, nullable=False, default="")
    updated_at = Column(String, nullable=False, default="")
    last_synced_at = Column(DateTime, default=utcnow)

    # Overlay attributes
    assignee = Column(String, nullable=False, default="", server_default="")
    assignee_group = Column(String, nullable=False, default="", server_default="")
    note = Column(Text, nullable=False, default="", server_default="")
    estimated_resolve_at = Column(String, nullable=False, default="", server_default="")
    sync_internal = Column(Boolean, nullable=False, default=False, server_default="0")
    priority = Column(Integer, nullable=False, default=Priority.LOW.value, server_default="3")
    due_at = Column(String, nullable=False, default="", server_default="")

    @property
    def identity(self) -> tuple:
        return (self.kind, self.repo_full_name, self.external_key)

    def __repr__(self):
        return f"<TrackedItem({self.kind} {self.repo_full_name}#{self.external_key})>"
