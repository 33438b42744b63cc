"""Sync log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime, timezone
import enum
from tracker.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncStatus(str, enum.Enum):
    """Sync status enumeration"""
    SUCCESS = "success"
    FAILED = "failed"


class SyncStage(str, enum.Enum):
    """Stage of a repository sync that failed"""
    FETCH = "fetch"
    WRITE = "write"


class SyncLog(Base):
    """Outcome of one repository within a sync run"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    repo_full_name = Column(String, nullable=False, index=True)

    # Sync details
    status = Column(Enum(SyncStatus), nullable=False)
    stage = Column(Enum(SyncStage), nullable=True)  # set only on failure
    fetched = Column(Integer, nullable=False, default=0)
    upserted = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=_utcnow, index=True)

    def __repr__(self):
        return f"<SyncLog(repo={self.repo_full_name}, status={self.status}, stage={self.stage})>"
