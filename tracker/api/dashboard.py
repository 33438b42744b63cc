"""Dashboard and statistics endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy import desc
from sqlalchemy.orm import Session

from tracker.models import SyncLog
from tracker.models.base import get_db
from tracker.services.item_query import list_items, summarize

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_dashboard_stats(db: Session = Depends(get_db)):
    """Get dashboard statistics"""
    stats = summarize(list_items(db))

    # Latest sync outcome per repository
    for repo_stats in stats["repositories"]:
        last_log = (
            db.query(SyncLog)
            .filter(SyncLog.repo_full_name == repo_stats["repo_full_name"])
            .order_by(desc(SyncLog.created_at), desc(SyncLog.id))
            .first()
        )
        repo_stats["last_sync_at"] = last_log.created_at if last_log else None
        repo_stats["last_status"] = last_log.status if last_log else None
        repo_stats["last_message"] = last_log.message if last_log else None

    return stats
