"""Sync management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from tracker.config import Settings, get_app_settings
from tracker.models.base import get_db
from tracker.models import SyncLog
from tracker.models.sync_log import SyncStage, SyncStatus
from tracker.services.gitcode_client import GitCodeClient
from tracker.services.sync_service import ClientFactory, MissingCredentialError, SyncService

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncLogResponse(BaseModel):
    id: int
    repo_full_name: str
    status: SyncStatus
    stage: Optional[SyncStage] = None
    fetched: int
    upserted: int
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


def get_client_factory() -> ClientFactory:
    """Factory for the remote client used by sync runs"""
    return GitCodeClient.from_settings


@router.post("")
def trigger_sync(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Fetch and upsert issues and pull requests of every configured repository"""
    sync_service = SyncService(db, settings, client_factory)
    try:
        result = sync_service.run()
    except MissingCredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))

    status_code = 200
    if result.failures:
        fetch_failed = any(r.stage == SyncStage.FETCH for r in result.failures)
        status_code = 502 if fetch_failed else 500
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    limit: int = 100,
    repo: str = None,
    db: Session = Depends(get_db)
):
    """List sync logs"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
    if repo:
        query = query.filter(SyncLog.repo_full_name == repo)
    logs = query.limit(limit).all()
    return logs
