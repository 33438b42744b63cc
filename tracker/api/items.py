"""Tracked item endpoints"""
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from tracker.config import Settings, get_app_settings
from tracker.models import ItemKind
from tracker.models.base import get_db
from tracker.services.item_query import list_items
from tracker.services.notifier import InternalTrackerNotifier
from tracker.services.overlay import (
    ItemNotFoundError,
    OverlayPatch,
    OverlayValidationError,
    apply_patch,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/items", tags=["items"])


class ItemResponse(BaseModel):
    kind: str
    repo_full_name: str
    external_key: str = Field(alias="key")
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

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class ItemListResponse(BaseModel):
    items: List[ItemResponse]


class ItemPatchRequest(BaseModel):
    """Sparse overlay patch; omitted (or null) fields are left unchanged"""

    assignee: Optional[str] = None
    assignee_group: Optional[str] = None
    note: Optional[str] = None
    estimated_resolve_at: Optional[str] = None
    sync_internal: Optional[bool] = None
    priority: Optional[int] = None
    due_at: Optional[str] = None
    # Required when turning sync_internal off; folded into the note.
    reason: Optional[str] = None

    class Config:
        populate_by_name = True
        alias_generator = to_camel


@router.get("", response_model=ItemListResponse)
def list_tracked_items(
    kind: Optional[ItemKind] = None,
    repo: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List items with freshly computed overdue days"""
    items = list_items(db, kind=kind.value if kind else None, repo_full_name=repo or None)
    return {"items": items}


@router.patch("/{kind}/{owner}/{repo}/{key}", response_model=ItemResponse)
def patch_item(
    kind: ItemKind,
    owner: str,
    repo: str,
    key: str,
    body: ItemPatchRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Update the local overlay fields of one item"""
    patch = OverlayPatch.from_mapping(body.model_dump(exclude_unset=True))
    try:
        item = apply_patch(db, kind.value, f"{owner}/{repo}", key, patch)
    except ItemNotFoundError:
        raise HTTPException(status_code=404, detail="not found")
    except OverlayValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if item.sync_internal:
        notifier = InternalTrackerNotifier.from_settings(settings)
        if notifier.enabled:
            background_tasks.add_task(notifier.notify, item)
    return item
