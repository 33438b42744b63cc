"""Merge freshly fetched remote records into the items table"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session

from tracker.models.item import EXTERNAL_COLUMNS, ItemKind, TrackedItem
from tracker.services.gitcode_client import RemoteItem

logger = logging.getLogger(__name__)

IDENTITY_COLUMNS = ("kind", "repo_full_name", "external_key")

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass(frozen=True)
class ExternalRecord:
    """Identity plus remote-owned attributes of one item"""

    kind: str
    repo_full_name: str
    external_key: str
    title: str
    state: str = ""
    url: str = ""
    author: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_remote(cls, kind: ItemKind, repo_full_name: str, item: RemoteItem) -> "ExternalRecord":
        return cls(
            kind=ItemKind(kind).value,
            repo_full_name=repo_full_name,
            external_key=item.key,
            title=item.title,
            state=item.state,
            url=item.url,
            author=item.author,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    @property
    def identity(self) -> tuple:
        return (self.kind, self.repo_full_name, self.external_key)

    def is_valid(self) -> bool:
        return all(
            (value or "").strip()
            for value in (self.kind, self.repo_full_name, self.external_key, self.title)
        )


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return _UPSERT_DIALECTS[dialect]
    except KeyError:
        raise ArgumentError(f"Upsert is not supported for dialect '{dialect}'") from None


def upsert_external(
    db: Session, records: Iterable[ExternalRecord], *, now: Optional[datetime] = None
) -> int:
    """Insert unseen items and refresh the external columns of known ones.

    The whole batch is one transaction: on any storage error it is rolled
    back and the error re-raised. Overlay columns of existing rows are never
    part of the UPDATE, and new rows get their overlay defaults. Invalid
    records (blank kind, repository, key or title) are skipped.

    Returns the number of distinct rows written, which may be lower than
    the number of records passed in.
    """
    synced_at = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(tzinfo=None)

    # Last occurrence wins when a batch repeats an identity.
    rows: Dict[tuple, dict] = {}
    skipped = 0
    for record in records:
        if not record.is_valid():
            skipped += 1
            continue
        row = asdict(record)
        row["last_synced_at"] = synced_at
        rows[record.identity] = row

    if skipped:
        logger.warning(f"Skipped {skipped} invalid record(s) during upsert")
    if not rows:
        return 0

    insert = _insert_for(db)
    stmt = insert(TrackedItem.__table__)
    update_columns = EXTERNAL_COLUMNS + ("last_synced_at",)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(IDENTITY_COLUMNS),
        set_={name: stmt.excluded[name] for name in update_columns},
    )

    try:
        db.execute(stmt, list(rows.values()))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Upsert of {len(rows)} item(s) failed and was rolled back: {e}")
        raise

    logger.debug(f"Upserted {len(rows)} item(s)")
    return len(rows)
