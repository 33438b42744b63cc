"""Item synchronization service"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tracker.config import Settings
from tracker.models import ItemKind, SyncLog
from tracker.models.sync_log import SyncStage, SyncStatus
from tracker.services.gitcode_client import GitCodeClient, RemoteSourceError
from tracker.services.item_merge import ExternalRecord, upsert_external

logger = logging.getLogger(__name__)


class MissingCredentialError(RuntimeError):
    """Sync requested without a remote access token configured."""


@dataclass
class RepositoryReport:
    """Outcome of syncing one repository"""

    repo_full_name: str
    fetched: int = 0
    upserted: int = 0
    status: SyncStatus = SyncStatus.SUCCESS
    stage: Optional[SyncStage] = None
    error: Optional[str] = None

    def fail(self, stage: SyncStage, error: Exception):
        self.status = SyncStatus.FAILED
        self.stage = stage
        self.error = str(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo": self.repo_full_name,
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "fetched": self.fetched,
            "upserted": self.upserted,
            "error": self.error,
        }


@dataclass
class SyncResult:
    """Aggregate outcome of a sync run.

    Repositories are independent: a failed one contributes nothing, while rows
    committed for the others stay. ``status`` is "partial" when some but not
    all repositories failed, so a partial failure never reads as success.
    """

    repositories: List[RepositoryReport] = field(default_factory=list)

    @property
    def fetched(self) -> int:
        return sum(r.fetched for r in self.repositories)

    @property
    def upserted(self) -> int:
        return sum(r.upserted for r in self.repositories)

    @property
    def failures(self) -> List[RepositoryReport]:
        return [r for r in self.repositories if r.status == SyncStatus.FAILED]

    @property
    def status(self) -> str:
        failed = len(self.failures)
        if failed == 0:
            return "success"
        if failed == len(self.repositories):
            return "failed"
        return "partial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "fetched": self.fetched,
            "upserted": self.upserted,
            "repositories": [r.to_dict() for r in self.repositories],
        }


ClientFactory = Callable[[Settings], GitCodeClient]


class SyncService:
    """Service for mirroring remote issues and pull requests into the items table"""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        client_factory: Optional[ClientFactory] = None,
        *,
        retry_base_delay_s: float = 0.5,
    ):
        self.db = db
        self.settings = settings
        self.client_factory = client_factory or GitCodeClient.from_settings
        self.retry_base_delay_s = retry_base_delay_s

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def split_full_name(full_name: str) -> Tuple[str, str]:
        owner, _, repo = full_name.partition("/")
        return owner, repo

    def _fetch_repository(self, client: GitCodeClient, full_name: str) -> List[ExternalRecord]:
        """Fetch issues and pull requests; both must succeed."""
        owner, repo = self.split_full_name(full_name)
        records = [
            ExternalRecord.from_remote(ItemKind.ISSUE, full_name, item)
            for item in client.list_issues(owner, repo)
        ]
        records.extend(
            ExternalRecord.from_remote(ItemKind.PULL_REQUEST, full_name, item)
            for item in client.list_pulls(owner, repo)
        )
        return records

    def _fetch_with_retries(self, client: GitCodeClient, full_name: str) -> List[ExternalRecord]:
        """Refetch the whole repository with exponential backoff on transient failures."""
        max_attempts = max(1, self.settings.sync_fetch_attempts)
        attempt = 1
        while True:
            try:
                return self._fetch_repository(client, full_name)
            except RemoteSourceError as e:
                if attempt >= max_attempts or not e.transient:
                    raise
                delay = self.retry_base_delay_s * (2 ** (attempt - 1))
                logger.warning(
                    f"Transient fetch failure for {full_name} (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                time.sleep(delay)
                attempt += 1

    def sync_repository(self, client: GitCodeClient, full_name: str) -> RepositoryReport:
        """Fetch then upsert one repository in its own transaction"""
        report = RepositoryReport(repo_full_name=full_name)
        logger.info(f"Starting sync for repository: {full_name}")

        try:
            records = self._fetch_with_retries(client, full_name)
        except RemoteSourceError as e:
            logger.error(f"Fetch failed for {full_name}: {e}")
            report.fail(SyncStage.FETCH, e)
            self._log_sync(report)
            return report
        report.fetched = len(records)

        try:
            report.upserted = upsert_external(self.db, records, now=self._utcnow())
        except SQLAlchemyError as e:
            logger.error(f"Write failed for {full_name}: {e}")
            report.fail(SyncStage.WRITE, e)
            self._log_sync(report)
            return report

        if report.upserted != report.fetched:
            logger.warning(
                f"{full_name}: fetched {report.fetched} but wrote {report.upserted} item(s)"
            )
        logger.info(f"Sync completed for {full_name}: fetched={report.fetched} upserted={report.upserted}")
        self._log_sync(report)
        return report

    def run(self) -> SyncResult:
        """Sync every configured repository, one after another"""
        if not self.settings.gitcode_token:
            raise MissingCredentialError("missing GITCODE_TOKEN")

        repositories = self.settings.repositories
        logger.info(f"Starting sync of {len(repositories)} repositories")
        result = SyncResult()

        client = self.client_factory(self.settings)
        try:
            for full_name in repositories:
                result.repositories.append(self.sync_repository(client, full_name))
        finally:
            client.close()

        log = logger.info if result.status == "success" else logger.error
        log(f"Sync run finished ({result.status}): fetched={result.fetched} upserted={result.upserted}")
        return result

    def _log_sync(self, report: RepositoryReport):
        """Persist the repository outcome; never masks the sync result"""
        entry = SyncLog(
            repo_full_name=report.repo_full_name,
            status=report.status,
            stage=report.stage,
            fetched=report.fetched,
            upserted=report.upserted,
            message=report.error,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to persist sync log for {report.repo_full_name}: {e}")
