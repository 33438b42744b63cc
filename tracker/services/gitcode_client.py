"""GitCode API client: paged, schema-tolerant item source"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx

from tracker.models.item import ItemKind

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (429, 500, 502, 503, 504)

# Ordered candidates per logical field; the first present, non-empty value wins.
# New API shapes are supported by extending these lists.
FIELD_CANDIDATES: Dict[str, Tuple[str, ...]] = {
    "key": ("number", "iid", "id"),
    "title": ("title",),
    "state": ("state",),
    "url": ("html_url", "web_url", "url"),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}
AUTHOR_OBJECT_KEYS: Tuple[str, ...] = ("user", "author")
AUTHOR_NAME_KEYS: Tuple[str, ...] = ("login", "username", "name")


class RemoteSourceError(RuntimeError):
    """Raised when the remote API cannot be reached or returns an unusable page."""

    def __init__(self, message: str, status_code: Optional[int] = None, *, transient: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


@dataclass(frozen=True)
class RemoteItem:
    """Remote issue or pull request, normalized to plain strings."""

    key: str
    title: str = ""
    state: str = ""
    url: str = ""
    author: str = ""
    created_at: str = ""
    updated_at: str = ""


def _to_text(value: Any) -> str:
    """Render scalar JSON values as text; anything else is treated as absent."""
    if isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return ""


def first_present(record: Mapping[str, Any], keys: Tuple[str, ...]) -> str:
    """Return the first non-empty scalar found under ``keys``, else ""."""
    for key in keys:
        if key in record:
            text = _to_text(record[key])
            if text != "":
                return text
    return ""


def _extract_author(record: Mapping[str, Any]) -> str:
    for obj_key in AUTHOR_OBJECT_KEYS:
        obj = record.get(obj_key)
        if isinstance(obj, Mapping):
            name = first_present(obj, AUTHOR_NAME_KEYS)
            if name:
                return name
    return first_present(record, ("author",))


def normalize_record(raw: Any) -> Optional[RemoteItem]:
    """Normalize one raw remote record, or None when it has no usable key."""
    if not isinstance(raw, Mapping):
        return None
    key = first_present(raw, FIELD_CANDIDATES["key"])
    if not key:
        return None
    return RemoteItem(
        key=key,
        title=first_present(raw, FIELD_CANDIDATES["title"]),
        state=first_present(raw, FIELD_CANDIDATES["state"]),
        url=first_present(raw, FIELD_CANDIDATES["url"]),
        author=_extract_author(raw),
        created_at=first_present(raw, FIELD_CANDIDATES["created_at"]),
        updated_at=first_present(raw, FIELD_CANDIDATES["updated_at"]),
    )


class GitCodeClient:
    """Read-only client for the GitCode v5 issue and pull request lists"""

    KIND_PATHS = {
        ItemKind.ISSUE: "issues",
        ItemKind.PULL_REQUEST: "pulls",
    }

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 20.0,
        page_size: int = 100,
        max_pages: int = 50,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize client; no request is made until items are listed"""
        self.base_url = (base_url or "").rstrip("/")
        self.page_size = page_size
        self.max_pages = max_pages
        # GitCode accepts both a bearer token and the GitLab-style PRIVATE-TOKEN
        # header; send both for compatibility with different deployments.
        self.http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {token}",
                "PRIVATE-TOKEN": token,
            },
        )

    @classmethod
    def from_settings(cls, settings) -> "GitCodeClient":
        return cls(
            settings.gitcode_base_url,
            settings.gitcode_token or "",
            timeout=settings.request_timeout_seconds,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
        )

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _list_path(self, owner: str, repo: str, kind: ItemKind) -> str:
        return (
            f"/api/v5/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
            f"/{self.KIND_PATHS[ItemKind(kind)]}"
        )

    def _get_page(self, path: str, page: int) -> List[Any]:
        """Fetch one page and return its raw records."""
        params = {"state": "all", "per_page": self.page_size, "page": page}
        try:
            response = self.http.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Request failed for {path} page {page}: {e}")
            raise RemoteSourceError(f"request to {path} failed: {e}", transient=True) from e

        if not response.is_success:
            body = response.text.strip()[:500]
            logger.error(f"Non-2xx response for {path} page {page}: {response.status_code} {body}")
            raise RemoteSourceError(
                f"{path}: status={response.status_code} body={body}",
                status_code=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"Failed to decode {path} page {page}: {e}")
            raise RemoteSourceError(f"decode list {path}: {e}", status_code=response.status_code) from e

        if not isinstance(payload, list):
            raise RemoteSourceError(
                f"decode list {path}: expected a JSON array, got {type(payload).__name__}",
                status_code=response.status_code,
            )
        return payload

    def iter_items(self, owner: str, repo: str, kind: ItemKind) -> Iterator[RemoteItem]:
        """Lazily walk pages until an empty page or the page ceiling."""
        path = self._list_path(owner, repo, kind)
        start = time.monotonic()
        total = 0
        for page in range(1, self.max_pages + 1):
            raw_items = self._get_page(path, page)
            if not raw_items:
                logger.debug(f"{path}: page {page} empty")
                break
            kept = 0
            for raw in raw_items:
                item = normalize_record(raw)
                if item is None:
                    continue
                kept += 1
                yield item
            total += kept
            logger.debug(f"{path}: page {page} ok ({kept}/{len(raw_items)} records)")
        else:
            logger.warning(f"{path}: stopped at page ceiling ({self.max_pages})")
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Listed {total} {ItemKind(kind).value} items from {owner}/{repo} in {elapsed_ms}ms")

    def list_issues(self, owner: str, repo: str) -> List[RemoteItem]:
        """Get all issues of a repository"""
        return list(self.iter_items(owner, repo, ItemKind.ISSUE))

    def list_pulls(self, owner: str, repo: str) -> List[RemoteItem]:
        """Get all pull requests of a repository"""
        return list(self.iter_items(owner, repo, ItemKind.PULL_REQUEST))
