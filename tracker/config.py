"""Application configuration"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from starlette.requests import Request

DEFAULT_REPOS = (
    "yuanrong,yuanrong-functionsystem,yuanrong-datasystem,ray-adapter,"
    "yuanrong-frontend,yuanrong-serve,spring-adapter"
)


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./tracker.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    # Single origin allowed to call the API from a browser (the board UI).
    cors_origin: str = "http://localhost:5173"

    # Remote source
    gitcode_base_url: str = "https://api.gitcode.com"
    gitcode_token: str | None = None
    gitcode_owner: str = "openeuler"
    # Comma-separated repository names. Bare names are resolved against
    # `gitcode_owner`; "owner/name" entries keep their own owner.
    gitcode_repos: str = DEFAULT_REPOS
    request_timeout_seconds: float = 20.0
    page_size: int = 100
    max_pages: int = 50

    # Sync
    # Attempts per repository fetch; >1 retries transient remote failures.
    sync_fetch_attempts: int = 1
    # 0 disables the periodic job; sync then only runs on request.
    sync_interval_minutes: int = 0

    # Best-effort notification target for items flagged sync-to-internal.
    internal_tracker_url: str | None = None

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, API routes require HTTP Basic credentials or the bearer
    # api_token, except for the health endpoints.
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None
    api_token: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def repositories(self) -> List[str]:
        """Configured repositories as "owner/name" full names, in order, deduplicated."""
        out: List[str] = []
        for raw in (self.gitcode_repos or "").split(","):
            name = raw.strip().strip("/")
            if not name:
                continue
            full_name = name if "/" in name else f"{self.gitcode_owner}/{name}"
            if full_name not in out:
                out.append(full_name)
        return out


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once from the process environment."""
    return Settings()


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was created with"""
    return request.app.state.settings
