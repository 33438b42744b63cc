"""Optional built-in auth for the API.

Requests may authenticate with HTTP Basic credentials or, for scripts and the
board UI, with ``Authorization: Bearer <api_token>``.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


@dataclass(frozen=True)
class BasicAuthCredentials:
    username: str
    password: str


def _parse_basic_auth_header(header_value: str) -> BasicAuthCredentials | None:
    """Parse an Authorization header containing HTTP Basic auth."""
    scheme, _, param = (header_value or "").partition(" ")
    if scheme.lower() != "basic" or not param:
        return None

    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    username, sep, password = decoded.partition(":")
    if sep != ":":
        return None
    return BasicAuthCredentials(username=username, password=password)


def _parse_bearer_token(header_value: str) -> str | None:
    scheme, _, token = (header_value or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


class ApiAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests without valid Basic credentials or bearer token.

    Health endpoints and CORS preflight requests pass through.
    """

    def __init__(
        self,
        app,
        *,
        username: str | None = None,
        password: str | None = None,
        api_token: str | None = None,
        allow_paths: set[str] | None = None,
        realm: str = "Tracker",
    ):
        super().__init__(app)
        if not api_token and not (username and password):
            raise ValueError("ApiAuthMiddleware needs username/password or an api_token")
        self._username = username
        self._password = password
        self._api_token = api_token
        self._allow_paths = allow_paths or {"/health", "/api/health"}
        self._realm = realm

    def _unauthorized(self) -> Response:
        return JSONResponse(
            {"error": "unauthorized"},
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{self._realm}", charset="UTF-8"'},
        )

    def _authorized(self, header_value: str) -> bool:
        if self._api_token:
            token = _parse_bearer_token(header_value)
            if token is not None:
                return secrets.compare_digest(token, self._api_token)

        if self._username and self._password:
            creds = _parse_basic_auth_header(header_value)
            if creds is not None:
                ok_user = secrets.compare_digest(creds.username, self._username)
                ok_pass = secrets.compare_digest(creds.password, self._password)
                return ok_user and ok_pass
        return False

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in self._allow_paths:
            return await call_next(request)

        if not self._authorized(request.headers.get("Authorization", "")):
            return self._unauthorized()
        return await call_next(request)
