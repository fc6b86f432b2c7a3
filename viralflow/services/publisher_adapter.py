"""
Unified publishing layer for destination platforms.

Each platform adapter implements the `PlatformAdapter` interface:
    publish(request) -> PublishResult
    exchange_code(code, redirect_uri) -> TokenPair
    refresh_token(refresh_token) -> TokenPair

Expected remote rejections are returned as PublishResult(success=False);
transport failures raise ConnectivityError and token rejections raise
AuthError.
"""
from __future__ import annotations

import abc
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from viralflow.errors import AuthError, ConnectivityError, RefreshNotSupported
from viralflow.schemas import Platform, PublishRequest
from viralflow.services.credentials import ClientCredentials
from viralflow.settings import get_settings

logger = logging.getLogger(__name__)


# ── Retry classification ─────────────────────────────────────

RETRYABLE_INDICATORS = (
    "timeout", "timed out", "429", "too many requests",
    "502", "503", "504", "connection", "reset by peer",
    "temporary", "temporarily", "service unavailable", "rate limit",
    "try again", "network",
)


def _is_retryable_error(error: str | None) -> bool:
    """Determine if an error message indicates a retryable failure."""
    if not error:
        return False
    lower = error.lower()
    return any(ind in lower for ind in RETRYABLE_INDICATORS)


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


# ── Credential sanitization ──────────────────────────────────

_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE), "Basic ***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"refresh_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "refresh_token=***"),
    (re.compile(r"fb_exchange_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "fb_exchange_token=***"),
    (re.compile(r"client_secret=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "client_secret=***"),
    # Generic long tokens (40+ chars)
    (re.compile(r"[A-Za-z0-9\-_]{40,}"), "***TOKEN***"),
]

SENSITIVE_KEYS = frozenset({
    "access_token", "refresh_token", "client_secret", "fb_exchange_token",
    "authorization", "cookie", "cookies",
})


def _sanitize(text: str | None) -> str | None:
    """Strip credentials and tokens from error messages / response text."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _sanitize_dict(d: dict | None) -> dict | None:
    """Remove sensitive keys from a response dict before persisting."""
    if not d:
        return d
    cleaned: dict[str, Any] = {}
    for k, v in d.items():
        if k.lower() in SENSITIVE_KEYS:
            cleaned[k] = "***"
        elif isinstance(v, dict):
            cleaned[k] = _sanitize_dict(v)
        elif isinstance(v, str) and len(v) > 60:
            cleaned[k] = v[:8] + "***"
        else:
            cleaned[k] = v
    return cleaned


# ── Caption assembly ─────────────────────────────────────────

def normalize_hashtag(tag: str) -> str:
    tag = tag.strip()
    if not tag:
        return ""
    return tag if tag.startswith("#") else f"#{tag}"


def build_full_text(content: str, hashtags: list[str] | None = None) -> str:
    """Body, a blank line, then space-separated `#tags`."""
    tags = [t for t in (normalize_hashtag(h) for h in hashtags or []) if t]
    if not tags:
        return content.strip()
    return f"{content.strip()}\n\n{' '.join(tags)}".strip()


def truncate_with_ellipsis(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 1:
        return text[:max_length]
    return text[: max_length - 1] + "…"


# ── Result types ─────────────────────────────────────────────

@dataclass
class PublishResult:
    """Unified result of a publish attempt."""
    success: bool
    id: str | None = None
    error: str | None = None
    url: str | None = None
    platform: str | None = None
    retryable: bool = False
    raw_response: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "id": self.id,
            "error": self.error,
            "url": self.url,
            "platform": self.platform,
            "retryable": self.retryable,
        }


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "bearer"
    scope: str | None = None

    @classmethod
    def from_response(cls, data: dict, *, fallback_refresh: str | None = None, default_expires_in: int | None = None) -> "TokenPair":
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_in=int(expires_in) if expires_in is not None else default_expires_in,
            token_type=data.get("token_type") or "bearer",
            scope=data.get("scope"),
        )

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        if self.expires_in is None:
            return None
        return (now or datetime.now(timezone.utc)) + timedelta(seconds=self.expires_in)


def _remote_message(resp: httpx.Response) -> str:
    """Platform-provided error message, taken verbatim where the body has one."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500] or resp.reason_phrase
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        for key in ("message", "error_description"):
            if body.get(key):
                return str(body[key])
        if isinstance(err, str):
            return err
    return resp.text[:500]


# ── Abstract adapter ─────────────────────────────────────────

class PlatformAdapter(abc.ABC):
    """Base class for platform-specific publishers.

    HTTP goes through a fresh `httpx.AsyncClient` per operation; tests inject
    an `httpx.MockTransport` through `transport`.
    """

    platform: Platform
    supports_refresh: bool = False
    requires_media: bool = False
    max_length: int = 3000

    def __init__(
        self,
        *,
        client_credentials: ClientCredentials | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self.client_credentials = client_credentials
        self.transport = transport
        self.timeout = timeout if timeout is not None else get_settings().http_timeout_sec

    @property
    def name(self) -> str:
        return self.platform.value

    # -- contract --

    @abc.abstractmethod
    async def publish(self, request: PublishRequest) -> PublishResult:
        """Post content and return the platform's id for it."""
        ...

    @abc.abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> TokenPair:
        """Trade an OAuth authorization code for tokens."""
        ...

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        raise RefreshNotSupported(self.name, f"{self.platform.display_name} does not support token refresh")

    async def fallback_image_url(self, access_token: str, target_id: str | None = None) -> str | None:
        """Image to use when a post that requires media has none."""
        return None

    # -- helpers --

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            kind = "timeout" if isinstance(exc, httpx.TimeoutException) else "transport error"
            raise ConnectivityError(self.name, _sanitize(f"{kind} calling {method} {url}: {exc}")) from exc

    def _json(self, resp: httpx.Response) -> dict:
        """Body of a 2xx response as a dict; `{}` when it is empty or not a JSON object.

        A success answered by a proxy or HTML page must not turn into an
        exception: the post may already be live and has to be recorded.
        """
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            logger.warning(
                f"[{self.name}] Non-JSON {resp.status_code} response from {resp.request.method} "
                f"{resp.request.url.host}{resp.request.url.path}: {_sanitize(resp.text[:200])}"
            )
            return {}
        return data if isinstance(data, dict) else {}

    def _require_app_credentials(self) -> ClientCredentials:
        if self.client_credentials is None:
            raise AuthError(self.name, f"{self.platform.display_name} app credentials are not configured")
        return self.client_credentials

    async def _token_request(self, method: str, url: str, what: str, **kwargs) -> dict:
        """Run an OAuth token call; any non-2xx raises AuthError."""
        async with self._client() as client:
            resp = await self._send(client, method, url, **kwargs)
        if resp.status_code >= 400:
            raise AuthError(self.name, _sanitize(f"{what} failed ({resp.status_code}): {_remote_message(resp)}"))
        data = self._json(resp)
        if not data.get("access_token"):
            raise AuthError(self.name, f"{what} returned no access_token")
        return data

    def _rejected(self, account_id: str, resp: httpx.Response, step: str) -> PublishResult:
        msg = _sanitize(f"{self.platform.display_name} {step} failed ({resp.status_code}): {_remote_message(resp)}")
        self._error(account_id, msg)
        return PublishResult(
            success=False,
            platform=self.name,
            error=msg,
            retryable=_is_retryable_status(resp.status_code) or _is_retryable_error(msg),
        )

    def _fail(self, account_id: str, msg: str) -> PublishResult:
        self._error(account_id, msg)
        return PublishResult(success=False, platform=self.name, error=msg, retryable=False)

    def _caption(self, request: PublishRequest) -> str:
        return truncate_with_ellipsis(build_full_text(request.content, request.hashtags), self.max_length)

    def _log(self, account_id: str, msg: str):
        logger.info(f"[{self.name}][account={account_id}] {msg}")

    def _error(self, account_id: str, msg: str):
        logger.error(f"[{self.name}][account={account_id}] {msg}")
