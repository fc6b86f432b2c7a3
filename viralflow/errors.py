"""
Error taxonomy for the pipeline.

- ValidationError: bad input rejected before any I/O, never retried
- ConnectivityError: DNS / timeout / transport failure talking to a platform
- AuthError: OAuth token exchange or refresh rejected
- GenerationParseError: LLM returned non-JSON or schema-mismatched JSON
- LLMError: the LLM provider call failed before returning any text

Expected remote rejections (rate limits, invalid media, permissions) are
NOT exceptions: adapters return PublishResult(success=False).
"""
from __future__ import annotations


class ViralflowError(Exception):
    """Base class for all pipeline errors."""
    pass


class ValidationError(ViralflowError):
    """Raised when input is rejected locally before any network call."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class PlatformError(ViralflowError):
    """Raised by platform adapters for failures the caller cannot branch on."""

    def __init__(self, platform: str, message: str):
        super().__init__(f"[{platform}] {message}")
        self.platform = platform
        self.message = message


class ConnectivityError(PlatformError):
    """Network-level failure (DNS, timeout, connection reset)."""
    pass


class AuthError(PlatformError):
    """Token exchange / refresh was rejected or app credentials are missing."""
    pass


class RefreshNotSupported(AuthError):
    """Platform has no refresh-token grant."""
    pass


class GenerationParseError(ViralflowError):
    """LLM output could not be parsed into the expected JSON shape."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class LLMError(ViralflowError):
    """The LLM provider call itself failed (auth, quota, transport)."""
    pass
