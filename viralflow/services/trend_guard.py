"""
Trend Recency & Version Guard: drops stale topic candidates before
any content generation is paid for.

Two independent, pure checks:
1. Source recency: `now - source_published_at` must not exceed max_age_days.
   A missing timestamp passes (staleness cannot be proven).
2. Version recency: "<Product> [qualifier] <version>" tokens are compared
   against CURRENT_VERSIONS. Only known products with a strictly older
   version are rejected; unknown products and bare product names pass.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from viralflow.schemas import TrendCandidate

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7

# Product name (lowercase) → latest version the niche audience should hear about
CURRENT_VERSIONS: dict[str, str] = {
    "gemini": "2.5",
    "veo": "3",
    "gpt": "4o",
    "claude": "3.5",
    "midjourney": "6",
    "dall-e": "3",
    "stable diffusion": "3",
    "sora": "1",
}

# Words allowed between a product name and its version ("Gemini Flash 2.5")
VERSION_QUALIFIERS = ("flash", "pro", "ultra", "nano", "sonnet", "opus", "haiku", "turbo", "mini")

# Other names a tracked product goes by; versions are still compared against the product's entry
PRODUCT_ALIASES: dict[str, tuple[str, ...]] = {
    "gpt": ("chatgpt",),
}

_QUALIFIER_RE = "|".join(VERSION_QUALIFIERS)
_VERSION_PREFIX_RE = re.compile(r"\d+(?:\.\d+)*")


@dataclass(frozen=True)
class GuardResult:
    is_valid: bool
    reason: str | None = None


@dataclass
class ScreeningReport:
    accepted: list[TrendCandidate] = field(default_factory=list)
    rejected: list[tuple[TrendCandidate, str]] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: datetime | str | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"[trend_guard] Unparseable source_published_at {value!r}, treating as missing")
        return None


def validate_recency(
    published_at: datetime | str | None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    *,
    now: datetime | None = None,
) -> GuardResult:
    """Check that a source is no older than `max_age_days`."""
    published = _parse_timestamp(published_at)
    if published is None:
        return GuardResult(True)

    now = _as_utc(now or datetime.now(timezone.utc))
    age = now - _as_utc(published)
    # Whole elapsed days, so a source 7 days and 5 hours old passes a 7 day limit
    if age.days > max_age_days:
        return GuardResult(
            False,
            f"Source is {age.days} days old, exceeds {max_age_days} day limit",
        )
    return GuardResult(True)


def parse_version(token: str) -> tuple[int, ...] | None:
    """Parse the numeric prefix of a version token: "2.5" → (2, 5), "4o" → (4,)."""
    match = _VERSION_PREFIX_RE.match(token.strip().lower().lstrip("v"))
    if not match:
        return None
    return tuple(int(p) for p in match.group(0).split("."))


def _is_older(mentioned: tuple[int, ...], current: tuple[int, ...]) -> bool:
    width = max(len(mentioned), len(current))
    pad = lambda v: v + (0,) * (width - len(v))  # noqa: E731
    return pad(mentioned) < pad(current)


def _product_pattern(product: str) -> re.Pattern[str]:
    names = "|".join(
        r"[\s\-]+".join(re.escape(word) for word in spelling.split())
        for spelling in (product, *PRODUCT_ALIASES.get(product, ()))
    )
    return re.compile(
        rf"(?<![\w])(?:{names})(?:[\s\-]+(?:{_QUALIFIER_RE}))?[\s\-]*v?(\d+(?:\.\d+)?[a-z]?)",
        re.IGNORECASE,
    )


_PATTERNS: dict[str, re.Pattern[str]] = {p: _product_pattern(p) for p in CURRENT_VERSIONS}


def extract_versions(topic: str, versions: dict[str, str] | None = None) -> list[tuple[str, str]]:
    """Return (product, mentioned_version) pairs found in free text."""
    table = versions or CURRENT_VERSIONS
    found: list[tuple[str, str]] = []
    for product in table:
        pattern = _PATTERNS.get(product) or _product_pattern(product)
        for match in pattern.finditer(topic):
            found.append((product, match.group(1)))
    return found


def validate_version_recency(topic: str, *, versions: dict[str, str] | None = None) -> GuardResult:
    """Reject a topic that names an outdated version of a tracked product."""
    table = versions or CURRENT_VERSIONS
    for product, mentioned in extract_versions(topic or "", table):
        mentioned_v = parse_version(mentioned)
        current_v = parse_version(table[product])
        if mentioned_v is None or current_v is None:
            continue
        if _is_older(mentioned_v, current_v):
            return GuardResult(
                False,
                f"Topic mentions {product} version {mentioned}, but current version is {table[product]}",
            )
    return GuardResult(True)


def candidate_expiry(now: datetime, ttl_hours: int) -> datetime:
    return _as_utc(now) + timedelta(hours=ttl_hours)


def screen_candidates(
    candidates: Iterable[TrendCandidate],
    *,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    now: datetime | None = None,
    ttl_hours: int | None = None,
) -> ScreeningReport:
    """Apply both guards to every candidate; every rejection keeps its reason."""
    now = _as_utc(now or datetime.now(timezone.utc))
    report = ScreeningReport()

    for candidate in candidates:
        check = validate_version_recency(candidate.topic)
        if check.is_valid:
            check = validate_recency(candidate.source_published_at, max_age_days, now=now)
        if not check.is_valid:
            logger.info(f"[trend_guard] Rejecting topic {candidate.topic!r}: {check.reason}")
            report.rejected.append((candidate, check.reason or "rejected"))
            continue

        update: dict = {"is_current_version": True}
        if ttl_hours:
            update["expires_at"] = candidate_expiry(now, ttl_hours)
        report.accepted.append(candidate.model_copy(update=update))

    return report
