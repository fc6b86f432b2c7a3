"""
Validation utilities: pure checks run before any I/O.

- content length per platform
- hashtag count vs. optimal band per platform
- account / viral-definition payloads
- URL, email and 5-field cron expressions
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import urlparse

from viralflow.errors import ValidationError
from viralflow.schemas import METRIC_NAMES, WEIGHT_TOLERANCE, Platform

PLATFORM_LIMITS: dict[Platform, int] = {
    Platform.linkedin: 3000,
    Platform.facebook: 63206,
    Platform.instagram: 2200,
    Platform.pinterest: 500,
}

OPTIMAL_HASHTAGS: dict[Platform, tuple[int, int]] = {
    Platform.linkedin: (3, 5),
    Platform.facebook: (1, 3),
    Platform.instagram: (5, 15),
    Platform.pinterest: (2, 5),
}

# (name, min, max) per cron field
CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class CheckResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return self.errors[0] if self.errors else None

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise ValidationError("; ".join(self.errors), self.errors)


@dataclass(frozen=True)
class LengthCheck:
    is_valid: bool
    length: int
    max_length: int
    message: str | None = None


@dataclass(frozen=True)
class HashtagCheck:
    is_valid: bool
    count: int
    optimal: tuple[int, int]
    message: str | None = None


def validate_content_length(content: str, platform: Platform | str) -> LengthCheck:
    platform = Platform(platform)
    max_length = PLATFORM_LIMITS[platform]
    length = len(content)
    if length <= max_length:
        return LengthCheck(True, length, max_length)
    return LengthCheck(
        False,
        length,
        max_length,
        f"Content exceeds {platform.value} limit by {length - max_length} characters",
    )


def validate_hashtags(hashtags: list[str], platform: Platform | str) -> HashtagCheck:
    platform = Platform(platform)
    low, high = OPTIMAL_HASHTAGS[platform]
    count = len(hashtags)
    message = None
    if count < low:
        message = f"Consider adding more hashtags. Optimal: {low}-{high}"
    elif count > high:
        message = f"Too many hashtags may reduce reach. Optimal: {low}-{high}"
    return HashtagCheck(low <= count <= high, count, (low, high), message)


def validate_account(account: Mapping[str, Any]) -> CheckResult:
    errors: list[str] = []
    name = account.get("name")
    if not name or not str(name).strip():
        errors.append("Account name is required")

    platform = account.get("platform")
    if not platform:
        errors.append("Platform is required")
    elif str(platform) not in {p.value for p in Platform}:
        errors.append("Invalid platform. Must be: linkedin, facebook, instagram, or pinterest")

    return CheckResult(not errors, errors)


def validate_viral_definition(definition: Mapping[str, Any]) -> CheckResult:
    """Check a raw weights payload without constructing the model.

    Missing weights count as 0, like a partially filled settings form.
    """
    errors: list[str] = []
    weights = {name: float(definition.get(f"{name}_weight") or 0) for name in METRIC_NAMES}
    total = sum(weights.values())

    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        errors.append(f"Weights must sum to 1.0 (currently {total:.2f})")
    for name, value in weights.items():
        if value < 0 or value > 1:
            errors.append(f"{name}_weight must be between 0 and 1")
    for name in METRIC_NAMES:
        threshold = definition.get(f"{name}_threshold")
        if threshold is not None and float(threshold) <= 0:
            errors.append(f"{name}_threshold must be positive")

    return CheckResult(not errors, errors)


def validate_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def _parse_int(value: str) -> int | None:
    if not value or not value.isdigit():
        return None
    return int(value)


def _check_cron_value(value: str, name: str, low: int, high: int) -> str | None:
    num = _parse_int(value)
    if num is None or num < low or num > high:
        return f"{name} must be between {low} and {high}"
    return None


def validate_cron_expression(cron: str) -> CheckResult:
    """Validate a standard 5-field cron expression.

    Supports `*`, single values, lists (`8,14,20`), ranges (`1-5`) and steps
    (`*/15`, `0-30/5`). Fields must be separated by single spaces.
    """
    parts = (cron or "").split(" ")
    if len(parts) != 5:
        return CheckResult(False, ["Cron must have 5 parts: minute hour day month weekday"])

    for part, (name, low, high) in zip(parts, CRON_FIELDS):
        if part == "*":
            continue

        if "/" in part:
            base, _, step = part.partition("/")
            step_num = _parse_int(step)
            if step_num is None or step_num <= 0:
                return CheckResult(False, [f"Invalid step value in {name}"])
            if base == "*":
                continue
            part = base

        if "," in part:
            for value in part.split(","):
                if _check_cron_value(value, name, low, high):
                    return CheckResult(False, [f"Invalid value in {name} list"])
            continue

        if "-" in part:
            start_s, _, end_s = part.partition("-")
            start, end = _parse_int(start_s), _parse_int(end_s)
            if start is None or end is None or start > end or start < low or end > high:
                return CheckResult(False, [f"Invalid range in {name}"])
            continue

        err = _check_cron_value(part, name, low, high)
        if err:
            return CheckResult(False, [err])

    return CheckResult(True)
