from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WEIGHT_TOLERANCE = 0.01
METRIC_NAMES = ("likes", "shares", "comments", "views", "saves", "ctr")


class Platform(str, Enum):
    linkedin = "linkedin"
    facebook = "facebook"
    instagram = "instagram"
    pinterest = "pinterest"

    @property
    def display_name(self) -> str:
        return {
            Platform.linkedin: "LinkedIn",
            Platform.facebook: "Facebook",
            Platform.instagram: "Instagram",
            Platform.pinterest: "Pinterest",
        }[self]


class ComparisonMethod(str, Enum):
    account_average = "account_average"
    niche_average = "niche_average"
    absolute = "absolute"


# ── Viral definition / engagement ────────────────────────────

class ViralDefinition(BaseModel):
    """Per-account weights and thresholds for the viral score.

    Weights must sum to 1.0 (±0.01). Invalid definitions are rejected on
    construction and on attribute assignment; they are never renormalized.
    """

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    account_id: str | None = None

    likes_weight: float = Field(default=0.25, ge=0, le=1)
    shares_weight: float = Field(default=0.30, ge=0, le=1)
    comments_weight: float = Field(default=0.25, ge=0, le=1)
    views_weight: float = Field(default=0.10, ge=0, le=1)
    saves_weight: float = Field(default=0.05, ge=0, le=1)
    ctr_weight: float = Field(default=0.05, ge=0, le=1)

    likes_threshold: float = Field(default=100, gt=0)
    shares_threshold: float = Field(default=20, gt=0)
    comments_threshold: float = Field(default=30, gt=0)
    views_threshold: float = Field(default=1000, gt=0)
    saves_threshold: float = Field(default=10, gt=0)
    ctr_threshold: float = Field(default=2.0, gt=0)

    minimum_viral_score: float = Field(default=70, ge=0, le=100)
    timeframe_hours: int = Field(default=48, gt=0)
    comparison_method: ComparisonMethod = ComparisonMethod.account_average

    @model_validator(mode="after")
    def check_weights_sum(self) -> "ViralDefinition":
        total = self.total_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0 (currently {total:.2f})")
        return self

    @property
    def total_weight(self) -> float:
        return sum(self.weight(name) for name in METRIC_NAMES)

    def weight(self, metric: str) -> float:
        return float(getattr(self, f"{metric}_weight"))

    def threshold(self, metric: str) -> float:
        return float(getattr(self, f"{metric}_threshold"))

    def updated(self, **changes) -> "ViralDefinition":
        """Return a validated copy with `changes` applied."""
        return ViralDefinition.model_validate({**self.model_dump(), **changes})


class EngagementSnapshot(BaseModel):
    """Point-in-time engagement counters for a post at a checkpoint offset."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    post_id: str
    checkpoint_hours: int = Field(gt=0)
    likes: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)
    saves: int = Field(default=0, ge=0)
    clicks: int | None = Field(default=None, ge=0)
    impressions: int | None = Field(default=None, ge=0)
    reach: int | None = Field(default=None, ge=0)
    recorded_at: datetime | None = None


class EngagementMetrics(BaseModel):
    """Raw counters fed into the score calculation."""

    likes: float = 0
    shares: float = 0
    comments: float = 0
    views: float = 0
    saves: float = 0
    clicks: float | None = None
    impressions: float | None = None


class ScoreBreakdown(BaseModel):
    likes_contribution: float = 0.0
    shares_contribution: float = 0.0
    comments_contribution: float = 0.0
    views_contribution: float = 0.0
    saves_contribution: float = 0.0
    ctr_contribution: float = 0.0

    def as_pairs(self) -> list[tuple[str, float]]:
        return [(name, getattr(self, f"{name}_contribution")) for name in METRIC_NAMES]


class ViralScoreResult(BaseModel):
    score: int = Field(ge=0, le=100)
    breakdown: ScoreBreakdown
    is_viral: bool
    analysis: str


# ── Trends ───────────────────────────────────────────────────

class TrendCandidate(BaseModel):
    topic: str = Field(min_length=1)
    source_url: str | None = None
    source_published_at: datetime | None = None
    relevance_score: float = Field(default=0, ge=0, le=100)
    is_current_version: bool = False
    summary: str = ""
    niche_id: str | None = None
    expires_at: datetime | None = None

    @field_validator("source_published_at", mode="before")
    @classmethod
    def lenient_timestamp(cls, value):
        # Unparseable dates are treated as missing, not as errors
        if value in (None, ""):
            return None
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        return value

    @field_validator("relevance_score", mode="before")
    @classmethod
    def clamp_relevance(cls, value):
        if value is None:
            return 0
        try:
            return min(max(float(value), 0.0), 100.0)
        except (TypeError, ValueError):
            return 0


# ── Publishing ───────────────────────────────────────────────

class PlatformCredentials(BaseModel):
    client_id: str | None = None
    client_secret: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def naive_as_utc(cls, value: datetime | None) -> datetime | None:
        # Stores without timezone-aware columns hand back naive UTC timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: datetime, *, skew_sec: int = 300) -> bool:
        if self.expires_at is None:
            return False
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (self.expires_at - now).total_seconds() <= skew_sec


class MediaRef(BaseModel):
    url: str | None = None
    base64: str | None = None
    content_type: str = "image/jpeg"


class PublishRequest(BaseModel):
    platform: Platform
    account_id: str
    credentials: PlatformCredentials
    content: str
    hashtags: list[str] = Field(default_factory=list)
    media: list[MediaRef] = Field(default_factory=list)
    link: str | None = None
    # page id / instagram user id / linkedin urn or org id / pinterest board id
    target_id: str | None = None
    title: str | None = None
    visibility: Literal["PUBLIC", "CONNECTIONS"] = "PUBLIC"

    @property
    def image_urls(self) -> list[str]:
        return [m.url for m in self.media if m.url]


# ── Generation / account context ─────────────────────────────

class GeneratedContent(BaseModel):
    content: str = Field(min_length=1)
    hashtags: list[str] = Field(default_factory=list)
    predicted_viral_score: float = Field(default=50, ge=0, le=100)
    reasoning: str = ""

    @field_validator("hashtags", mode="before")
    @classmethod
    def strip_hash(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("hashtags must be a list")
        return [str(tag).strip().lstrip("#") for tag in value if str(tag).strip().lstrip("#")]


class NicheContext(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    name: str = "General"
    keywords: list[str] = Field(default_factory=list)
    target_audience: str = ""
    content_themes: list[str] = Field(default_factory=list)
    trend_ttl_hours: int | None = None


class ViralPattern(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    hook_example: str
    content_structure: str = ""
    emotional_trigger: str = ""
    success_rate: float = 0


class AccountContext(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    platform: Platform
    credentials: PlatformCredentials = Field(default_factory=PlatformCredentials)
    target_id: str | None = None
    niche_id: str | None = None
    tone: str = "professional"
    custom_instructions: str | None = None
    posting_times: list[str] = Field(default_factory=lambda: ["08:00", "14:00", "19:00"])
    timezone: str = "UTC"
    batch_size: int = Field(default=1, ge=1)
    error_handling: Literal["continue", "stop"] = "continue"
    is_active: bool = True


# ── Post records ─────────────────────────────────────────────

class PostRecord(BaseModel):
    """A generated post and its publish outcome, as written to the store."""

    account_id: str
    platform: Platform
    content: str
    hashtags: list[str] = Field(default_factory=list)
    media_urls: list[str] = Field(default_factory=list)
    trend_topic: str | None = None
    pattern_id: str | None = None
    predicted_viral_score: float | None = None
    scheduled_at: datetime | None = None
    status: Literal["scheduled", "posted", "failed"] = "posted"
    posted_at: datetime | None = None
    external_post_id: str | None = None
    post_url: str | None = None
    error: str | None = None


class ScheduledPost(BaseModel):
    """A post queued ahead of time for a specific slot."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    content: str
    hashtags: list[str] = Field(default_factory=list)
    media_urls: list[str] = Field(default_factory=list)
    scheduled_at: datetime
