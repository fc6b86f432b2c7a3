"""
Viral Score Calculator

Scores a post's engagement against the account's ViralDefinition:
- each metric is compared to its threshold (ratio capped at 2.0)
- ratios are weighted and scaled to points (weight * 100)
- CTR contributes only when clicks and impressions are known
- the total is rounded and hard-capped at 100

Also contains the advisory pre-publish estimator and the
comparison against the account's historical average.

Score range: 0-100
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass

from viralflow.schemas import (
    METRIC_NAMES,
    EngagementMetrics,
    EngagementSnapshot,
    ScoreBreakdown,
    ViralDefinition,
    ViralScoreResult,
)

RATIO_CAP = 2.0
SCORE_CAP = 100
# Contributors below this many points are reported as improvement targets
WEAK_FLOOR = 10.0

HOOK_MAX_CHARS = 100
_CTA_RE = re.compile(r"\?|share|comment|follow|like", re.IGNORECASE)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _ratio(value: float, threshold: float) -> float:
    return min(value / threshold, RATIO_CAP)


def calculate_viral_score(metrics: EngagementMetrics, definition: ViralDefinition) -> ViralScoreResult:
    """
    Calculate the viral score (0-100) of one post.

    Formula per metric m in likes/shares/comments/views/saves:
        ratio(m)        = min(metrics[m] / threshold(m), 2.0)
        contribution(m) = ratio(m) * weight(m) * 100
    CTR = clicks / impressions * 100, ratio'd against ctr_threshold.
    """
    contributions: dict[str, float] = {}
    for name in METRIC_NAMES:
        if name == "ctr":
            continue
        ratio = _ratio(float(getattr(metrics, name) or 0), definition.threshold(name))
        contributions[name] = ratio * definition.weight(name) * 100

    ctr_ratio = 0.0
    if metrics.clicks is not None and metrics.impressions and metrics.impressions > 0:
        ctr = metrics.clicks / metrics.impressions * 100
        ctr_ratio = _ratio(ctr, definition.threshold("ctr"))
    contributions["ctr"] = ctr_ratio * definition.weight("ctr") * 100

    raw_score = sum(contributions.values())
    score = min(_round_half_up(raw_score), SCORE_CAP)
    is_viral = score >= definition.minimum_viral_score

    breakdown = ScoreBreakdown(**{f"{name}_contribution": contributions[name] for name in METRIC_NAMES})
    return ViralScoreResult(
        score=score,
        breakdown=breakdown,
        is_viral=is_viral,
        analysis=_build_analysis(breakdown, score, is_viral, definition),
    )


def _build_analysis(breakdown: ScoreBreakdown, score: int, is_viral: bool, definition: ViralDefinition) -> str:
    ranked = sorted(breakdown.as_pairs(), key=lambda pair: pair[1], reverse=True)
    needed = f"{definition.minimum_viral_score:g}"

    if is_viral:
        (top_name, top_value), (second_name, second_value) = ranked[0], ranked[1]
        return (
            f"This post is performing virally! Top drivers: "
            f"{top_name} ({top_value:.1f}), {second_name} ({second_value:.1f})"
        )

    weak = [name for name, value in ranked if value < WEAK_FLOOR]
    if not weak:
        return f"Score: {score}/{needed} needed. All metrics contribute; raise overall volume"
    return f"Score: {score}/{needed} needed. Focus on improving {', '.join(weak)}"


def calculate_viral_score_from_snapshot(snapshot: EngagementSnapshot, definition: ViralDefinition) -> ViralScoreResult:
    """Score the counters of a stored engagement checkpoint."""
    metrics = EngagementMetrics(
        likes=snapshot.likes,
        shares=snapshot.shares,
        comments=snapshot.comments,
        views=snapshot.views,
        saves=snapshot.saves,
        clicks=snapshot.clicks,
        impressions=snapshot.impressions,
    )
    return calculate_viral_score(metrics, definition)


# ── Pre-publish prediction ───────────────────────────────────

@dataclass
class ContentFeatures:
    content_length: int
    has_hook: bool
    has_cta: bool
    hashtag_count: int
    emotional_trigger: bool
    trend_alignment: float  # 0-100
    pattern_success_rate: float | None = None  # 0-100


def extract_content_features(
    content: str,
    hashtags: list[str],
    *,
    emotional_trigger: bool = False,
    has_trend: bool = False,
    pattern_success_rate: float | None = None,
) -> ContentFeatures:
    first_line = content.split("\n")[0]
    return ContentFeatures(
        content_length=len(content),
        has_hook=len(first_line) < HOOK_MAX_CHARS,
        has_cta=bool(_CTA_RE.search(content)),
        hashtag_count=len(hashtags),
        emotional_trigger=emotional_trigger,
        trend_alignment=80 if has_trend else 30,
        pattern_success_rate=pattern_success_rate,
    )


def predict_viral_potential(features: ContentFeatures) -> int:
    """
    Heuristic estimate (0-100) of a draft's viral potential.

    Advisory only: shown in previews and stored with the post, never used
    to block publishing.
    """
    score = 30

    if 100 <= features.content_length <= 300:
        score += 10
    elif 300 < features.content_length <= 500:
        score += 5

    if features.has_hook:
        score += 15
    if features.has_cta:
        score += 10

    if 3 <= features.hashtag_count <= 5:
        score += 10
    elif 5 < features.hashtag_count <= 10:
        score += 5
    elif features.hashtag_count > 10:
        score -= 5

    if features.emotional_trigger:
        score += 10

    score += _round_half_up(features.trend_alignment * 0.15)
    if features.pattern_success_rate is not None:
        score += _round_half_up(features.pattern_success_rate * 0.1)

    return min(max(score, 0), 100)


# ── Historical comparison ────────────────────────────────────

@dataclass(frozen=True)
class AverageComparison:
    percentage_diff: float
    analysis: str


def compare_to_average(current: float, average: float) -> AverageComparison:
    if average == 0:
        return AverageComparison(0.0, "No historical data for comparison")

    diff = (current - average) / average * 100
    if diff > 50:
        analysis = f"Exceptional performance! {diff:.1f}% above average"
    elif diff > 20:
        analysis = f"Strong performance, {diff:.1f}% above average"
    elif diff > -10:
        analysis = "Performing at average level"
    elif diff > -30:
        analysis = f"Below average by {abs(diff):.1f}%"
    else:
        analysis = f"Significantly underperforming, {abs(diff):.1f}% below average"
    return AverageComparison(diff, analysis)


def viral_score_color(score: float) -> str:
    if score >= 80:
        return "green"
    if score >= 60:
        return "yellow"
    if score >= 40:
        return "orange"
    return "red"
