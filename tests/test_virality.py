import pytest

from viralflow.schemas import EngagementMetrics, EngagementSnapshot, ViralDefinition
from viralflow.services.virality import (
    ContentFeatures,
    calculate_viral_score,
    calculate_viral_score_from_snapshot,
    compare_to_average,
    extract_content_features,
    predict_viral_potential,
    viral_score_color,
)

DEFINITION = ViralDefinition()


def test_score_at_thresholds():
    metrics = EngagementMetrics(likes=100, shares=20, comments=30, views=1000, saves=10, clicks=2, impressions=100)
    result = calculate_viral_score(metrics, DEFINITION)
    assert result.score == 100
    assert result.breakdown.likes_contribution == pytest.approx(25)
    assert result.breakdown.ctr_contribution == pytest.approx(5)
    assert result.is_viral


def test_score_is_capped_at_100():
    metrics = EngagementMetrics(likes=10**6, shares=10**6, comments=10**6, views=10**9, saves=10**6, clicks=10**6, impressions=10**6)
    result = calculate_viral_score(metrics, DEFINITION)
    assert result.score == 100
    # Each ratio is capped at 2.0
    assert result.breakdown.shares_contribution == pytest.approx(60)


@pytest.mark.parametrize("metric", ["likes", "shares", "comments", "views", "saves"])
def test_contribution_is_monotonic(metric):
    previous = -1.0
    for value in (0, 1, 10, 50, 100, 500, 5000, 10**6):
        result = calculate_viral_score(EngagementMetrics(**{metric: value}), DEFINITION)
        contribution = getattr(result.breakdown, f"{metric}_contribution")
        assert contribution >= previous
        assert result.score <= 100
        previous = contribution


def test_ctr_requires_clicks_and_impressions():
    no_clicks = calculate_viral_score(EngagementMetrics(impressions=100), DEFINITION)
    no_impressions = calculate_viral_score(EngagementMetrics(clicks=10, impressions=0), DEFINITION)
    assert no_clicks.breakdown.ctr_contribution == 0
    assert no_impressions.breakdown.ctr_contribution == 0


def test_half_values_round_up():
    # likes 50/100 * 0.25 * 100 = 12.5
    result = calculate_viral_score(EngagementMetrics(likes=50), DEFINITION)
    assert result.score == 13


def test_analysis_when_viral_names_top_drivers():
    metrics = EngagementMetrics(likes=200, shares=40, comments=30, views=1000, saves=10)
    result = calculate_viral_score(metrics, DEFINITION)
    assert result.is_viral
    assert result.analysis == "This post is performing virally! Top drivers: shares (60.0), likes (50.0)"


def test_analysis_when_not_viral_lists_weak_metrics():
    result = calculate_viral_score(EngagementMetrics(likes=100, shares=20), DEFINITION)
    assert not result.is_viral
    assert result.score == 55
    assert result.analysis == "Score: 55/70 needed. Focus on improving comments, views, saves, ctr"


def test_score_from_snapshot():
    snapshot = EngagementSnapshot(post_id="p1", checkpoint_hours=24, likes=100, shares=20, comments=30)
    result = calculate_viral_score_from_snapshot(snapshot, DEFINITION)
    assert result.score == 80


def test_compare_to_average():
    empty = compare_to_average(100, 0)
    assert empty.percentage_diff == 0
    assert "no historical data" in empty.analysis.lower()

    below = compare_to_average(50, 100)
    assert below.percentage_diff == -50
    assert below.analysis == "Significantly underperforming, 50.0% below average"

    assert compare_to_average(160, 100).analysis == "Exceptional performance! 60.0% above average"
    assert compare_to_average(130, 100).analysis == "Strong performance, 30.0% above average"
    assert compare_to_average(95, 100).analysis == "Performing at average level"
    assert compare_to_average(80, 100).analysis == "Below average by 20.0%"


def test_content_features():
    features = extract_content_features(
        "Short hook\nBody text. What do you think?", ["a", "b", "c"], has_trend=True, pattern_success_rate=70
    )
    assert features.has_hook and features.has_cta
    assert features.hashtag_count == 3
    assert features.trend_alignment == 80

    no_trend = extract_content_features("x" * 150, [])
    assert not no_trend.has_hook
    assert not no_trend.has_cta
    assert no_trend.trend_alignment == 30


def test_predict_viral_potential():
    features = ContentFeatures(
        content_length=200,
        has_hook=True,
        has_cta=True,
        hashtag_count=4,
        emotional_trigger=False,
        trend_alignment=80,
        pattern_success_rate=None,
    )
    # 30 base + 10 length + 15 hook + 10 cta + 10 hashtags + 12 trend
    assert predict_viral_potential(features) == 87

    with_pattern = ContentFeatures(350, False, False, 7, True, 30, 45)
    # 30 + 5 + 5 + 10 + round(4.5) + round(4.5)
    assert predict_viral_potential(with_pattern) == 60

    bare = ContentFeatures(0, False, False, 20, False, 0)
    assert predict_viral_potential(bare) == 25


def test_predict_viral_potential_is_clamped():
    maxed = ContentFeatures(200, True, True, 4, True, 100, 100)
    assert predict_viral_potential(maxed) == 100


@pytest.mark.parametrize("score,color", [(85, "green"), (60, "yellow"), (45, "orange"), (10, "red")])
def test_viral_score_color(score, color):
    assert viral_score_color(score) == color
