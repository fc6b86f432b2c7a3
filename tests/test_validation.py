import pytest
from pydantic import ValidationError as PydanticValidationError

from viralflow.errors import ValidationError
from viralflow.schemas import Platform, ViralDefinition
from viralflow.services.validation import (
    validate_account,
    validate_content_length,
    validate_cron_expression,
    validate_email,
    validate_hashtags,
    validate_url,
    validate_viral_definition,
)


@pytest.mark.parametrize("cron", ["0 8,14,20 * * *", "*/15 * * * *", "0 9 * * 1-5", "0-30/5 * 1 1 0"])
def test_cron_accepts_standard_expressions(cron):
    assert validate_cron_expression(cron).is_valid


@pytest.mark.parametrize(
    "cron",
    [
        "60 8 * * *",
        "0 24 * * *",
        "0 8 * *",
        "0 8 * * * *",
        "",
        "0  8 * * *",
        "*/0 * * * *",
        "0 8 32 * *",
        "0 8 * 13 *",
        "0 8 * * 7",
        "5-1 * * * *",
    ],
)
def test_cron_rejects_invalid_expressions(cron):
    result = validate_cron_expression(cron)
    assert not result.is_valid
    assert result.error


def test_cron_invalid_minute_message():
    assert validate_cron_expression("60 8 * * *").error == "minute must be between 0 and 59"


def test_cron_wrong_field_count_message():
    assert "5 parts" in validate_cron_expression("0 8 * *").error


def test_raise_for_errors():
    with pytest.raises(ValidationError) as exc_info:
        validate_cron_expression("60 8 * * *").raise_for_errors()
    assert exc_info.value.errors == ["minute must be between 0 and 59"]


def test_content_length_per_platform():
    assert validate_content_length("x" * 3000, Platform.linkedin).is_valid
    over = validate_content_length("x" * 501, "pinterest")
    assert not over.is_valid
    assert over.max_length == 500
    assert over.message == "Content exceeds pinterest limit by 1 characters"


def test_hashtag_bands():
    assert validate_hashtags(["a", "b", "c"], Platform.linkedin).is_valid
    few = validate_hashtags([], Platform.instagram)
    assert not few.is_valid and few.message == "Consider adding more hashtags. Optimal: 5-15"
    many = validate_hashtags(["a", "b", "c", "d"], Platform.facebook)
    assert not many.is_valid and many.message.startswith("Too many hashtags")


def test_validate_account():
    assert validate_account({"name": "Acme", "platform": "linkedin"}).is_valid
    result = validate_account({"name": " ", "platform": "tiktok"})
    assert result.errors == [
        "Account name is required",
        "Invalid platform. Must be: linkedin, facebook, instagram, or pinterest",
    ]


def test_validate_viral_definition_payload():
    good = {"likes_weight": 0.25, "shares_weight": 0.3, "comments_weight": 0.25,
            "views_weight": 0.1, "saves_weight": 0.05, "ctr_weight": 0.05}
    assert validate_viral_definition(good).is_valid

    bad = dict(good, likes_weight=0.5)
    result = validate_viral_definition(bad)
    assert result.errors == ["Weights must sum to 1.0 (currently 1.25)"]


def test_viral_definition_model_rejects_non_summing_weights():
    assert abs(ViralDefinition().total_weight - 1.0) <= 0.01
    with pytest.raises(PydanticValidationError):
        ViralDefinition(likes_weight=0.9)
    with pytest.raises(PydanticValidationError):
        ViralDefinition(likes_weight=1.5, shares_weight=0, comments_weight=0, views_weight=0, saves_weight=0, ctr_weight=0)


def test_viral_definition_update_is_validated():
    definition = ViralDefinition()
    with pytest.raises(PydanticValidationError):
        definition.likes_weight = 0.6
    with pytest.raises(PydanticValidationError):
        definition.updated(ctr_weight=0.5)

    moved = definition.updated(likes_weight=0.20, ctr_weight=0.10)
    assert moved.likes_weight == 0.20
    assert abs(moved.total_weight - 1.0) <= 0.01


def test_viral_definition_rejects_non_positive_threshold():
    with pytest.raises(PydanticValidationError):
        ViralDefinition(likes_threshold=0)


def test_url_and_email():
    assert validate_url("https://example.com/a?b=1")
    assert not validate_url("ftp://example.com")
    assert not validate_url("not a url")
    assert validate_email("a@b.co")
    assert not validate_email("a@b")
