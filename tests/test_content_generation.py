import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import ScriptedLLM
from viralflow.errors import GenerationParseError, LLMError, ValidationError
from viralflow.schemas import NicheContext, Platform, ViralPattern
from viralflow.services.content_generation import (
    build_content_prompts,
    generate_content,
    parse_json_answer,
    research_trending_topics,
    strip_code_fences,
    validate_manual_topic,
)
from viralflow.services.llm_provider import StubLLMProvider, get_llm_provider

NOW = datetime(2025, 6, 10, tzinfo=timezone.utc)
NICHE = NicheContext(id="n1", name="AI Tools", keywords=["llm", "automation"], target_audience="founders")


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_parse_json_answer_rejects_garbage():
    with pytest.raises(GenerationParseError) as exc_info:
        parse_json_answer("Sure! Here is your post.")
    assert exc_info.value.raw == "Sure! Here is your post."


def test_content_prompt_includes_context():
    pattern = ViralPattern(id="p", hook_example="Nobody talks about this:", content_structure="hook/list/cta", emotional_trigger="curiosity")
    system, prompt = build_content_prompts(
        niche=NICHE, platform=Platform.linkedin, tone="bold", trend_topic="Agents in production", viral_pattern=pattern
    )
    assert "3000" in system
    assert "AI Tools" in prompt
    assert "Agents in production" in prompt
    assert "Nobody talks about this:" in prompt


async def test_generate_content_parses_fenced_json():
    answer = "```json\n" + json.dumps({
        "content": "Hook line\nBody",
        "hashtags": ["#ai", "tools"],
        "predicted_viral_score": 72,
        "reasoning": "strong hook",
    }) + "\n```"
    generated = await generate_content(ScriptedLLM(content=answer), niche=NICHE, platform=Platform.linkedin)
    assert generated.content == "Hook line\nBody"
    assert generated.hashtags == ["ai", "tools"]
    assert generated.predicted_viral_score == 72


@pytest.mark.parametrize("answer", ["not json", "[1, 2]", '{"hashtags": []}', '{"content": "x", "hashtags": "ai"}'])
async def test_generate_content_malformed_answer_raises(answer):
    with pytest.raises(GenerationParseError):
        await generate_content(ScriptedLLM(content=answer), niche=NICHE, platform=Platform.facebook)


async def test_research_screens_and_ranks_topics():
    topics = [
        {"topic": "Gemini 1.5 deep dive", "source_published_at": (NOW - timedelta(days=1)).isoformat(), "relevance_score": 99},
        {"topic": "Agent frameworks", "source_published_at": (NOW - timedelta(days=2)).isoformat(), "relevance_score": 70},
        {"topic": "Old launch", "source_published_at": (NOW - timedelta(days=20)).isoformat(), "relevance_score": 95},
        {"topic": "Local LLM stacks", "relevance_score": 85},
        {"topic": "", "relevance_score": 50},
        "not an object",
    ]
    llm = ScriptedLLM(research=json.dumps({"topics": topics}))
    report = await research_trending_topics(llm, NICHE, max_results=3, recency_days=7, ttl_hours=24, now=NOW)

    assert llm.calls == ["research"]
    assert [c.topic for c in report.accepted] == ["Local LLM stacks", "Agent frameworks"]
    assert all(c.niche_id == "n1" for c in report.accepted)
    assert report.accepted[0].expires_at == NOW + timedelta(hours=24)
    assert sorted(c.topic for c, _ in report.rejected) == ["Gemini 1.5 deep dive", "Old launch"]


async def test_research_accepts_bare_list():
    llm = ScriptedLLM(research=json.dumps([{"topic": "Prompt caching", "relevance_score": 60}]))
    report = await research_trending_topics(llm, NICHE, now=NOW)
    assert [c.topic for c in report.accepted] == ["Prompt caching"]


async def test_research_without_topics_raises():
    with pytest.raises(GenerationParseError):
        await research_trending_topics(ScriptedLLM(research='{"items": []}'), NICHE, now=NOW)


async def test_stub_provider_output_is_valid_content():
    provider = get_llm_provider()
    assert isinstance(provider, StubLLMProvider)
    generated = await generate_content(provider, niche=NICHE, platform=Platform.linkedin)
    assert generated.hashtags
    report = await research_trending_topics(provider, NICHE, now=NOW)
    assert report.accepted == []


async def test_manual_topic_with_outdated_version():
    llm = ScriptedLLM(research=json.dumps({"isTimely": True, "issues": [], "suggestions": ["Add a concrete use case"]}))
    review = await validate_manual_topic(llm, "Gemini 1.5 tips for founders", NICHE)

    assert not review.is_valid
    assert review.issues == ["Topic mentions gemini version 1.5, but current version is 2.5"]
    assert review.suggestions == ["Update the topic to reference the current product version", "Add a concrete use case"]


async def test_manual_topic_flagged_as_not_timely():
    answer = "```json\n" + json.dumps({
        "isTimely": False,
        "issues": ["The launch was covered months ago"],
        "suggestions": ["Focus on what changed since launch"],
    }) + "\n```"
    review = await validate_manual_topic(ScriptedLLM(research=answer), "Agent frameworks launch", NICHE)

    assert not review.is_valid
    assert review.issues == ["The launch was covered months ago"]
    assert review.suggestions == ["Focus on what changed since launch"]
    assert review.to_dict()["is_valid"] is False


async def test_manual_topic_not_timely_without_reasons():
    review = await validate_manual_topic(ScriptedLLM(research='{"isTimely": false}'), "Agent frameworks")
    assert review.issues == ["Topic may no longer be timely"]


async def test_manual_topic_keeps_guard_result_when_review_fails():
    current = await validate_manual_topic(ScriptedLLM(research=LLMError("quota exceeded")), "GPT-4o agents", NICHE)
    assert current.is_valid
    assert current.issues == []

    outdated = await validate_manual_topic(ScriptedLLM(research="not json"), "ChatGPT 3.5 tricks", NICHE)
    assert not outdated.is_valid
    assert outdated.issues == ["Topic mentions gpt version 3.5, but current version is 4o"]


async def test_manual_topic_requires_text():
    llm = ScriptedLLM()
    with pytest.raises(ValidationError):
        await validate_manual_topic(llm, "   ", NICHE)
    assert llm.calls == []
