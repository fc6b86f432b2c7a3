"""
Content generation and trend research on top of an LLMProvider.

- prompts carry the niche, platform format rules, tone, optional trend topic
  and viral pattern
- answers must be JSON (markdown code fences are stripped first)
- malformed or schema-mismatched answers raise GenerationParseError; the
  caller drops that candidate instead of publishing garbage
- research answers go through the trend guard before anything is returned
- hand-entered topics get the version guard plus a best-effort LLM review
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from viralflow.errors import GenerationParseError, LLMError, ValidationError
from viralflow.schemas import GeneratedContent, NicheContext, Platform, TrendCandidate, ViralPattern
from viralflow.services.llm_provider import LLMProvider
from viralflow.services.trend_guard import CURRENT_VERSIONS, ScreeningReport, screen_candidates, validate_version_recency
from viralflow.services.validation import PLATFORM_LIMITS

logger = logging.getLogger(__name__)

PLATFORM_FORMATS: dict[Platform, str] = {
    Platform.linkedin: "Professional, thought-leadership style. Use line breaks for readability. Include a call-to-action.",
    Platform.facebook: "Conversational and engaging. Can be longer form. Encourage comments and shares.",
    Platform.instagram: "Visual-first, emoji-friendly. Caption should complement the image concept. Hashtags at the end.",
    Platform.pinterest: "Descriptive, keyword-rich. Focus on searchability and saving value.",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return (match.group(1) if match else text).strip()


def parse_json_answer(raw: str) -> Any:
    try:
        return json.loads(strip_code_fences(raw))
    except ValueError as exc:
        raise GenerationParseError(f"LLM answer is not valid JSON: {exc}", raw) from exc


# ── Content ──────────────────────────────────────────────────

def build_content_prompts(
    *,
    niche: NicheContext,
    platform: Platform,
    tone: str,
    trend_topic: str | None = None,
    viral_pattern: ViralPattern | None = None,
    custom_instructions: str | None = None,
    max_length: int | None = None,
) -> tuple[str, str]:
    limit = max_length or PLATFORM_LIMITS[platform]
    system = (
        "You are an expert social media content creator specializing in creating viral content.\n"
        "Your task is to generate highly engaging content that maximizes reach and engagement.\n\n"
        f"Platform: {platform.value.upper()}\n"
        f"Format Guidelines: {PLATFORM_FORMATS[platform]}\n"
        f"Maximum Length: {limit} characters\n\n"
        "Always respond in valid JSON format with these fields:\n"
        "- content: The post content (string)\n"
        "- hashtags: Array of relevant hashtags without # symbol\n"
        "- predicted_viral_score: A number 0-100 estimating viral potential\n"
        "- reasoning: Brief explanation of why this content should perform well"
    )

    sections = [
        f"Generate a {platform.value} post for the following:",
        (
            f"NICHE: {niche.name}\n"
            f"KEYWORDS: {', '.join(niche.keywords)}\n"
            f"TARGET AUDIENCE: {niche.target_audience}\n"
            f"CONTENT THEMES: {', '.join(niche.content_themes)}\n"
            f"TONE: {tone}"
        ),
    ]
    if trend_topic:
        sections.append(f"TRENDING TOPIC TO INCORPORATE: {trend_topic}")
    if viral_pattern:
        sections.append(
            "USE THIS VIRAL PATTERN:\n"
            f"- Hook Style: {viral_pattern.hook_example}\n"
            f"- Content Structure: {viral_pattern.content_structure}\n"
            f"- Emotional Trigger: {viral_pattern.emotional_trigger}"
        )
    if custom_instructions:
        sections.append(f"ADDITIONAL INSTRUCTIONS: {custom_instructions}")
    sections.append("Generate content that will maximize engagement and viral potential for this specific audience.")
    return system, "\n\n".join(sections)


async def generate_content(
    provider: LLMProvider,
    *,
    niche: NicheContext,
    platform: Platform,
    tone: str = "professional",
    trend_topic: str | None = None,
    viral_pattern: ViralPattern | None = None,
    custom_instructions: str | None = None,
    max_length: int | None = None,
) -> GeneratedContent:
    system, prompt = build_content_prompts(
        niche=niche,
        platform=platform,
        tone=tone,
        trend_topic=trend_topic,
        viral_pattern=viral_pattern,
        custom_instructions=custom_instructions,
        max_length=max_length,
    )
    raw = await provider.complete(system=system, prompt=prompt, max_tokens=1024, purpose="content")
    data = parse_json_answer(raw)
    if not isinstance(data, dict):
        raise GenerationParseError("LLM answer is not a JSON object", raw)
    try:
        return GeneratedContent.model_validate(data)
    except PydanticValidationError as exc:
        raise GenerationParseError(f"LLM answer does not match the content shape: {exc.errors()[0]['msg']}", raw) from exc


# ── Trend research ───────────────────────────────────────────

def build_research_prompts(niche: NicheContext, *, max_results: int, recency_days: int) -> tuple[str, str]:
    versions = "\n".join(f"- {product}: {version}" for product, version in CURRENT_VERSIONS.items())
    system = (
        "You are a trend research specialist. Your job is to identify current, relevant trending topics "
        "for specific niches.\n\n"
        "CRITICAL REQUIREMENTS:\n"
        f"1. Only include topics that have been actively discussed in the last {recency_days} days\n"
        "2. Verify that any product versions mentioned are CURRENT\n"
        "3. Focus on topics specific to the given niche, not generic viral content\n"
        "4. Prioritize topics with high engagement potential for the target audience\n\n"
        f"Current product versions to reference:\n{versions}\n\n"
        'Respond in JSON format: {"topics": [...]} where each object contains:\n'
        "- topic: The trending topic title\n"
        "- source_url: URL where you found this trend (or null)\n"
        "- source_published_at: ISO date string of when source was published (or null)\n"
        "- relevance_score: 0-100 indicating relevance to the niche\n"
        "- summary: Brief 1-2 sentence description of why this is trending"
    )
    prompt = (
        "Research current trending topics for:\n\n"
        f"NICHE: {niche.name}\n"
        f"KEYWORDS: {', '.join(niche.keywords)}\n"
        f"TARGET AUDIENCE: {niche.target_audience}\n\n"
        f"Find {max_results} highly relevant trending topics from the last {recency_days} days "
        "that this audience would find valuable and engaging.\n\n"
        "Important: Only include topics that are currently relevant - no outdated product announcements or old news."
    )
    return system, prompt


async def research_trending_topics(
    provider: LLMProvider,
    niche: NicheContext,
    *,
    max_results: int = 5,
    recency_days: int = 7,
    ttl_hours: int | None = None,
    now: datetime | None = None,
) -> ScreeningReport:
    """Ask the LLM for trends, then screen them; rejections keep their reasons."""
    system, prompt = build_research_prompts(niche, max_results=max_results, recency_days=recency_days)
    raw = await provider.complete(system=system, prompt=prompt, max_tokens=2048, purpose="research")
    data = parse_json_answer(raw)

    items = data.get("topics") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise GenerationParseError("Research answer has no topics list", raw)

    candidates: list[TrendCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"[research] Skipping non-object topic entry: {item!r}")
            continue
        try:
            candidates.append(TrendCandidate.model_validate({**item, "niche_id": niche.id}))
        except PydanticValidationError as exc:
            logger.warning(f"[research] Skipping malformed topic {item.get('topic')!r}: {exc.errors()[0]['msg']}")

    report = screen_candidates(candidates, max_age_days=recency_days, now=now, ttl_hours=ttl_hours)
    report.accepted = sorted(report.accepted, key=lambda c: c.relevance_score, reverse=True)[:max_results]
    logger.info(
        f"[research] niche={niche.name!r}: {len(candidates)} candidates, "
        f"{len(report.accepted)} accepted, {len(report.rejected)} rejected"
    )
    return report


# ── Manual topic review ──────────────────────────────────────

OUTDATED_VERSION_SUGGESTION = "Update the topic to reference the current product version"
NOT_TIMELY_ISSUE = "Topic may no longer be timely"


@dataclass
class TopicValidation:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "issues": self.issues, "suggestions": self.suggestions}


def build_topic_review_prompts(topic: str, niche: NicheContext) -> tuple[str, str]:
    system = (
        "You are a content validation specialist. Analyze if a topic is current, relevant, "
        "and appropriate for the given niche.\n"
        "Respond in JSON with: isTimely (boolean), issues (array of strings), suggestions (array of strings)."
    )
    prompt = (
        "Validate this topic:\n"
        f"TOPIC: {topic}\n"
        f"NICHE: {niche.name}\n"
        f"KEYWORDS: {', '.join(niche.keywords)}\n\n"
        "Check if:\n"
        "1. This topic is still relevant (not outdated news)\n"
        "2. Any product versions mentioned are current\n"
        "3. It's appropriate for the niche\n"
        "4. It has viral potential"
    )
    return system, prompt


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


async def validate_manual_topic(
    provider: LLMProvider,
    topic: str,
    niche: NicheContext | None = None,
) -> TopicValidation:
    """Review a hand-entered topic: version guard first, then an LLM timeliness check.

    The LLM review only adds to the guard's verdict. When the call fails or
    the answer cannot be parsed, the guard-only result is returned.
    """
    if not topic or not topic.strip():
        raise ValidationError("topic is required")
    niche = niche or NicheContext()
    issues: list[str] = []
    suggestions: list[str] = []

    version_check = validate_version_recency(topic)
    if not version_check.is_valid:
        issues.append(version_check.reason or "Topic mentions an outdated product version")
        suggestions.append(OUTDATED_VERSION_SUGGESTION)

    system, prompt = build_topic_review_prompts(topic, niche)
    try:
        raw = await provider.complete(system=system, prompt=prompt, max_tokens=512, purpose="research")
        review = parse_json_answer(raw)
    except (LLMError, GenerationParseError) as exc:
        logger.warning(f"[research] Topic review unavailable, using version check only: {exc}")
        review = None

    if isinstance(review, dict):
        timely = review.get("isTimely", review.get("is_timely"))
        if not timely:
            issues.extend(_strings(review.get("issues")) or [NOT_TIMELY_ISSUE])
        suggestions.extend(_strings(review.get("suggestions")))
    elif review is not None:
        logger.warning(f"[research] Topic review answer is not a JSON object: {review!r}")

    logger.info(f"[research] Manual topic {topic!r}: {len(issues)} issue(s)")
    return TopicValidation(is_valid=not issues, issues=issues, suggestions=suggestions)
