"""
Pipeline orchestrator: one batch per scheduler tick.

Per batch:
1. publish posts that were queued ahead of time and are now due
2. for every active account with an enabled automation profile, in parallel
   (bounded by PUBLISH_MAX_PARALLEL):
   due slot? → research trends (guarded) → pick pattern → generate →
   predict score → refresh token + publish under the account lock → record

Nothing aborts the batch: each account (and each queued post) gets its own
result, and partial success is the normal outcome.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from viralflow.errors import AuthError, ConnectivityError, GenerationParseError, LLMError
from viralflow.schemas import (
    AccountContext,
    GeneratedContent,
    MediaRef,
    NicheContext,
    Platform,
    PlatformCredentials,
    PostRecord,
    PublishRequest,
    ScheduledPost,
    TrendCandidate,
    ViralDefinition,
    ViralPattern,
    ViralScoreResult,
)
from viralflow.services import notify as default_notifier
from viralflow.services.account_lock import AccountLockManager, get_lock_manager
from viralflow.services.content_generation import generate_content, research_trending_topics
from viralflow.services.credentials import CredentialResolver
from viralflow.services.llm_provider import LLMProvider, get_llm_provider
from viralflow.services.publisher_adapter import PlatformAdapter, PublishResult
from viralflow.services.publishers import build_publisher
from viralflow.services.schedule import due_slots
from viralflow.services.store import PipelineStore
from viralflow.services.validation import validate_content_length, validate_hashtags
from viralflow.services.virality import (
    calculate_viral_score_from_snapshot,
    extract_content_features,
    predict_viral_potential,
)
from viralflow.settings import Settings, get_settings

logger = logging.getLogger(__name__)

DUE_POSTS_LIMIT = 25

AdapterFactory = Callable[[Platform], Awaitable[PlatformAdapter]]


# ── Report types ─────────────────────────────────────────────

@dataclass
class SlotOutcome:
    scheduled_at: datetime | None
    success: bool
    skipped: bool = False
    post_id: str | None = None
    external_id: str | None = None
    url: str | None = None
    error: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "success": self.success,
            "skipped": self.skipped,
            "post_id": self.post_id,
            "external_id": self.external_id,
            "url": self.url,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass
class AccountRunResult:
    account_id: str
    account_name: str
    platform: str
    slots: list[SlotOutcome] = field(default_factory=list)
    trend_topic: str | None = None
    rejected_topics: list[tuple[str, str]] = field(default_factory=list)
    predicted_viral_score: int | None = None
    error: str | None = None

    @property
    def published(self) -> int:
        return sum(1 for s in self.slots if s.success and not s.skipped)

    @property
    def failed(self) -> bool:
        return self.error is not None or any(not s.success for s in self.slots)

    @property
    def skipped(self) -> bool:
        return not self.failed and self.published == 0

    @property
    def status(self) -> Literal["published", "failed", "skipped"]:
        if self.failed:
            return "failed"
        return "skipped" if self.skipped else "published"

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "platform": self.platform,
            "status": self.status,
            "trend_topic": self.trend_topic,
            "rejected_topics": [{"topic": t, "reason": r} for t, r in self.rejected_topics],
            "predicted_viral_score": self.predicted_viral_score,
            "error": self.error,
            "slots": [s.to_dict() for s in self.slots],
        }


@dataclass
class BatchReport:
    tick: datetime
    started_at: datetime
    finished_at: datetime | None = None
    scheduled_posts: list[AccountRunResult] = field(default_factory=list)
    accounts: list[AccountRunResult] = field(default_factory=list)

    @property
    def results(self) -> list[AccountRunResult]:
        return self.scheduled_posts + self.accounts

    @property
    def published(self) -> int:
        return sum(r.published for r in self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    def summary(self) -> str:
        return f"{self.published} published, {self.failed} failed, {self.skipped} skipped"

    def to_dict(self) -> dict[str, Any]:
        duration_ms = None
        if self.finished_at:
            duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)
        return {
            "message": f"Batch completed. {self.summary()}.",
            "tick": self.tick.isoformat(),
            "summary": {
                "total_accounts": len(self.accounts),
                "scheduled_posts": len(self.scheduled_posts),
                "published": self.published,
                "failed": self.failed,
                "skipped": self.skipped,
                "duration_ms": duration_ms,
            },
            "results": [r.to_dict() for r in self.results],
        }


# ── Orchestrator ─────────────────────────────────────────────

class PipelineOrchestrator:
    def __init__(
        self,
        store: PipelineStore,
        *,
        llm: LLMProvider | None = None,
        locks: AccountLockManager | None = None,
        adapter_factory: AdapterFactory | None = None,
        notifier: Any = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.llm = llm or get_llm_provider()
        self.locks = locks or get_lock_manager(self.settings.account_lock_backend)
        self.notifier = notifier or default_notifier
        self._sleep = sleep
        if adapter_factory is None:
            resolver = CredentialResolver(store, self.settings)

            async def adapter_factory(platform: Platform) -> PlatformAdapter:
                return await build_publisher(platform, resolver)

        self.adapter_factory = adapter_factory

    # -- batch --

    async def run_batch(self, now: datetime | None = None) -> BatchReport:
        """Run one scheduler tick for all enabled, due accounts."""
        now = now or datetime.now(timezone.utc)
        report = BatchReport(tick=now, started_at=datetime.now(timezone.utc))
        logger.info(f"[pipeline] Batch started at {now.isoformat()}")

        report.scheduled_posts = await self.publish_due_posts(now)

        accounts = await self.store.list_active_accounts()
        semaphore = asyncio.Semaphore(max(1, self.settings.publish_max_parallel))

        async def bounded(account: AccountContext) -> AccountRunResult:
            async with semaphore:
                return await self.run_account(account, now)

        report.accounts = list(await asyncio.gather(*(bounded(a) for a in accounts)))
        report.finished_at = datetime.now(timezone.utc)

        logger.info(f"[pipeline] Batch finished: {report.summary()}")
        await self._notify_batch(report)
        return report

    async def _notify_batch(self, report: BatchReport) -> None:
        for result in report.results:
            if result.failed:
                error = result.error or next((s.error for s in result.slots if s.error), None)
                await self.notifier.notify_error(f"Publish failed: {result.account_name} ({result.platform})", error)
        if report.published or report.failed:
            await self.notifier.notify_info("Viral pipeline batch", report.summary())

    # -- queued posts --

    async def publish_due_posts(self, now: datetime) -> list[AccountRunResult]:
        results = []
        for post in await self.store.list_due_posts(now, DUE_POSTS_LIMIT):
            results.append(await self._publish_queued(post, now))
        return results

    async def _publish_queued(self, post: ScheduledPost, now: datetime) -> AccountRunResult:
        account = await self.store.get_account(post.account_id)
        if account is None or not account.is_active:
            result = AccountRunResult(post.account_id, "Unknown" if account is None else account.name, "unknown")
            failure = PublishResult(success=False, error="Account not found or inactive")
            await self.store.complete_scheduled_post(post.id, failure, now)
            result.slots.append(SlotOutcome(post.scheduled_at, False, post_id=post.id, error=failure.error))
            return result

        result = AccountRunResult(account.id, account.name, account.platform.value)
        try:
            adapter = await self.adapter_factory(account.platform)
            publish_result, attempts = await self.publish_with_retry(
                account,
                adapter,
                content=post.content,
                hashtags=post.hashtags,
                media=[MediaRef(url=u) for u in post.media_urls],
                now=now,
            )
            await self.store.complete_scheduled_post(post.id, publish_result, now)
        except Exception as exc:
            logger.exception(f"[pipeline][account={account.id}] Queued post {post.id} failed")
            result.error = str(exc)
            return result

        result.slots.append(_outcome(post.scheduled_at, publish_result, attempts, post.id))
        return result

    # -- automation --

    async def run_account(self, account: AccountContext, now: datetime) -> AccountRunResult:
        result = AccountRunResult(account.id, account.name, account.platform.value)
        try:
            await self._run_account(account, now, result)
        except Exception as exc:
            # Per-account isolation: report it, keep the batch going
            logger.exception(f"[pipeline][account={account.id}] Account run failed")
            result.error = str(exc)
        return result

    async def _run_account(self, account: AccountContext, now: datetime, result: AccountRunResult) -> None:
        slots = due_slots(
            account.posting_times,
            account.timezone,
            now,
            window_minutes=self.settings.schedule_window_minutes,
        )
        if not slots:
            logger.debug(f"[pipeline][account={account.id}] No due slot")
            return

        pending = []
        for slot in slots[: max(1, account.batch_size)]:
            if await self.store.is_slot_processed(account.id, slot):
                result.slots.append(SlotOutcome(slot, True, skipped=True))
            else:
                pending.append(slot)
        if not pending:
            return

        niche = NicheContext()
        if account.niche_id:
            niche = await self.store.get_niche(account.niche_id) or NicheContext(id=account.niche_id)

        trend = await self._pick_trend(account, niche, now, result)
        patterns = await self.store.list_viral_patterns(account.platform, account.niche_id)
        pattern: ViralPattern | None = patterns[0] if patterns else None
        if pattern:
            await self.store.increment_pattern_usage(pattern.id)

        try:
            generated = await generate_content(
                self.llm,
                niche=niche,
                platform=account.platform,
                tone=account.tone,
                trend_topic=trend.topic if trend else None,
                viral_pattern=pattern,
                custom_instructions=account.custom_instructions,
            )
        except (GenerationParseError, LLMError) as exc:
            logger.error(f"[pipeline][account={account.id}] Content generation failed, dropping candidate: {exc}")
            result.error = f"Content generation failed: {exc}"
            return

        self._check_content(account, generated)
        predicted = predict_viral_potential(
            extract_content_features(
                generated.content,
                generated.hashtags,
                emotional_trigger=bool(pattern and pattern.emotional_trigger),
                has_trend=trend is not None,
                pattern_success_rate=pattern.success_rate if pattern else None,
            )
        )
        result.predicted_viral_score = predicted

        adapter = await self.adapter_factory(account.platform)
        media = await self._fallback_media(account, adapter)
        for slot in pending:
            publish_result, attempts = await self.publish_with_retry(
                account, adapter, content=generated.content, hashtags=generated.hashtags, media=media, now=now
            )
            record = PostRecord(
                account_id=account.id,
                platform=account.platform,
                content=generated.content,
                hashtags=generated.hashtags,
                media_urls=[m.url for m in media if m.url],
                trend_topic=trend.topic if trend else None,
                pattern_id=pattern.id if pattern else None,
                predicted_viral_score=predicted,
                scheduled_at=slot,
                status="posted" if publish_result.success else "failed",
                posted_at=now if publish_result.success else None,
                external_post_id=publish_result.id if publish_result.success else None,
                post_url=publish_result.url if publish_result.success else None,
                error=publish_result.error,
            )
            post_id = await self.store.record_post(record)
            result.slots.append(_outcome(slot, publish_result, attempts, post_id))

            if not publish_result.success and account.error_handling == "stop":
                logger.info(f"[pipeline][account={account.id}] error_handling=stop, skipping remaining slots")
                break

    async def _pick_trend(
        self, account: AccountContext, niche: NicheContext, now: datetime, result: AccountRunResult
    ) -> TrendCandidate | None:
        if not account.niche_id:
            return None
        try:
            screening = await research_trending_topics(
                self.llm,
                niche,
                max_results=self.settings.trend_max_results,
                recency_days=self.settings.trend_recency_days,
                ttl_hours=niche.trend_ttl_hours or self.settings.trend_ttl_hours,
                now=now,
            )
        except (GenerationParseError, LLMError) as exc:
            logger.warning(f"[pipeline][account={account.id}] Trend research failed, continuing without trend: {exc}")
            return None

        result.rejected_topics = [(c.topic, reason) for c, reason in screening.rejected]
        if not screening.accepted:
            return None
        trend = screening.accepted[0]
        await self.store.save_trend(trend)
        result.trend_topic = trend.topic
        return trend

    async def _fallback_media(self, account: AccountContext, adapter: PlatformAdapter) -> list[MediaRef]:
        # Generated posts carry no media; image-only platforms get the profile picture
        if not adapter.requires_media or not account.credentials.access_token:
            return []
        url = await adapter.fallback_image_url(account.credentials.access_token, account.target_id)
        if not url:
            logger.warning(f"[pipeline][account={account.id}] No fallback image for {adapter.name}")
            return []
        return [MediaRef(url=url)]

    def _check_content(self, account: AccountContext, generated: GeneratedContent) -> None:
        length = validate_content_length(generated.content, account.platform)
        if not length.is_valid:
            logger.warning(f"[pipeline][account={account.id}] {length.message}; it will be truncated")
        tags = validate_hashtags(generated.hashtags, account.platform)
        if tags.message:
            logger.info(f"[pipeline][account={account.id}] {tags.message}")

    # -- publishing --

    async def publish_with_retry(
        self,
        account: AccountContext,
        adapter: PlatformAdapter,
        *,
        content: str,
        hashtags: list[str],
        media: list[MediaRef],
        now: datetime,
    ) -> tuple[PublishResult, int]:
        """Publish under the account lock, retrying retryable rejections and connectivity errors.

        Returns the final result and the number of attempts. Connectivity and
        auth failures that end the attempt loop come back as failed results.
        """
        max_attempts = max(1, self.settings.publish_max_attempts)
        attempts = 0
        while True:
            attempts += 1
            try:
                # Lock spans refresh + publish only, never the backoff sleep
                async with self.locks.hold(account.id):
                    await self._ensure_fresh_token(account, adapter, now)
                    request = PublishRequest(
                        platform=account.platform,
                        account_id=account.id,
                        credentials=account.credentials,
                        content=content,
                        hashtags=hashtags,
                        media=media,
                        target_id=account.target_id,
                    )
                    result = await adapter.publish(request)
            except AuthError as exc:
                logger.error(f"[pipeline][account={account.id}] AuthError: {exc}")
                return PublishResult(success=False, platform=adapter.name, error=str(exc)), attempts
            except ConnectivityError as exc:
                if attempts >= max_attempts:
                    logger.error(f"[pipeline][account={account.id}] ConnectivityError after {attempts} attempts: {exc}")
                    return PublishResult(success=False, platform=adapter.name, error=str(exc), retryable=True), attempts
                logger.warning(f"[pipeline][account={account.id}] attempt {attempts}/{max_attempts}: {exc}")
            else:
                if result.success or not result.retryable or attempts >= max_attempts:
                    return result, attempts
                logger.warning(f"[pipeline][account={account.id}] attempt {attempts}/{max_attempts} rejected: {result.error}")

            await self._sleep(self.settings.publish_retry_backoff_sec * 2 ** (attempts - 1))

    async def _reload_tokens(self, account: AccountContext) -> None:
        # Another holder of this lock may have rotated the tokens since the batch loaded them
        stored = await self.store.get_account_tokens(account.id)
        if stored is None:
            return
        account.credentials = account.credentials.model_copy(update={
            "access_token": stored.access_token,
            "refresh_token": stored.refresh_token,
            "expires_at": stored.expires_at,
        })

    async def _ensure_fresh_token(self, account: AccountContext, adapter: PlatformAdapter, now: datetime) -> None:
        await self._reload_tokens(account)
        creds = account.credentials
        if not creds.is_expired(now):
            return
        if not (creds.refresh_token and adapter.supports_refresh):
            logger.warning(f"[pipeline][account={account.id}] Access token expired and cannot be refreshed")
            return

        logger.info(f"[pipeline][account={account.id}] Refreshing access token")
        pair = await adapter.refresh_token(creds.refresh_token)
        account.credentials = PlatformCredentials(
            client_id=creds.client_id,
            client_secret=creds.client_secret,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token or creds.refresh_token,
            expires_at=pair.expires_at(now),
        )
        await self.store.save_account_tokens(account.id, account.credentials)

    # -- scoring --

    async def score_post(self, post_id: str, account_id: str) -> ViralScoreResult | None:
        """Viral score of a post from its latest engagement snapshot, or None if unmeasured."""
        snapshot = await self.store.get_latest_snapshot(post_id)
        if snapshot is None:
            return None
        definition = await self.store.get_viral_definition(account_id) or ViralDefinition(account_id=account_id)
        return calculate_viral_score_from_snapshot(snapshot, definition)


def _outcome(slot: datetime | None, result: PublishResult, attempts: int, post_id: str | None) -> SlotOutcome:
    return SlotOutcome(
        scheduled_at=slot,
        success=result.success,
        post_id=post_id,
        external_id=result.id,
        url=result.url,
        error=result.error,
        attempts=attempts,
    )
