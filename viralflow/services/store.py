"""
Persistence contract consumed by the pipeline.

The core never embeds SQL: it talks to a `PipelineStore`. `SqlPipelineStore`
implements it over SQLAlchemy async sessions and the minimal mapping in
`viralflow.models`; tests use an in-memory fake.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from viralflow.db import session_scope
from viralflow.models import (
    Account,
    AppSetting,
    AutomationProfile,
    Niche,
    Post,
    PostEngagement,
    TrendingTopic,
    ViralDefinitionRow,
    ViralPatternRow,
)
from viralflow.schemas import (
    METRIC_NAMES,
    AccountContext,
    EngagementSnapshot,
    NicheContext,
    Platform,
    PlatformCredentials,
    PostRecord,
    ScheduledPost,
    TrendCandidate,
    ViralDefinition,
    ViralPattern,
)
from viralflow.services.publisher_adapter import PublishResult

logger = logging.getLogger(__name__)


class PipelineStore(Protocol):
    async def list_active_accounts(self) -> list[AccountContext]: ...

    async def get_account(self, account_id: str) -> AccountContext | None: ...

    async def get_niche(self, niche_id: str) -> NicheContext | None: ...

    async def get_viral_definition(self, account_id: str) -> ViralDefinition | None: ...

    async def get_latest_snapshot(self, post_id: str) -> EngagementSnapshot | None: ...

    async def list_viral_patterns(self, platform: Platform, niche_id: str | None) -> list[ViralPattern]: ...

    async def increment_pattern_usage(self, pattern_id: str) -> None: ...

    async def is_slot_processed(self, account_id: str, scheduled_at: datetime) -> bool: ...

    async def record_post(self, record: PostRecord) -> str: ...

    async def list_due_posts(self, now: datetime, limit: int) -> list[ScheduledPost]: ...

    async def complete_scheduled_post(self, post_id: str, result: PublishResult, now: datetime) -> None: ...

    async def save_trend(self, candidate: TrendCandidate) -> str: ...

    async def get_app_settings(self, keys: Sequence[str]) -> dict[str, str | None]: ...

    async def get_account_tokens(self, account_id: str) -> PlatformCredentials | None: ...

    async def save_account_tokens(self, account_id: str, credentials: PlatformCredentials) -> None: ...


def _account_context(account: Account, profile: AutomationProfile | None) -> AccountContext:
    schedule = account.posting_schedule or {}
    return AccountContext(
        id=account.id,
        name=account.name,
        platform=Platform(account.platform),
        credentials=PlatformCredentials(
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            expires_at=account.token_expires_at,
        ),
        target_id=account.username,
        niche_id=account.niche_id,
        tone=account.tone or "professional",
        custom_instructions=account.custom_instructions,
        posting_times=[t for t in schedule.get("times") or [] if isinstance(t, str)],
        timezone=schedule.get("timezone") or "UTC",
        batch_size=max(1, profile.batch_size) if profile else 1,
        error_handling=profile.error_handling if profile and profile.error_handling == "stop" else "continue",
        is_active=account.is_active,
    )


class SqlPipelineStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    async def list_active_accounts(self) -> list[AccountContext]:
        """Active accounts that have an enabled automation profile."""
        async with session_scope(self.session_factory) as session:
            rows = (
                await session.execute(
                    sa.select(Account, AutomationProfile)
                    .join(AutomationProfile, AutomationProfile.account_id == Account.id)
                    .where(AutomationProfile.is_enabled.is_(True), Account.is_active.is_(True))
                    .order_by(Account.created_at)
                )
            ).all()
        return [_account_context(account, profile) for account, profile in rows]

    async def get_account(self, account_id: str) -> AccountContext | None:
        async with session_scope(self.session_factory) as session:
            account = await session.get(Account, account_id)
            if account is None:
                return None
            profile = await session.scalar(
                sa.select(AutomationProfile).where(AutomationProfile.account_id == account_id).limit(1)
            )
        return _account_context(account, profile)

    async def get_niche(self, niche_id: str) -> NicheContext | None:
        async with session_scope(self.session_factory) as session:
            niche = await session.get(Niche, niche_id)
        if niche is None:
            return None
        return NicheContext(
            id=niche.id,
            name=niche.name,
            keywords=list(niche.keywords or []),
            target_audience=niche.target_audience or "",
            content_themes=list(niche.content_themes or []),
            trend_ttl_hours=niche.trend_ttl_hours,
        )

    async def get_viral_definition(self, account_id: str) -> ViralDefinition | None:
        async with session_scope(self.session_factory) as session:
            row = await session.scalar(
                sa.select(ViralDefinitionRow).where(ViralDefinitionRow.account_id == account_id)
            )
        if row is None:
            return None
        # Numeric columns come back as Decimal
        values: dict = {"account_id": account_id}
        for name in METRIC_NAMES:
            values[f"{name}_weight"] = float(getattr(row, f"{name}_weight"))
            values[f"{name}_threshold"] = float(getattr(row, f"{name}_threshold"))
        values.update(
            minimum_viral_score=float(row.minimum_viral_score),
            timeframe_hours=row.timeframe_hours,
            comparison_method=row.comparison_method,
        )
        return ViralDefinition.model_validate(values)

    async def get_latest_snapshot(self, post_id: str) -> EngagementSnapshot | None:
        async with session_scope(self.session_factory) as session:
            row = await session.scalar(
                sa.select(PostEngagement)
                .where(PostEngagement.post_id == post_id)
                .order_by(PostEngagement.checkpoint_hours.desc(), PostEngagement.recorded_at.desc())
                .limit(1)
            )
        return EngagementSnapshot.model_validate(row) if row is not None else None

    async def list_viral_patterns(self, platform: Platform, niche_id: str | None) -> list[ViralPattern]:
        stmt = sa.select(ViralPatternRow).where(ViralPatternRow.platform == platform.value)
        if niche_id:
            stmt = stmt.where(sa.or_(ViralPatternRow.niche_id == niche_id, ViralPatternRow.niche_id.is_(None)))
        stmt = stmt.order_by(ViralPatternRow.success_rate.desc())
        async with session_scope(self.session_factory) as session:
            rows = (await session.scalars(stmt)).all()
        return [
            ViralPattern(
                id=row.id,
                hook_example=row.hook_example,
                content_structure=row.content_structure or "",
                emotional_trigger=row.emotional_trigger or "",
                success_rate=row.success_rate,
            )
            for row in rows
        ]

    async def increment_pattern_usage(self, pattern_id: str) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(
                sa.update(ViralPatternRow)
                .where(ViralPatternRow.id == pattern_id)
                .values(usage_count=ViralPatternRow.usage_count + 1)
            )

    async def is_slot_processed(self, account_id: str, scheduled_at: datetime) -> bool:
        async with session_scope(self.session_factory) as session:
            found = await session.scalar(
                sa.select(Post.id)
                .where(
                    Post.account_id == account_id,
                    Post.scheduled_at == scheduled_at,
                    Post.status.in_(("posted", "failed")),
                )
                .limit(1)
            )
        return found is not None

    async def record_post(self, record: PostRecord) -> str:
        post = Post(**record.model_dump(mode="python") | {"platform": record.platform.value})
        async with session_scope(self.session_factory) as session:
            session.add(post)
            await session.flush()
            post_id = post.id
        logger.info(f"[store] Recorded post {post_id} account={record.account_id} status={record.status}")
        return post_id

    async def list_due_posts(self, now: datetime, limit: int) -> list[ScheduledPost]:
        async with session_scope(self.session_factory) as session:
            rows = (
                await session.scalars(
                    sa.select(Post)
                    .where(Post.status == "scheduled", Post.scheduled_at <= now)
                    .order_by(Post.scheduled_at)
                    .limit(limit)
                )
            ).all()
        return [ScheduledPost.model_validate(row) for row in rows]

    async def complete_scheduled_post(self, post_id: str, result: PublishResult, now: datetime) -> None:
        values = {"status": "posted" if result.success else "failed", "error": result.error}
        if result.success:
            values.update(posted_at=now, external_post_id=result.id, post_url=result.url)
        async with session_scope(self.session_factory) as session:
            await session.execute(sa.update(Post).where(Post.id == post_id).values(**values))

    async def save_trend(self, candidate: TrendCandidate) -> str:
        topic = TrendingTopic(
            niche_id=candidate.niche_id,
            topic=candidate.topic,
            source_url=candidate.source_url,
            source_published_at=candidate.source_published_at,
            relevance_score=candidate.relevance_score,
            is_current_version=candidate.is_current_version,
            expires_at=candidate.expires_at,
        )
        async with session_scope(self.session_factory) as session:
            session.add(topic)
            await session.flush()
            return topic.id

    async def get_app_settings(self, keys: Sequence[str]) -> dict[str, str | None]:
        async with session_scope(self.session_factory) as session:
            rows = (await session.scalars(sa.select(AppSetting).where(AppSetting.key.in_(list(keys))))).all()
        # Dashboard stores some values JSON-quoted
        return {row.key: row.value.strip('"') if row.value else None for row in rows}

    async def get_account_tokens(self, account_id: str) -> PlatformCredentials | None:
        """Current tokens as persisted, bypassing any copy loaded earlier in the batch."""
        async with session_scope(self.session_factory) as session:
            row = (
                await session.execute(
                    sa.select(Account.access_token, Account.refresh_token, Account.token_expires_at)
                    .where(Account.id == account_id)
                )
            ).first()
        if row is None:
            return None
        return PlatformCredentials(access_token=row[0], refresh_token=row[1], expires_at=row[2])

    async def save_account_tokens(self, account_id: str, credentials: PlatformCredentials) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(
                sa.update(Account)
                .where(Account.id == account_id)
                .values(
                    access_token=credentials.access_token,
                    refresh_token=credentials.refresh_token,
                    token_expires_at=credentials.expires_at,
                )
            )
