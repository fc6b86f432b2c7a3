"""
Celery tasks for the viral pipeline.

pipeline.run_batch: one scheduler tick, run in a fresh event loop via asyncio.run().
pipeline.score_post: recompute a post's viral score from its latest snapshot.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from viralflow.db import dispose_engine
from viralflow.services.account_lock import get_lock_manager
from viralflow.services.llm_provider import build_llm_provider
from viralflow.services.pipeline import PipelineOrchestrator
from viralflow.services.store import SqlPipelineStore
from viralflow.settings import get_settings
from viralflow.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _orchestrator() -> AsyncIterator[PipelineOrchestrator]:
    settings = get_settings()
    llm = build_llm_provider()
    locks = get_lock_manager(settings.worker_account_lock_backend)
    try:
        yield PipelineOrchestrator(SqlPipelineStore(), llm=llm, locks=locks, settings=settings)
    finally:
        # Pooled connections are bound to this event loop, which asyncio.run closes afterwards
        await llm.aclose()
        await locks.aclose()
        await dispose_engine()


async def _run_batch_async(now: datetime | None = None) -> dict:
    async with _orchestrator() as orchestrator:
        report = await orchestrator.run_batch(now)
    return report.to_dict()


async def _score_post_async(post_id: str, account_id: str) -> dict | None:
    async with _orchestrator() as orchestrator:
        result = await orchestrator.score_post(post_id, account_id)
    return result.model_dump() if result else None


@celery_app.task(bind=True, name="pipeline.run_batch", queue="pipeline")
def run_batch(self, now: str | None = None) -> dict:
    """Celery task: run one pipeline batch.

    Not auto-retried: a batch is idempotent per slot and the next beat tick
    picks up anything still due.
    """
    logger.info(f"[worker] Starting batch (celery_id={self.request.id})")
    tick = datetime.fromisoformat(now) if now else None
    try:
        result = asyncio.run(_run_batch_async(tick))
    except Exception as e:
        logger.error(f"[worker] Batch failed: {e}")
        raise
    logger.info(f"[worker] {result['message']}")
    return result


@celery_app.task(
    bind=True,
    name="pipeline.score_post",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    queue="pipeline",
)
def score_post(self, post_id: str, account_id: str) -> dict | None:
    logger.info(f"[worker] Scoring post {post_id} (attempt={self.request.retries + 1})")
    return asyncio.run(_score_post_async(post_id, account_id))
