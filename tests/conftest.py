from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Sequence

import httpx
import pytest

from viralflow.schemas import (
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
from viralflow.services import notify
from viralflow.services.credentials import ClientCredentials
from viralflow.services.llm_provider import LLMProvider, set_llm_provider
from viralflow.services.publisher_adapter import PlatformAdapter, PublishResult, TokenPair
from viralflow.settings import Settings, get_settings

NOW = datetime(2025, 6, 2, 14, 2, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    for name in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "OPENROUTER_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    set_llm_provider(None)
    notify.reset_throttle()
    notify.set_transport(None)
    yield
    get_settings.cache_clear()
    set_llm_provider(None)
    notify.set_transport(None)


@pytest.fixture
def settings() -> Settings:
    return Settings().model_copy(update={
        "publish_max_parallel": 3,
        "publish_max_attempts": 3,
        "publish_retry_backoff_sec": 0.5,
        "schedule_window_minutes": 6,
        "trend_max_results": 3,
        "trend_recency_days": 7,
        "trend_ttl_hours": 72,
        "account_lock_backend": "local",
    })


@pytest.fixture
def http_mock():
    """Factory: handler → (MockTransport, list of requests seen)."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        calls: list[httpx.Request] = []

        def wrapped(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        return httpx.MockTransport(wrapped), calls

    return factory


@pytest.fixture
def app_credentials() -> ClientCredentials:
    return ClientCredentials(client_id="app-id", client_secret="app-secret")


# ── Fakes ────────────────────────────────────────────────────

class FakeStore:
    """In-memory PipelineStore."""

    def __init__(self, accounts: Sequence[AccountContext] = ()):
        self.accounts = {a.id: a for a in accounts}
        self.niches: dict[str, NicheContext] = {}
        self.definitions: dict[str, ViralDefinition] = {}
        self.snapshots: dict[str, EngagementSnapshot] = {}
        self.patterns: list[ViralPattern] = []
        self.pattern_usage: Counter[str] = Counter()
        self.posts: list[PostRecord] = []
        self.due_posts: list[ScheduledPost] = []
        self.completed: dict[str, PublishResult] = {}
        self.trends: list[TrendCandidate] = []
        self.app_settings: dict[str, str | None] = {}
        self.saved_tokens: dict[str, PlatformCredentials] = {}

    async def list_active_accounts(self):
        return [a for a in self.accounts.values() if a.is_active]

    async def get_account(self, account_id):
        return self.accounts.get(account_id)

    async def get_niche(self, niche_id):
        return self.niches.get(niche_id)

    async def get_viral_definition(self, account_id):
        return self.definitions.get(account_id)

    async def get_latest_snapshot(self, post_id):
        return self.snapshots.get(post_id)

    async def list_viral_patterns(self, platform, niche_id):
        return sorted(self.patterns, key=lambda p: p.success_rate, reverse=True)

    async def increment_pattern_usage(self, pattern_id):
        self.pattern_usage[pattern_id] += 1

    async def is_slot_processed(self, account_id, scheduled_at):
        return any(p.account_id == account_id and p.scheduled_at == scheduled_at for p in self.posts)

    async def record_post(self, record):
        self.posts.append(record)
        return f"post-{len(self.posts)}"

    async def list_due_posts(self, now, limit):
        due = [p for p in self.due_posts if p.scheduled_at <= now and p.id not in self.completed]
        return due[:limit]

    async def complete_scheduled_post(self, post_id, result, now):
        self.completed[post_id] = result

    async def save_trend(self, candidate):
        self.trends.append(candidate)
        return f"trend-{len(self.trends)}"

    async def get_app_settings(self, keys):
        return {k: self.app_settings[k] for k in keys if k in self.app_settings}

    async def get_account_tokens(self, account_id):
        if account_id in self.saved_tokens:
            return self.saved_tokens[account_id]
        account = self.accounts.get(account_id)
        return account.credentials if account else None

    async def save_account_tokens(self, account_id, credentials):
        self.saved_tokens[account_id] = credentials


class ScriptedLLM(LLMProvider):
    """Returns canned answers per purpose; an Exception answer is raised."""

    def __init__(self, content: str | Exception = "", research: str | Exception = '{"topics": []}'):
        self.answers = {"content": content, "research": research}
        self.calls: list[str] = []

    async def complete(self, *, system, prompt, max_tokens=1024, purpose="content"):
        self.calls.append(purpose)
        answer = self.answers[purpose]
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeAdapter(PlatformAdapter):
    """Scripted publisher; the last scripted outcome repeats."""

    platform = Platform.linkedin
    supports_refresh = True

    def __init__(self, outcomes: Sequence[PublishResult | Exception] | None = None):
        super().__init__(timeout=1)
        self.outcomes = list(outcomes or [PublishResult(success=True, id="ext-1", url="https://example.com/p/1")])
        self.requests = []
        self.refresh_calls: list[str] = []

    async def publish(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def exchange_code(self, code, redirect_uri):
        return TokenPair(access_token="exchanged")

    async def refresh_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        return TokenPair(access_token="fresh-token", refresh_token="fresh-refresh", expires_in=3600)


class RecordingNotifier:
    def __init__(self):
        self.errors: list[tuple[str, object]] = []
        self.infos: list[tuple[str, object]] = []

    async def notify_error(self, title, payload=None):
        self.errors.append((title, payload))
        return True

    async def notify_info(self, title, payload=None):
        self.infos.append((title, payload))
        return True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float):
        sleeps.append(seconds)

    return _sleep
