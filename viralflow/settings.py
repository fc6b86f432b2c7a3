from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "viralflow"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "VIRALFLOW_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/viralflow",
        validation_alias=AliasChoices("DATABASE_URL", "VIRALFLOW_DATABASE_URL"),
    )
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "VIRALFLOW_REDIS_URL"))

    # Static platform app credentials (stored overrides in app_settings win)
    linkedin_client_id: str | None = Field(default=None, validation_alias=AliasChoices("LINKEDIN_CLIENT_ID", "VIRALFLOW_LINKEDIN_CLIENT_ID"))
    linkedin_client_secret: str | None = Field(default=None, validation_alias=AliasChoices("LINKEDIN_CLIENT_SECRET", "VIRALFLOW_LINKEDIN_CLIENT_SECRET"))
    facebook_app_id: str | None = Field(default=None, validation_alias=AliasChoices("FACEBOOK_APP_ID", "VIRALFLOW_FACEBOOK_APP_ID"))
    facebook_app_secret: str | None = Field(default=None, validation_alias=AliasChoices("FACEBOOK_APP_SECRET", "VIRALFLOW_FACEBOOK_APP_SECRET"))
    pinterest_app_id: str | None = Field(default=None, validation_alias=AliasChoices("PINTEREST_APP_ID", "VIRALFLOW_PINTEREST_APP_ID"))
    pinterest_app_secret: str | None = Field(default=None, validation_alias=AliasChoices("PINTEREST_APP_SECRET", "VIRALFLOW_PINTEREST_APP_SECRET"))
    graph_api_version: str = Field(default="v18.0", validation_alias=AliasChoices("GRAPH_API_VERSION", "VIRALFLOW_GRAPH_API_VERSION"))

    http_timeout_sec: float = Field(default=30.0, validation_alias=AliasChoices("HTTP_TIMEOUT_SEC", "VIRALFLOW_HTTP_TIMEOUT_SEC"))
    instagram_container_wait_sec: float = Field(default=2.0, validation_alias=AliasChoices("INSTAGRAM_CONTAINER_WAIT_SEC", "VIRALFLOW_INSTAGRAM_CONTAINER_WAIT_SEC"))

    publish_max_parallel: int = Field(default=5, validation_alias=AliasChoices("PUBLISH_MAX_PARALLEL", "VIRALFLOW_PUBLISH_MAX_PARALLEL"))
    publish_max_attempts: int = Field(default=3, validation_alias=AliasChoices("PUBLISH_MAX_ATTEMPTS", "VIRALFLOW_PUBLISH_MAX_ATTEMPTS"))
    publish_retry_backoff_sec: float = Field(default=2.0, validation_alias=AliasChoices("PUBLISH_RETRY_BACKOFF_SEC", "VIRALFLOW_PUBLISH_RETRY_BACKOFF_SEC"))
    schedule_window_minutes: int = Field(default=6, validation_alias=AliasChoices("SCHEDULE_WINDOW_MINUTES", "VIRALFLOW_SCHEDULE_WINDOW_MINUTES"))

    trend_recency_days: int = Field(default=7, validation_alias=AliasChoices("TREND_RECENCY_DAYS", "VIRALFLOW_TREND_RECENCY_DAYS"))
    trend_max_results: int = Field(default=3, validation_alias=AliasChoices("TREND_MAX_RESULTS", "VIRALFLOW_TREND_MAX_RESULTS"))
    trend_ttl_hours: int = Field(default=72, validation_alias=AliasChoices("TREND_TTL_HOURS", "VIRALFLOW_TREND_TTL_HOURS"))

    llm_api_key: str | None = Field(default=None, validation_alias=AliasChoices("OPENROUTER_API_KEY", "OPENAI_API_KEY", "VIRALFLOW_LLM_API_KEY"))
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1", validation_alias=AliasChoices("LLM_BASE_URL", "VIRALFLOW_LLM_BASE_URL"))
    llm_content_model: str = Field(default="anthropic/claude-sonnet-4", validation_alias=AliasChoices("LLM_CONTENT_MODEL", "VIRALFLOW_LLM_CONTENT_MODEL"))
    llm_research_model: str = Field(default="google/gemini-2.5-flash", validation_alias=AliasChoices("LLM_RESEARCH_MODEL", "VIRALFLOW_LLM_RESEARCH_MODEL"))

    account_lock_backend: str = Field(default="local", validation_alias=AliasChoices("ACCOUNT_LOCK_BACKEND", "VIRALFLOW_ACCOUNT_LOCK_BACKEND"))
    # Celery prefork processes share nothing in memory, so the worker locks through Redis
    worker_account_lock_backend: str = Field(default="redis", validation_alias=AliasChoices("WORKER_ACCOUNT_LOCK_BACKEND", "VIRALFLOW_WORKER_ACCOUNT_LOCK_BACKEND"))
    account_lock_ttl_sec: int = Field(default=600, validation_alias=AliasChoices("ACCOUNT_LOCK_TTL_SEC", "VIRALFLOW_ACCOUNT_LOCK_TTL_SEC"))
    account_lock_wait_timeout_sec: int = Field(default=300, validation_alias=AliasChoices("ACCOUNT_LOCK_WAIT_TIMEOUT_SEC", "VIRALFLOW_ACCOUNT_LOCK_WAIT_TIMEOUT_SEC"))

    telegram_bot_token: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "VIRALFLOW_TELEGRAM_BOT_TOKEN"))
    telegram_chat_id: str | None = Field(default=None, validation_alias=AliasChoices("TELEGRAM_CHAT_ID", "VIRALFLOW_TELEGRAM_CHAT_ID"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
