from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str) -> AliasChoices:
    return AliasChoices(name, f"AUTOREPLY_{name}")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "review-autoreply"
    environment: str = Field(default="local", validation_alias=_env("ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/autoreply",
        validation_alias=_env("DATABASE_URL"),
    )
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=_env("REDIS_URL"))
    celery_enabled: bool = Field(default=True, validation_alias=_env("CELERY_ENABLED"))

    # Scheduler: one cron expression per sync slot (UTC)
    scheduler_enabled: bool = Field(default=True, validation_alias=_env("SCHEDULER_ENABLED"))
    slot_1_cron: str = Field(default="0 12 * * *", validation_alias=_env("SLOT_1_CRON"))
    slot_2_cron: str = Field(default="0 18 * * *", validation_alias=_env("SLOT_2_CRON"))

    # Language-generation service
    openai_api_key: str | None = Field(default=None, validation_alias=_env("OPENAI_API_KEY"))
    openai_model: str = Field(default="gpt-4.1-mini", validation_alias=_env("OPENAI_MODEL"))
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias=_env("OPENAI_BASE_URL"))
    llm_timeout_sec: float = Field(default=30.0, validation_alias=_env("LLM_TIMEOUT_SEC"))

    # Review source connector
    google_api_base_url: str = Field(
        default="https://mybusiness.googleapis.com/v4",
        validation_alias=_env("GOOGLE_API_BASE_URL"),
    )
    google_access_token: str | None = Field(default=None, validation_alias=_env("GOOGLE_ACCESS_TOKEN"))
    publish_timeout_sec: float = Field(default=20.0, validation_alias=_env("PUBLISH_TIMEOUT_SEC"))

    # Notification delivery
    brevo_api_key: str | None = Field(default=None, validation_alias=_env("BREVO_API_KEY"))
    email_sender: str = Field(default="hello@replyfast.app", validation_alias=_env("EMAIL_SENDER"))
    email_sender_name: str = Field(default="ReplyFast", validation_alias=_env("EMAIL_SENDER_NAME"))
    admin_email: str | None = Field(default=None, validation_alias=_env("ADMIN_EMAIL"))
    notify_timeout_sec: float = Field(default=10.0, validation_alias=_env("NOTIFY_TIMEOUT_SEC"))

    # Pipeline tuning
    generation_batch_size: int = Field(default=5, validation_alias=_env("GENERATION_BATCH_SIZE"))
    generation_batch_delay_sec: float = Field(default=1.0, validation_alias=_env("GENERATION_BATCH_DELAY_SEC"))
    run_deadline_sec: float = Field(default=300.0, validation_alias=_env("RUN_DEADLINE_SEC"))
    max_reviews_per_run: int = Field(default=50, validation_alias=_env("MAX_REVIEWS_PER_RUN"))
    scheduled_lookback_hours: int = Field(default=24, validation_alias=_env("SCHEDULED_LOOKBACK_HOURS"))
    persist_fallback_replies: bool = Field(default=False, validation_alias=_env("PERSIST_FALLBACK_REPLIES"))
    retry_batch_size: int = Field(default=20, validation_alias=_env("RETRY_BATCH_SIZE"))

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
