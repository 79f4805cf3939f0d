# engagement_crm/core/config.py
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables (or a local `.env` file)
    at runtime and cover:
    - DB connection
    - Webhook secrets for the video-conferencing and messaging providers
    - Outbound messaging / insights collaborators
    - Internal API key
    """

    APP_NAME: str = "Engagement CRM"
    APP_ENV: str = Field("local", description="Environment name: local/test/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root logging level.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./engagement_crm.db",
        description="SQLAlchemy-compatible async database URL",
    )

    INTERNAL_API_KEY: str | None = Field(
        default=None,
        description="API key required for hitting /internal endpoints",
    )

    # --- Video-conferencing provider webhooks ---
    ZOOM_WEBHOOK_SECRET_TOKEN: str | None = Field(
        default=None,
        description="Secret token used to sign lifecycle webhooks and URL validation challenges.",
    )
    WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS: int = Field(
        default=300,
        description="Maximum accepted clock skew between the provider timestamp and now.",
    )

    # --- Outbound messaging collaborator ---
    MESSAGING_API_URL: str | None = Field(
        default=None,
        description="Endpoint accepting idempotent template send requests.",
    )
    MESSAGING_API_TOKEN: str | None = Field(
        default=None,
        description="Bearer token for the messaging endpoint.",
    )
    MESSAGING_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Per-request timeout for outbound messages.",
    )
    MESSAGING_WEBHOOK_VERIFY_TOKEN: str | None = Field(
        default=None,
        description="Token expected in the messaging provider's subscribe handshake.",
    )
    DISPATCH_CONCURRENCY: int = Field(
        default=8,
        description="Maximum number of concurrent outbound sends per dispatch.",
    )

    # --- Insights (text generation) collaborator ---
    OPENROUTER_API_KEY: str | None = Field(
        default=None,
        description="API key for the text-generation provider.",
    )
    OPENROUTER_API_URL: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        description="Chat completions endpoint used for AI insights.",
    )
    INSIGHTS_MODEL: str = Field(
        default="mistralai/devstral-2512:free",
        description="Model identifier sent to the text-generation provider.",
    )
    INSIGHTS_TIMEOUT_SECONDS: float = Field(
        default=20.0,
        description="Timeout for a single insights generation call.",
    )

    LEADERBOARD_SIZE: int = Field(
        default=5,
        description="Number of users returned by the engagement leaderboard.",
    )
    FINALIZE_LEASE_SECONDS: int = Field(
        default=300,
        description="How long a finalize claim blocks other workers before it counts as abandoned.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("MESSAGING_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def normalize_messaging_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("INSIGHTS_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def normalize_insights_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 20.0
        return parsed_value

    @field_validator("DISPATCH_CONCURRENCY", mode="before")
    @classmethod
    def normalize_dispatch_concurrency(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 8
        return parsed_value

    @field_validator("FINALIZE_LEASE_SECONDS", mode="before")
    @classmethod
    def normalize_finalize_lease(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 300
        return parsed_value


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
