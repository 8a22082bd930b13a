"""
Settings for the automation engine, read from the environment.

Each concern has its own prefixed group (``POSTGRES_``, ``REDIS_``,
``ENGINE_``, ``CHANNEL_``, ``ENTITY_``) nested under Settings.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment; only DEV changes behaviour (docs and CORS)."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class RedisSettings(BaseSettings):
    """Optional Redis cache in front of workflow graphs and trigger lookups."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Turn the Redis cache on")
    host: str = Field(default="localhost")
    port: int = Field(default=6379)
    db: int = Field(default=0)
    password: Optional[str] = Field(default=None)
    max_connections: int = Field(default=50, ge=1, description="Client pool size")
    socket_timeout: float = Field(default=5.0, description="Per-command timeout (seconds)")
    socket_connect_timeout: float = Field(default=5.0, description="Connect timeout (seconds)")
    cache_ttl: int = Field(default=300, ge=1, description="Expiry of cached entries (seconds)")

    @property
    def url(self) -> str:
        credentials = f":{self.password}@" if self.password else ""
        return f"redis://{credentials}{self.host}:{self.port}/{self.db}"


class PostgresSettings(BaseSettings):
    """Connection and pool settings for the workflow store."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    database: str = Field(default="automation_engine")
    user: str = Field(default="postgres")
    password: str = Field(default="postgres")
    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=20, ge=0)
    pool_timeout: float = Field(default=10.0, description="Seconds to wait for a pooled connection")

    @property
    def url(self) -> str:
        """asyncpg DSN for SQLAlchemy."""
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


class EngineSettings(BaseSettings):
    """
    Execution engine settings.

    Delays shorter than sync_delay_threshold_seconds are awaited in-process;
    longer ones suspend the execution and are resumed by the scheduler.
    """

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    sync_delay_threshold_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Delays below this are awaited inline (seconds)",
    )
    scheduler_poll_interval: float = Field(default=15.0, gt=0.0, description="Checkpoint poll interval (seconds)")
    scheduler_batch_size: int = Field(default=50, ge=1, description="Max due executions resumed per sweep")
    max_concurrent_workflows: int = Field(
        default=10,
        ge=1,
        description="Max workflows run concurrently for a single event",
    )
    execution_history_limit: int = Field(default=50, ge=1, description="Default page size for execution history")
    shutdown_timeout: float = Field(default=30.0, description="Wait for in-flight event dispatches on shutdown")
    approval_reminders_enabled: bool = Field(default=True, description="E-mail approvers about stale approvals")
    approval_reminder_after_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Age of an approval checkpoint before approvers are reminded (hours)",
    )


class ChannelSettings(BaseSettings):
    """
    Environment-level notification channel defaults.

    Used when the acting user has no channel configuration of their own.
    """

    model_config = SettingsConfigDict(env_prefix="CHANNEL_")

    email_provider: str = Field(default="none", description="sendgrid, mailgun or none")
    sendgrid_api_key: Optional[str] = Field(default=None)
    mailgun_api_key: Optional[str] = Field(default=None)
    mailgun_domain: Optional[str] = Field(default=None)
    email_from_address: str = Field(default="noreply@example.com")
    email_from_name: str = Field(default="Automations")

    whatsapp_enabled: bool = Field(default=False)
    whatsapp_access_token: Optional[str] = Field(default=None)
    whatsapp_phone_number_id: Optional[str] = Field(default=None)
    whatsapp_api_version: str = Field(default="v18.0")

    http_timeout: float = Field(default=10.0, description="Timeout for provider API calls (seconds)")
    webhook_timeout: float = Field(default=15.0, description="Default timeout for webhook actions (seconds)")


class EntitySettings(BaseSettings):
    """Entity type to table mapping for actions that write business records."""

    model_config = SettingsConfigDict(env_prefix="ENTITY_")

    tables: dict[str, str] = Field(
        default_factory=lambda: {
            "reminder": "reminders",
            "appointment": "appointments",
            "client": "clients",
            "invoice": "invoices",
            "service": "services",
            "piano": "pianos",
        },
        description="Whitelisted entity tables the engine may write to",
    )


class Settings(BaseSettings):
    """Top-level settings object handed to the app and the engine."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    app_name: str = Field(default="Workflow Automation Engine")
    environment: Environment = Field(default=Environment.DEV)
    log_level: str = Field(default="INFO")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    channels: ChannelSettings = Field(default_factory=ChannelSettings)
    entities: EntitySettings = Field(default_factory=EntitySettings)

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: str | Environment) -> Environment:
        return v if isinstance(v, Environment) else Environment(str(v).lower())

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEV


@lru_cache()
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
