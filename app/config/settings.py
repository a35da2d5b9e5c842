from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Birthday Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./birthday_notifier.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Dispatch channel
    NOTIFIER_QUEUE_NAME: str = "birthday-notifications-queue"
    DEAD_LETTER_QUEUE_NAME: str = "birthday-notifications-dead-letter-queue"
    DELIVERY_MAX_RETRIES: int = 3
    DELIVERY_RETRY_DELAY_SECONDS: int = 60

    # Scheduling
    SCAN_INTERVAL_SECONDS: int = 60
    SCAN_BUFFER_SECONDS: int = 60
    NOTIFICATION_HOUR: int = 9
    LEAP_DAY_RULE: str = "feb28"

    # Idempotency cache
    IDEMPOTENCY_TTL_SECONDS: int = 24 * 60 * 60
    IDEMPOTENCY_KEY_PREFIX: str = "notification"

    # Notification webhook
    NOTIFICATION_WEBHOOK_URL: str = "<your-notification-webhook-url>"
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("LEAP_DAY_RULE")
    def validate_leap_day_rule(cls, v: str) -> str:
        rule = v.strip().lower()
        if rule not in ("feb28", "mar1"):
            raise ValueError(f"Unsupported leap day rule: {v}")
        return rule

    @property
    def REDIS_URL(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
