from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "TodoList Notification Server"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "UTC"

    # Database
    DATABASE_URL: str = "sqlite:///./todolist.db"

    # Authentication boundary
    JWT_SECRET_KEY: str = "<your-jwt-secret-key>"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # RabbitMQ (Celery broker)
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_VHOST: str = "/"

    # Redis (Celery result backend & job locks)
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Notification queue topology
    NOTIFICATION_EXCHANGE_NAME: str = "notification.exchange"
    NOTIFICATION_QUEUE_NAME: str = "notification.queue"
    NOTIFICATION_ROUTING_KEY: str = "notification.created"
    NOTIFICATION_DLX_NAME: str = "notification.dlx"
    NOTIFICATION_DLQ_NAME: str = "notification.dlq"
    NOTIFICATION_DLQ_ROUTING_KEY: str = "notification.failed"
    NOTIFICATION_MESSAGE_TTL_MS: int = 300000
    DEFAULT_QUEUE_NAME: str = "todolist"

    # Notification delivery
    NOTIFICATION_DELIVERY_DELAY_SECONDS: float = 1.0
    NOTIFICATION_REQUEUE_ON_FAILURE: bool = False
    BROKER_PUBLISH_MAX_RETRIES: int = 3
    WELCOME_NOTIFICATION_EXPIRY_DAYS: int = 7
    ANNOUNCEMENT_EXPIRY_DAYS: int = 30

    # Scan scheduler
    OVERDUE_SCAN_INTERVAL_MINUTES: int = 60
    DUE_SOON_SCAN_INTERVAL_HOURS: int = 6
    DUE_SOON_WINDOW_HOURS: int = 24
    CLEANUP_HOUR: int = 2
    CLEANUP_MINUTE: int = 0
    STALE_PENDING_HOURS: int = 24
    WELCOME_CHECK_INTERVAL_MINUTES: int = 5
    JOB_LOCK_TIMEOUT_SECONDS: int = 3600

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @property
    def BROKER_URL(self) -> str:
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}/{self.RABBITMQ_VHOST.lstrip('/')}"
        )

    @property
    def REDIS_URL(self) -> str:
        return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
