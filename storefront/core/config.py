# storefront/core/config.py
import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    PROJECT_NAME: str = "Storefront Checkout"
    API_V1_STR: str = "/api"
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key-here")
    ALGORITHM: str = "HS256"

    POSTGRES_USER: str = os.getenv("DB_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("DB_PASSWORD", "123")
    POSTGRES_SERVER: str = os.getenv("DB_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("DB_PORT", "5432")
    POSTGRES_DB: str = os.getenv("DB_NAME", "storefront")
    DATABASE_URL: str = f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_SERVER}:{POSTGRES_PORT}/{POSTGRES_DB}"
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    DEFAULT_CURRENCY: str = "USD"

    # Card verification defaults, overridable per deployment in system_settings
    OTP_ENABLED: bool = True
    REQUIRE_CARD_VERIFICATION: bool = True
    OTP_CODE_LENGTH: int = 6
    OTP_EXPIRY_SECONDS: int = 60
    OTP_MAX_ATTEMPTS: int = 3
    OTP_CHANNEL: str = "mock_sms"
    OTP_TICK_INTERVAL_SECONDS: float = 1.0

    HISTORY_MAX_ITEMS: int = 20
    STALE_TRANSACTION_MINUTES: int = 30

    # "celery" queues buyer notifications, "log" only writes them to the log
    NOTIFICATION_SINK: str = os.getenv("NOTIFICATION_SINK", "celery")

    CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    CELERY_RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", "")
    CELERY_CONCURRENCY: int = 2

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()
