"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (sender locks + outbox wake-up; both degrade gracefully)
    redis_url: str = "redis://localhost:6379/0"

    # Business identity - a self-introduction naming the business is not a contact name
    business_name: str = ""

    # Inbound ingestion
    default_phone_region: str = "US"
    inbox_preview_length: int = 140
    inbox_reopen_closed_threads: bool = True

    # Sender lock (serializes concurrent webhooks from one sender)
    sender_lock_ttl_seconds: int = 30
    sender_lock_wait_seconds: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
