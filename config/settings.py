from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Relational store
    DATABASE_URL: str = "sqlite+aiosqlite:///./scraping.db"
    DB_POOL_SIZE: int = 10
    DB_TIMEOUT_SECONDS: float = 5.0
    DB_RETRY_INTERVAL_SECONDS: float = 30.0

    # File store
    DATA_DIR: str = "./storage"

    # Reconciliation
    SYNC_INTERVAL_MS: int = 60 * 60 * 1000
    SYNC_ON_STARTUP: bool = True
    SYNC_SCHEDULER_ENABLED: bool = True

    # Scraping behaviour
    SCRAPE_TIMEOUT_SECONDS: float = 60.0
    SCRAPE_REQUEST_DELAY: float = 1.0
    SCRAPE_USER_AGENT: str = "ScrapingStore/1.0 (+https://github.com)"
    QUEUE_HISTORY_LIMIT: int = 100

    # Server
    DASHBOARD_PORT: int = 8001
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
