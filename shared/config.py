"""Shared configuration for all services."""
from typing import List
from pydantic_settings import BaseSettings


DEFAULT_FEED_URLS = [
    "https://jobicy.com/?feed=job_feed",
    "https://jobicy.com/?feed=job_feed&job_categories=smm&job_types=full-time",
    "https://jobicy.com/?feed=job_feed&job_categories=seller&job_types=full-time&search_region=france",
    "https://jobicy.com/?feed=job_feed&job_categories=design-multimedia",
    "https://jobicy.com/?feed=job_feed&job_categories=data-science",
    "https://jobicy.com/?feed=job_feed&job_categories=copywriting",
    "https://jobicy.com/?feed=job_feed&job_categories=business",
    "https://jobicy.com/?feed=job_feed&job_categories=management",
    "https://www.higheredjobs.com/rss/articleFeed.cfm",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    queue_name: str = "job_import"
    lease_key: str = "job_import:pipeline_lease"
    lease_ttl: int = 900  # seconds

    # MongoDB Configuration
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "job_importer"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # Feed Configuration
    feed_urls: List[str] = DEFAULT_FEED_URLS
    fetch_interval: int = 3600  # seconds
    fetch_timeout: int = 30
    fetch_concurrency: int = 4
    scheduler_enabled: bool = True

    # Consumer Configuration
    worker_concurrency: int = 5
    consumer_poll_interval: float = 1.0
    max_retry_attempts: int = 3
    retry_backoff_base: float = 2.0

    # Queue retention
    completed_retention_age: int = 24 * 3600
    completed_retention_count: int = 1000
    failed_retention_age: int = 7 * 24 * 3600
    # Reserved units not settled within this many seconds are redelivered
    visibility_timeout: int = 300
    # Seconds between stalled-unit sweeps and retention purges
    maintenance_interval: int = 30

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
