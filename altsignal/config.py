"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Infrastructure ─────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./data/alerts.db"
    redis_url: str = ""
    redis_event_key: str = "altsignal:alerts"
    redis_event_maxlen: int = 1000

    # ── Collectors ─────────────────────────────────────────────────────
    watchlist: list[str] = ["AAPL", "MSFT", "NVDA", "TSLA", "AMZN"]
    collector_timeout_seconds: float = 30.0
    inter_symbol_delay_seconds: float = 1.0
    reddit_interval_seconds: int = 15 * 60
    twitter_interval_seconds: int = 10 * 60
    insider_interval_seconds: int = 60 * 60
    legislator_interval_seconds: int = 120 * 60
    news_interval_seconds: int = 5 * 60

    # Feed endpoints (JSON APIs / RSS); empty disables the real collector
    reddit_feed_url: str = "https://www.reddit.com/r/{subreddit}/search.json?q={symbol}&restrict_sr=1&sort=new"
    reddit_subreddits: list[str] = ["wallstreetbets", "stocks", "investing"]
    twitter_feed_url: str = ""
    twitter_bearer_token: str = ""
    insider_feed_url: str = ""
    legislator_feed_url: str = ""
    feed_api_key: str = ""
    news_rss_urls: list[str] = [
        "https://feeds.finance.yahoo.com/rss/2.0/headline?s={symbol}",
    ]

    # ── Alerting ───────────────────────────────────────────────────────
    monitoring_interval_seconds: int = 5 * 60
    tick_timeout_seconds: float = 120.0
    max_concurrent_analysis: int = 2
    alert_retention_days: int = 30
    event_bus_size: int = 500

    # ── Notifications ──────────────────────────────────────────────────
    console_log_level: str = "info"
    webhook_urls: list[str] = []
    webhook_headers: dict[str, str] = {}
    slack_webhook_url: str = ""
    slack_channel: str = "#alerts"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "alerts@altsignal.local"
    email_recipients: list[str] = []

    # ── Breaking news ──────────────────────────────────────────────────
    breaking_news_enabled: bool = True

    # ── Analysis engine (LLM) ──────────────────────────────────────────
    analysis_provider: str = "deepseek"
    analysis_api_key: str = ""
    analysis_base_url: str = "https://api.deepseek.com/v1"
    analysis_model: str = "deepseek-chat"

    # ── API Server ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ── Operational Settings ───────────────────────────────────────────
    log_level: str = "INFO"
    mock_mode: bool = False

    # ── Computed helpers ───────────────────────────────────────────────
    @property
    def async_database_url(self) -> str:
        """Return the database URL with an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite:///"):
            url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return url


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
