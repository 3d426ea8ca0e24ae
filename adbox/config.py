"""AdBox — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"
    messages_per_conversation: int = 20

    # ── Webhook ──
    webhook_verify_token: str = ""
    meta_app_secret: Optional[str] = None

    # ── Database ──
    database_url: str = ""
    db_echo: bool = False
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle_seconds: int = 300

    # ── App ──
    log_level: str = "INFO"

    # ── Poll Scheduler ──
    scheduler_enabled: bool = True
    poll_interval_minutes: int = 5
    max_concurrent_tenants: int = 5
    tenant_delay_seconds: float = 2.0
    sync_timeout_seconds: float = 600.0
    scheduler_initial_delay_seconds: int = 30

    # ── Unread arbitration ──
    unread_clock_skew_seconds: float = 5.0
    phantom_window_seconds: float = 120.0
    pending_match_window_seconds: float = 120.0

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adbox.db"
        return "sqlite:///./adbox.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
