"""ADSYNC — Central Configuration via Pydantic Settings."""

import os
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_ad_account_id: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_timeout_seconds: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    sync_hour: int = 3  # Daily parallel sync at 3 AM UTC
    sync_group: str = "daily"

    # ── Fetching ──
    page_size: int = 200
    page_delay_seconds: float = 0.5
    max_pages: int = 50
    rate_limit_delays: List[float] = [5.0, 10.0]  # Fixed schedule, 3 attempts total
    batch_request_size: int = 50  # Graph API hard limit per batch call

    # ── Validation ──
    max_validation_retries: int = 2
    validation_retry_delay_seconds: float = 10.0

    # ── Parallel scheduler ──
    concurrent_projects: int = 10
    max_concurrent_projects: int = 20
    batch_delay_seconds: float = 30.0
    period_delay_seconds: float = 5.0

    # ── Image cache ──
    image_cache_dir: str = "./media/creatives"
    image_cache_url: str = "/media/creatives"
    image_download_delay_seconds: float = 0.1

    # ── Projects ──
    default_currency: str = "BRL"
    default_timezone: str = "America/Sao_Paulo"

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Serverless filesystems are read-only outside /tmp
        if os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
            return "sqlite:////tmp/adsync.db"
        return "sqlite:///./adsync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
