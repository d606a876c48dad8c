"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social"

    # Full SQLAlchemy URL; takes precedence over the tidb_* fields when set
    database_url: Optional[str] = None

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_scan_count: int = 100          # keys per SCAN step during bulk deletes

    # ── Cache TTLs (seconds) ───────────────────────────────────────────────
    cache_ttl_user_profile: int = 900
    cache_ttl_post: int = 300
    cache_ttl_user_posts: int = 300
    cache_ttl_feed: int = 180
    cache_ttl_reactions: int = 30
    cache_ttl_follow_list: int = 300
    cache_ttl_conversation: int = 180
    cache_ttl_conversations: int = 60
    cache_ttl_notifications: int = 60
    cache_ttl_unread_count: int = 30

    # ── Notifications & messaging ─────────────────────────────────────────
    notification_dedup_window_hours: int = 24
    message_preview_length: int = 50
    message_max_length: int = 2000
    message_rate_limit_per_minute: int = 60

    # ── Realtime ───────────────────────────────────────────────────────────
    ws_idle_timeout_seconds: float = 60.0   # clients ping every ~25s
    ws_outbox_size: int = 256

    # ── Pagination ─────────────────────────────────────────────────────────
    default_page_size: int = 20
    max_page_size: int = 100

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "social-api"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
