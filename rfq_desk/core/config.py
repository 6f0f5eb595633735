from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RFQ_DESK_",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "RFQ Desk"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str = "sqlite:///./rfq_desk.db"

    # ─────────── REMOTE SYNC ───────────
    list_timeout_seconds: float = 15.0
    detail_timeout_seconds: float = 15.0
    link_timeout_seconds: float = 20.0
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 1.0  # wait = attempt * backoff

    # ─────────── ATTACHMENTS ───────────
    attachment_bucket: str = "quote-attachments"
    attachment_root: str = "./attachments"
    signed_link_ttl_seconds: int = 3600
    # must stay below signed_link_ttl_seconds so cached links are still valid
    signed_link_cache_ttl_seconds: int = 3000
    link_signing_key: str = "change-me"
    public_base_url: str = "http://localhost:8000"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
