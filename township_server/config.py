from __future__ import annotations

import os
from dataclasses import dataclass, field


def _csv_env(name: str, default: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    api_prefix: str = "/api"
    db_url: str = os.getenv("TOWNSHIP_DB_URL", "sqlite:///data/township.db")
    storage_backend: str = os.getenv("TOWNSHIP_STORAGE_BACKEND", "local")
    storage_root: str = os.getenv("TOWNSHIP_STORAGE_ROOT", "data/storage")
    public_base_url: str = os.getenv("TOWNSHIP_PUBLIC_BASE_URL", "http://127.0.0.1:8000")
    supabase_url: str = os.getenv("TOWNSHIP_SUPABASE_URL", "")
    supabase_service_key: str = os.getenv("TOWNSHIP_SUPABASE_SERVICE_KEY", "")
    http_timeout_s: float = float(os.getenv("TOWNSHIP_HTTP_TIMEOUT_S", 30))
    report_assets_bucket: str = os.getenv("TOWNSHIP_REPORT_ASSETS_BUCKET", "report-assets")
    assets_bucket: str = os.getenv("TOWNSHIP_ASSETS_BUCKET", "assets")
    upload_max_bytes: int = int(os.getenv("TOWNSHIP_UPLOAD_MAX_BYTES", 25 * 1024 * 1024))
    notification_page_size: int = int(os.getenv("TOWNSHIP_NOTIFICATION_PAGE_SIZE", 50))
    cors_origins: list[str] = field(
        default_factory=lambda: _csv_env(
            "TOWNSHIP_CORS_ORIGINS", "http://127.0.0.1:3000,http://localhost:3000"
        )
    )


settings = Settings()
