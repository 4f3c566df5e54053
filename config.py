import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: Optional[str] = None
    database_name: str = "auction"
    port: int = 8000
    reconcile_interval_seconds: int = 60
    reconciler_enabled: bool = True
    mongo_transactions: bool = False
    asset_base_url: str = "/assets"
    max_image_bytes: int = 5 * 1024 * 1024
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and a .env file if present)."""
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME") or "auction",
            port=int(os.getenv("PORT", 8000)),
            reconcile_interval_seconds=int(os.getenv("RECONCILE_INTERVAL_SECONDS", 60)),
            reconciler_enabled=_flag("RECONCILER_ENABLED", True),
            mongo_transactions=_flag("MONGO_TRANSACTIONS", False),
            asset_base_url=os.getenv("ASSET_BASE_URL", "/assets").rstrip("/"),
            max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", 5 * 1024 * 1024)),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
