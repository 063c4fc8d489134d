"""Application configuration helpers.

Credentials are only ever read from the environment: `GOOGLE_PLACES_API_KEY`
is a billable key and must never be hardcoded or written into the catalog.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    catalog_path: str = "data/catalog.json"
    backup_dir: str = "data/backups"
    checkpoint_path: str = "data/enrichment-checkpoint.json"
    regions_file: Optional[str] = None
    default_phone_region: Optional[str] = "KY"
    requests_per_second: float = 5.0
    batch_size: int = 50
    max_retries: int = 4
    max_photos: int = 5
    audit_search_radius_meters: int = 5000
    log_level: str = "INFO"


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using default %s", name, raw, default)
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using default %s", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_PLACES_API_KEY", "")
    default_phone_region_raw = os.getenv("DEFAULT_PHONE_REGION", "KY")
    default_phone_region = default_phone_region_raw.strip().upper() if default_phone_region_raw.strip() else None

    if not google_api_key:
        logger.warning("GOOGLE_PLACES_API_KEY is not configured; enrichment and re-lookups are unavailable.")

    return Settings(
        google_api_key=google_api_key,
        catalog_path=os.getenv("CATALOG_PATH", "data/catalog.json"),
        backup_dir=os.getenv("BACKUP_DIR", "data/backups"),
        checkpoint_path=os.getenv("CHECKPOINT_PATH", "data/enrichment-checkpoint.json"),
        regions_file=os.getenv("REGIONS_FILE") or None,
        default_phone_region=default_phone_region,
        requests_per_second=_get_float("PLACES_REQUESTS_PER_SECOND", 5.0),
        batch_size=_get_int("ENRICH_BATCH_SIZE", 50),
        max_retries=_get_int("ENRICH_MAX_RETRIES", 4),
        max_photos=_get_int("ENRICH_MAX_PHOTOS", 5),
        audit_search_radius_meters=_get_int("AUDIT_SEARCH_RADIUS_METERS", 5000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def require_api_key(settings: Settings) -> str:
    """Return the places API key or fail; only called when the API is actually used."""
    if not settings.google_api_key:
        raise ConfigError("GOOGLE_PLACES_API_KEY must be set in the environment to call the places service.")
    return settings.google_api_key
