import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .errors import ValidationError

logger = logging.getLogger(__name__)

ENV_FILES = (".env", ".env.local")


def load_env_file(path: str = ".env"):
    """
    Load environment variables from a .env file into os.environ.
    Does not override existing strings. Surrounding quotes are stripped.
    """
    p = Path(path)
    if not p.exists():
        return

    try:
        with open(p) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, val = line.split('=', 1)
                    key = key.strip()
                    val = val.strip().strip('"').strip("'")
                    if key and key not in os.environ:
                        os.environ[key] = val
    except Exception as e:
        logger.warning(f"Failed to load {path}: {e}")

# Load on import
for _env_file in ENV_FILES:
    load_env_file(_env_file)


def _get_secret(name: str) -> Optional[str]:
    value = os.environ.get(name)
    # Handle the template default left in example env files
    if not value or value == "your_key_here":
        return None
    return value


def get_fmp_key() -> Optional[str]:
    """Get the Financial Modeling Prep API key, or None if missing."""
    return _get_secret("FMP_API_KEY")


def get_blob_token() -> Optional[str]:
    """Get the blob storage read/write token, or None if uploads are disabled."""
    return _get_secret("BLOB_READ_WRITE_TOKEN")


def get_scraper_secret() -> Optional[str]:
    """Shared secret required by the triggered scrape surface."""
    return _get_secret("SCRAPER_SECRET")


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    return value


class ScraperSettings(BaseModel):
    """Tunables for one scraper run."""

    concurrency: int = 1
    request_delay_ms: int = 100
    max_retries: int = 5
    progress_every: int = 100
    snapshot_path: str = "data/companies.json"
    supplemental_path: str = "supplemental.yaml"
    trigger_timeout_s: int = 60


def load_settings() -> ScraperSettings:
    """Build settings from the environment, falling back to defaults."""
    return ScraperSettings(
        concurrency=_get_int("CAPFETCH_CONCURRENCY", 1, minimum=1),
        request_delay_ms=_get_int("CAPFETCH_REQUEST_DELAY_MS", 100),
        max_retries=_get_int("CAPFETCH_MAX_RETRIES", 5, minimum=1),
        progress_every=_get_int("CAPFETCH_PROGRESS_EVERY", 100, minimum=1),
        snapshot_path=os.environ.get("CAPFETCH_SNAPSHOT_PATH") or "data/companies.json",
        supplemental_path=os.environ.get("CAPFETCH_SUPPLEMENTAL_PATH") or "supplemental.yaml",
        trigger_timeout_s=_get_int("CAPFETCH_TRIGGER_TIMEOUT_S", 60, minimum=1),
    )
