"""
Configuration for the catalog recrawler.

Values come from backend/.env (via python-dotenv) or the process environment,
falling back to the defaults below.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Load .env from backend directory
_backend_dir = Path(__file__).parent
load_dotenv(_backend_dir / ".env")


def env_int(name: str, default: int) -> int:
    """Read an integer environment variable."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def env_float(name: str, default: float) -> float:
    """Read a float environment variable."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable ('1', 'true', 'yes', 'on')."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_database_url() -> Optional[str]:
    """Get the PostgreSQL database URL from environment variables."""
    return os.getenv("DATABASE_URL")


# =============================================================================
# Database
# =============================================================================

DATABASE_FILE = os.getenv("CATALOG_DB_FILE", "catalog.db")  # SQLite fallback
USE_POSTGRES = env_bool("CATALOG_USE_POSTGRES", True)  # Set to False to force SQLite


# =============================================================================
# Batching
# =============================================================================

BATCH_SIZE = env_int("RECRAWL_BATCH_SIZE", 50)
BATCH_DELAY = env_float("RECRAWL_BATCH_DELAY", 1.0)  # Seconds between batches
BATCH_RETRIES = env_int("RECRAWL_BATCH_RETRIES", 1)


# =============================================================================
# HTTP
# =============================================================================

REQUEST_DELAY = 0.5  # Seconds between page requests

# Retry configuration (exponential backoff)
MAX_RETRIES = 7
INITIAL_RETRY_DELAY = 1
MAX_RETRY_DELAY = 60

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'application/json, text/plain, */*',
    'Accept-Language': 'en-US,en;q=0.9',
    'Connection': 'keep-alive',
}


# =============================================================================
# Alerts
# =============================================================================

PRICE_CHANGE_ALERT_PCT = 30
ALERT_RETENTION_DAYS = 30


# =============================================================================
# Identity
# =============================================================================

# Namespace for variant keys and MPNs. Existing catalogs were keyed under the
# URL namespace, so changing this re-keys every stored variant.
MPN_NAMESPACE = uuid.NAMESPACE_URL
