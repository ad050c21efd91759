"""
Persistence core configuration.
All settings are read from the environment (and an optional .env file) at import time.
"""

import os
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import load_dotenv

load_dotenv()

# Record store configuration
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite")  # sqlite|memory
DB_PATH = os.getenv("DB_PATH", "./data/worksheets.db")

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Auto-save (debounce) configuration
AUTOSAVE_ENABLED = os.getenv("AUTOSAVE_ENABLED", "true").lower() == "true"
AUTOSAVE_DEBOUNCE_MS = int(os.getenv("AUTOSAVE_DEBOUNCE_MS", "1500"))
AUTOSAVE_IDLE_SEC = float(os.getenv("AUTOSAVE_IDLE_SEC", "300"))  # idle schedulers are dropped after this

# Gateway write configuration
WRITE_TIMEOUT_SEC = float(os.getenv("WRITE_TIMEOUT_SEC", "10"))
WRITE_TIMEOUT_POLICY = os.getenv("WRITE_TIMEOUT_POLICY", "optimistic")  # optimistic|propagate

# Field encryption configuration
ENCRYPT_FAILURE_POLICY = os.getenv("ENCRYPT_FAILURE_POLICY", "fallback")  # fallback|raise
FIELD_ENCRYPTION_PASSWORD = os.getenv("FIELD_ENCRYPTION_PASSWORD", "default_field_key_change_in_production")
FIELD_ENCRYPTION_SALT = os.getenv("FIELD_ENCRYPTION_SALT", "worksheet-vault-salt")

# Read cache configuration (freshness window for cached views)
CACHE_STALE_SEC = float(os.getenv("CACHE_STALE_SEC", "300"))

# Field names containing any of these keywords hold free-text personal content
DEFAULT_SENSITIVE_FIELD_KEYWORDS: Tuple[str, ...] = (
    "journal",
    "reflection",
    "thoughts",
    "notes",
    "entry",
    "answer",
    "response",
    "description",
    "story",
    "experience",
)

# Worksheets per phase, used for phase completion summaries
PHASE_WORKSHEET_TOTALS: Dict[int, int] = {
    1: 4,
    2: 3,
    3: 3,
    4: 3,
    5: 3,
    6: 3,
    7: 3,
    8: 3,
    9: 3,
    10: 3,
}
DEFAULT_PHASE_WORKSHEET_TOTAL = 3

# Version string
VERSION = "1.0.0"


def _parse_keywords(raw: str) -> Tuple[str, ...]:
    keywords = tuple(k.strip().lower() for k in raw.split(",") if k.strip())
    return keywords or DEFAULT_SENSITIVE_FIELD_KEYWORDS


SENSITIVE_FIELD_KEYWORDS: Tuple[str, ...] = _parse_keywords(os.getenv("SENSITIVE_FIELD_KEYWORDS", ""))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_sensitive_field_keywords() -> Tuple[str, ...]:
    """Get the configured sensitive field keyword set."""
    return SENSITIVE_FIELD_KEYWORDS


def get_phase_worksheet_total(phase_number: int) -> int:
    """Get the number of worksheets in a phase."""
    return PHASE_WORKSHEET_TOTALS.get(phase_number, DEFAULT_PHASE_WORKSHEET_TOTAL)


def get_write_timeout():
    """Get gateway write timeout in seconds."""
    return WRITE_TIMEOUT_SEC


def get_debounce_seconds() -> float:
    """Get the auto-save quiet period in seconds."""
    return AUTOSAVE_DEBOUNCE_MS / 1000.0


def get_autosave_idle_seconds() -> float:
    """Get how long an idle auto-save scheduler is kept before it is dropped."""
    return AUTOSAVE_IDLE_SEC


def validate_config() -> List[str]:
    """Validate persistence configuration and return any issues."""
    issues = []

    if STORE_BACKEND not in ["sqlite", "memory"]:
        issues.append(f"Invalid STORE_BACKEND: {STORE_BACKEND}")

    if WRITE_TIMEOUT_POLICY not in ["optimistic", "propagate"]:
        issues.append(f"Invalid WRITE_TIMEOUT_POLICY: {WRITE_TIMEOUT_POLICY}")

    if ENCRYPT_FAILURE_POLICY not in ["fallback", "raise"]:
        issues.append(f"Invalid ENCRYPT_FAILURE_POLICY: {ENCRYPT_FAILURE_POLICY}")

    if WRITE_TIMEOUT_SEC <= 0:
        issues.append("WRITE_TIMEOUT_SEC must be > 0")

    if AUTOSAVE_DEBOUNCE_MS < 0:
        issues.append("AUTOSAVE_DEBOUNCE_MS must be >= 0")

    if AUTOSAVE_IDLE_SEC <= 0:
        issues.append("AUTOSAVE_IDLE_SEC must be > 0")

    if CACHE_STALE_SEC < 0:
        issues.append("CACHE_STALE_SEC must be >= 0")

    if FIELD_ENCRYPTION_PASSWORD == "default_field_key_change_in_production" and not debug_enabled():
        issues.append("FIELD_ENCRYPTION_PASSWORD is using the default value")

    return issues
