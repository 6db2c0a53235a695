"""
Configuration module for the site queue.

Centralizes all configuration with environment variable support.
Values are read once at import time.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("SITEQUEUE_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = Path(os.getenv("SITEQUEUE_DB_PATH", "data/sitequeue.db"))
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("DB_BUSY_TIMEOUT_SECONDS", "5"))

# Site-local day boundary
TIMEZONE = os.getenv("SITEQUEUE_TIMEZONE", "UTC")

# Active site (earliest-created site when unset)
SITE_ID = os.getenv("SITEQUEUE_SITE_ID", "") or None

# Geofence
GEOFENCE_ACCURACY_CAP_M = float(os.getenv("GEOFENCE_ACCURACY_CAP_M", "150"))

# Allocation retries for transient failures
ALLOCATION_MAX_ATTEMPTS = int(os.getenv("ALLOCATION_MAX_ATTEMPTS", "3"))

# Identity claim format, matched after trim + upper-casing
IDENTITY_CLAIM_PATTERN = os.getenv("IDENTITY_CLAIM_PATTERN", r"^[A-Z]{2}/\d{2}[A-C]/\d{1,5}$")
IDENTITY_CLAIM_EXAMPLE = os.getenv("IDENTITY_CLAIM_EXAMPLE", "NY/23A/1234")

# Rate limits (requests per minute, per client)
ALLOCATE_RPM = int(os.getenv("ALLOCATE_RPM", "10"))
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "60"))

# Network address resolution
TRUST_PROXY_HEADERS = os.getenv("TRUST_PROXY_HEADERS", "").lower() in ("1", "true", "yes")

# Seed defaults (Ikeja, Lagos)
DEFAULT_SITE_NAME = os.getenv("DEFAULT_SITE_NAME", "Ikeja")
DEFAULT_SITE_LAT = float(os.getenv("DEFAULT_SITE_LAT", "6.6018"))
DEFAULT_SITE_LON = float(os.getenv("DEFAULT_SITE_LON", "3.3515"))
DEFAULT_SITE_RADIUS = int(os.getenv("DEFAULT_SITE_RADIUS", "500"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("LOG_FILE", "") or None


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Sanity-check numeric settings.
    Returns dict of setting -> ok.
    """
    return {
        "accuracy_cap": GEOFENCE_ACCURACY_CAP_M >= 0,
        "max_attempts": ALLOCATION_MAX_ATTEMPTS >= 1,
        "default_radius": DEFAULT_SITE_RADIUS > 0,
        "db_dir_writable": os.access(DB_PATH.parent if DB_PATH.parent.exists() else Path("."), os.W_OK),
    }


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def geofence_bypassed() -> bool:
    """
    Operator override for the location checks.
    Only the literal value 'true' enables it; unset means production behaviour.
    """
    return os.getenv("SITEQUEUE_BYPASS_GEOFENCE", "") == "true"
