"""
Utility functions for the site queue.

Provides hashing, identifiers, time formatting and log masking.
"""

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def generate_ticket_id() -> str:
    """Generate an opaque, globally unique ticket reference."""
    return str(uuid.uuid4())


def is_ticket_id(value: str) -> bool:
    """Check that a value parses as a UUID reference."""
    try:
        uuid.UUID(str(value))
        return True
    except (ValueError, TypeError, AttributeError):
        return False


def utc_rfc3339(dt: datetime) -> str:
    """Render an aware datetime as RFC3339 UTC."""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_rfc3339(s: str) -> datetime:
    """Parse RFC3339 UTC string written by utc_rfc3339."""
    return datetime.strptime(s, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if not value:
        return ''
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
