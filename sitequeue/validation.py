"""
Input validation for allocation requests.

Identity claims are structurally checked only; no external registry is consulted.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from . import config


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


_claim_pattern = re.compile(config.IDENTITY_CLAIM_PATTERN, re.ASCII)


def normalize_identity_claim(value: Any, pattern: Optional[re.Pattern] = None) -> str:
    """
    Trim, upper-case and check an identity claim.

    Returns:
        The normalized claim

    Raises:
        ValidationError: If the claim is missing or malformed
    """
    if not value or not isinstance(value, str):
        raise ValidationError("identity_claim", "identity claim is required")
    claim = value.strip().upper()
    if not (pattern or _claim_pattern).match(claim):
        raise ValidationError(
            "identity_claim",
            f"invalid identity claim format, expected e.g. {config.IDENTITY_CLAIM_EXAMPLE}",
        )
    return claim


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a coordinate")
    return float(value)


def parse_coordinates(latitude: Any, longitude: Any) -> Coordinates:
    """
    Parse and range-check a claimed position.

    Numeric strings are accepted.

    Raises:
        ValidationError: If coordinates are absent, non-numeric or out of range
    """
    if latitude is None or longitude is None:
        raise ValidationError("location", "coordinates are required")
    try:
        lat = _as_float(latitude)
        lon = _as_float(longitude)
    except (TypeError, ValueError):
        raise ValidationError("location", "invalid coordinates")
    if math.isnan(lat) or math.isnan(lon):
        raise ValidationError("location", "invalid coordinates")
    if lat < -90 or lat > 90:
        raise ValidationError("location", "latitude must be between -90 and 90")
    if lon < -180 or lon > 180:
        raise ValidationError("location", "longitude must be between -180 and 180")
    return Coordinates(lat, lon)
