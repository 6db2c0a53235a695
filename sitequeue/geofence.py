"""
Proximity gate.

Decides whether a claimed position is inside a site's admission circle.
Consumer positioning reports an accuracy radius; the reported value is
subtracted from the measured distance, capped so an inflated accuracy
cannot be used to walk the fence outward.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

EARTH_RADIUS_M = 6371e3
DEFAULT_ACCURACY_CAP_M = 150.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def reported_accuracy(value: Any) -> Optional[float]:
    """Reported accuracy as a number, or None when absent or unreadable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def clamp_accuracy(reported: Any, cap: float = DEFAULT_ACCURACY_CAP_M) -> float:
    """Clamp reported accuracy to [0, cap]. Missing or unreadable values count as 0."""
    value = reported_accuracy(reported)
    if value is None:
        return 0.0
    return min(max(value, 0.0), cap)


@dataclass
class GeofenceVerdict:
    """Result of a proximity check. Denials are values, not exceptions."""
    admit: bool
    distance_m: float
    effective_distance_m: float
    accuracy_adjustment_m: float
    radius_m: float

    def to_details(self, site_name: Optional[str] = None) -> Dict[str, Any]:
        d = {
            "distance_m": round(self.distance_m),
            "effective_distance_m": round(self.effective_distance_m),
            "accuracy_adjustment_m": round(self.accuracy_adjustment_m),
            "allowed_radius_m": self.radius_m,
        }
        if site_name:
            d["site"] = site_name
        return d


class ProximityGate:
    """Accuracy-tolerant circular geofence."""

    def __init__(self, accuracy_cap_m: float = DEFAULT_ACCURACY_CAP_M):
        self.accuracy_cap_m = accuracy_cap_m

    def evaluate(
        self,
        claimed_lat: float,
        claimed_lon: float,
        site,
        reported_accuracy_m: Optional[float] = None,
    ) -> GeofenceVerdict:
        distance = haversine_distance(claimed_lat, claimed_lon, site.latitude, site.longitude)
        adjust = clamp_accuracy(reported_accuracy_m, self.accuracy_cap_m)
        effective = max(0.0, distance - adjust)
        return GeofenceVerdict(
            admit=effective <= site.radius_m,
            distance_m=distance,
            effective_distance_m=effective,
            accuracy_adjustment_m=adjust,
            radius_m=site.radius_m,
        )
