import math
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from sitequeue.allocator import TicketAllocator
from sitequeue.clock import FixedClock
from sitequeue.db import SqliteLedger
from sitequeue.geofence import EARTH_RADIUS_M
from sitequeue.main import create_app
from sitequeue.verification import VerificationService

SITE_LAT = 6.6018
SITE_LON = 3.3515
SITE_RADIUS = 500


def point_north(lat: float, lon: float, meters: float):
    """Position `meters` due north of (lat, lon) along the meridian."""
    return lat + math.degrees(meters / EARTH_RADIUS_M), lon


def device(n: int = 1, **overrides):
    """Device attribute bag as the browser client sends it."""
    info = {
        "userAgent": f"Mozilla/5.0 (Linux; Android 14; Pixel {n}) Chrome/126.0",
        "platform": "Linux armv8l",
        "screenResolution": f"{400 + n}x915",
        "timezone": "Africa/Lagos",
        "language": "en-NG",
        "metadata": {
            "colorDepth": 24,
            "hardwareConcurrency": 8,
            "deviceMemory": 8,
            "maxTouchPoints": 5,
            "cookieEnabled": True,
            "canvas": f"data:image/png;base64,iVBORw0KGgo{n:04d}",
        },
    }
    meta = info["metadata"]
    for k, v in overrides.items():
        if k in meta:
            meta[k] = v
        else:
            info[k] = v
    return info


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def ledger(tmp_path):
    led = SqliteLedger(tmp_path / "sitequeue.db")
    led.init_db()
    yield led
    led.close_connection()


@pytest.fixture
def site(ledger):
    return ledger.create_site("Ikeja", SITE_LAT, SITE_LON, SITE_RADIUS)


@pytest.fixture
def allocator(ledger, clock, site):
    return TicketAllocator(ledger, clock=clock, max_attempts=3)


@pytest.fixture
def verifier(ledger, clock):
    return VerificationService(ledger, clock=clock)


@pytest.fixture
def client(ledger, clock, site):
    app = create_app(ledger=ledger, clock=clock, bypass_geofence=False,
                     allocate_rpm=1000, verify_rpm=1000, trust_proxy=True)
    return TestClient(app)
