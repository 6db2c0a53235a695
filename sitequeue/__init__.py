"""
Site Queue

Issues one sequential, day-scoped admission ticket per physical applicant
at a managed site, gated by location proximity and device identity.
"""

__version__ = "1.0.0"

from .allocator import AllocationOutcome, AllocatorState, Decision, TicketAllocator
from .clock import Clock, FixedClock
from .db import LedgerTransaction, SqliteLedger
from .errors import ConflictError, ErrorKind, StoreUnavailableError
from .fingerprint import DeviceAttributes, DeviceIdentity, IdentityResolver, IncompleteDeviceInfo
from .geofence import GeofenceVerdict, ProximityGate, haversine_distance
from .models import Site, SiteStats, Ticket, TicketStatus, TicketView
from .verification import VerificationOutcome, VerificationResult, VerificationService

__all__ = [
    "AllocationOutcome",
    "AllocatorState",
    "Clock",
    "ConflictError",
    "Decision",
    "DeviceAttributes",
    "DeviceIdentity",
    "ErrorKind",
    "FixedClock",
    "GeofenceVerdict",
    "IdentityResolver",
    "IncompleteDeviceInfo",
    "LedgerTransaction",
    "ProximityGate",
    "Site",
    "SiteStats",
    "SqliteLedger",
    "StoreUnavailableError",
    "Ticket",
    "TicketAllocator",
    "TicketStatus",
    "TicketView",
    "VerificationOutcome",
    "VerificationResult",
    "VerificationService",
    "haversine_distance",
]
