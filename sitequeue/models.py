from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .fingerprint import DeviceIdentity
from .util import utc_rfc3339


class TicketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"


@dataclass(frozen=True)
class Site:
    id: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    created_at: Optional[datetime] = None


@dataclass
class Ticket:
    id: str
    site_id: str
    day: date
    sequence: int
    identity_claim: str
    device: DeviceIdentity
    latitude: float
    longitude: float
    status: TicketStatus
    created_at: datetime
    accuracy_m: Optional[float] = None

    def to_public(self, site_name: str) -> Dict[str, Any]:
        """Fields returned to the applicant after allocation."""
        return {
            "sequence": self.sequence,
            "site": site_name,
            "reference_id": self.id,
            "status": self.status.value,
            "day": self.day.isoformat(),
        }


@dataclass(frozen=True)
class TicketView:
    """Read view for the verification surface."""
    reference_id: str
    sequence: int
    identity_claim: str
    site_name: str
    status: TicketStatus
    day: date
    created_at: datetime

    @classmethod
    def of(cls, ticket: Ticket, site_name: str) -> "TicketView":
        return cls(
            reference_id=ticket.id,
            sequence=ticket.sequence,
            identity_claim=ticket.identity_claim,
            site_name=site_name,
            status=ticket.status,
            day=ticket.day,
            created_at=ticket.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference_id": self.reference_id,
            "sequence": self.sequence,
            "identity_claim": self.identity_claim,
            "site": self.site_name,
            "status": self.status.value,
            "day": self.day.isoformat(),
            "created_at": utc_rfc3339(self.created_at),
        }


@dataclass
class SiteStats:
    site_id: str
    site_name: str
    total: int = 0
    active: int = 0
    used: int = 0
    highest_sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "site": self.site_name,
            "total": self.total,
            "active": self.active,
            "used": self.used,
            "highest_sequence": self.highest_sequence,
        }


# ============================================================
# Request bodies
# ============================================================

class AllocationRequest(BaseModel):
    # Loosely typed: the allocator validates each field and answers with a
    # policy error kind rather than a schema error.
    identity_claim: Any = None
    latitude: Any = None
    longitude: Any = None
    accuracy: Any = None
    device_info: Any = None


class VerificationRequest(BaseModel):
    reference_id: str = Field(min_length=1)
    mark_used: bool = False
