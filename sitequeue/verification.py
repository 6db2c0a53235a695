"""
Ticket verification.

Tickets are valid only on the site-local day they were issued. Marking a
ticket used is a one-way ACTIVE -> USED step done in the same transaction
as the lookup; repeating it is a no-op.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config
from .clock import Clock
from .db import SqliteLedger
from .errors import ErrorKind
from .logging_config import audit_log
from .models import SiteStats, TicketStatus, TicketView
from .util import is_ticket_id


class VerificationResult(str, Enum):
    VALID = "VALID"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"


@dataclass
class VerificationOutcome:
    result: VerificationResult
    view: Optional[TicketView] = None
    marked_used: bool = False

    @property
    def valid(self) -> bool:
        return self.result == VerificationResult.VALID

    @property
    def error(self) -> Optional[ErrorKind]:
        if self.result == VerificationResult.NOT_FOUND:
            return ErrorKind.NOT_FOUND
        if self.result == VerificationResult.EXPIRED:
            return ErrorKind.EXPIRED
        return None

    def to_dict(self) -> Dict[str, Any]:
        if self.valid:
            body = {"valid": True, "marked_used": self.marked_used}
            body.update(self.view.to_dict())
            return body
        if self.result == VerificationResult.NOT_FOUND:
            return {"valid": False, "error": ErrorKind.NOT_FOUND.value, "message": "Unknown ticket reference"}
        return {
            "valid": False,
            "error": ErrorKind.EXPIRED.value,
            "message": "This ticket was issued for a different day",
            "day": self.view.day.isoformat() if self.view else None,
        }


class VerificationService:

    def __init__(self, ledger: SqliteLedger, clock: Optional[Clock] = None):
        self.ledger = ledger
        self.clock = clock or Clock.for_zone(config.TIMEZONE)

    def verify(self, ticket_id: str, mark_used: bool = False) -> VerificationOutcome:
        today = self.clock.today()
        marked = False

        if not is_ticket_id(ticket_id):
            audit_log.verification(reference_id=ticket_id, result=VerificationResult.NOT_FOUND.value,
                                   status=None, marked_used=False)
            return VerificationOutcome(VerificationResult.NOT_FOUND)

        with self.ledger.unit_of_work(immediate=mark_used) as tx:
            ticket = tx.get_ticket(ticket_id)
            if ticket is None:
                outcome = VerificationOutcome(VerificationResult.NOT_FOUND)
            else:
                site = tx.get_site(ticket.site_id)
                site_name = site.name if site else ""
                if ticket.day != today:
                    outcome = VerificationOutcome(VerificationResult.EXPIRED, TicketView.of(ticket, site_name))
                else:
                    if mark_used and ticket.status == TicketStatus.ACTIVE:
                        ticket = tx.mark_used(ticket.id, at=self.clock.now())
                        marked = True
                    outcome = VerificationOutcome(VerificationResult.VALID, TicketView.of(ticket, site_name), marked)

        audit_log.verification(
            reference_id=ticket_id,
            result=outcome.result.value,
            status=outcome.view.status.value if outcome.view else None,
            marked_used=marked,
        )
        return outcome

    def stats(self, day: Optional[date] = None) -> List[SiteStats]:
        """Per-site total/active/used counts for the current day."""
        return self.ledger.daily_stats(day or self.clock.today())
