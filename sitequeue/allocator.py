"""
Ticket allocator.

Runs the ordered admission policy and issues at most one ticket per
identity claim and per device identity for each (site, day):

    Received -> FormatValidated -> GeofenceChecked -> DeviceResolved
             -> Decided{EXISTING | DENIED | ALLOCATED}

The device check runs before the identity check so one device cannot
hold tickets under several identity claims. Swapping the order changes
which denial a conflicting request receives.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from . import config
from .clock import Clock
from .db import SqliteLedger
from .errors import ConflictError, ErrorKind, StoreUnavailableError
from .fingerprint import DeviceIdentity, IdentityResolver, IncompleteDeviceInfo
from .geofence import ProximityGate, reported_accuracy
from .logging_config import audit_log
from .models import Site, Ticket, TicketStatus
from .util import generate_ticket_id
from .validation import ValidationError, normalize_identity_claim, parse_coordinates

logger = logging.getLogger(__name__)


class AllocatorState(str, Enum):
    RECEIVED = "RECEIVED"
    FORMAT_VALIDATED = "FORMAT_VALIDATED"
    GEOFENCE_CHECKED = "GEOFENCE_CHECKED"
    DEVICE_RESOLVED = "DEVICE_RESOLVED"
    DECIDED = "DECIDED"


class Decision(str, Enum):
    ALLOCATED = "ALLOCATED"
    EXISTING = "EXISTING"
    DENIED = "DENIED"


@dataclass
class AllocationOutcome:
    """Result of one allocation request. Denials carry an ErrorKind and details."""
    decision: Decision
    ticket: Optional[Ticket] = None
    site: Optional[Site] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    state: AllocatorState = AllocatorState.DECIDED
    attempts: int = 1

    def issued(self) -> bool:
        return self.decision in (Decision.ALLOCATED, Decision.EXISTING)

    def to_dict(self) -> Dict[str, Any]:
        if self.issued():
            body = self.ticket.to_public(self.site.name)
            body["existing"] = self.decision == Decision.EXISTING
            return body
        body = {"error": self.error.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


def _denied(kind: ErrorKind, message: str, state: AllocatorState, **details) -> AllocationOutcome:
    return AllocationOutcome(
        decision=Decision.DENIED,
        error=kind,
        message=message,
        details=details,
        state=state,
    )


class TicketAllocator:
    """
    Orchestrates validation, the proximity gate, device resolution and the
    ledger. Holds no cross-request state; all coordination goes through
    the ledger.
    """

    def __init__(
        self,
        ledger: SqliteLedger,
        clock: Optional[Clock] = None,
        gate: Optional[ProximityGate] = None,
        resolver: Optional[IdentityResolver] = None,
        bypass_geofence: bool = False,
        max_attempts: Optional[int] = None,
        site_id: Optional[str] = None,
    ):
        self.ledger = ledger
        self.clock = clock or Clock.for_zone(config.TIMEZONE)
        self.gate = gate or ProximityGate(config.GEOFENCE_ACCURACY_CAP_M)
        self.resolver = resolver or IdentityResolver()
        self.bypass_geofence = bypass_geofence
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.ALLOCATION_MAX_ATTEMPTS)
        self.site_id = site_id

    def allocate(
        self,
        identity_claim: Any,
        latitude: Any,
        longitude: Any,
        accuracy_m: Optional[float],
        device_info: Optional[Mapping[str, Any]],
        network_address: Optional[str] = None,
    ) -> AllocationOutcome:
        audit_log.allocation_request(identity_claim, network_address)
        outcome = self._allocate(identity_claim, latitude, longitude, accuracy_m, device_info, network_address)
        audit_log.allocation_decision(
            decision=outcome.decision.value,
            error=outcome.error.value if outcome.error else None,
            identity_claim=outcome.ticket.identity_claim if outcome.ticket else identity_claim,
            sequence=outcome.ticket.sequence if outcome.ticket else None,
            reference_id=outcome.ticket.id if outcome.ticket else None,
            network_address=network_address,
            details=outcome.details or None,
        )
        return outcome

    def _allocate(self, identity_claim, latitude, longitude, accuracy_m, device_info, network_address):
        state = AllocatorState.RECEIVED
        accuracy_m = reported_accuracy(accuracy_m)

        # 1. identity claim format
        try:
            claim = normalize_identity_claim(identity_claim)
        except ValidationError as e:
            return _denied(ErrorKind.INVALID_FORMAT, e.message, state)
        state = AllocatorState.FORMAT_VALIDATED

        try:
            site = self.ledger.active_site(self.site_id)
        except StoreUnavailableError as e:
            logger.error("store unavailable while loading site: %s", e)
            return _denied(ErrorKind.STORE_UNAVAILABLE, "The ticket store is unavailable, try again shortly", state)
        if site is None:
            return _denied(ErrorKind.SITE_NOT_CONFIGURED, "No site is configured", state)

        # 2 + 3. position and geofence
        if self.bypass_geofence:
            try:
                coords = parse_coordinates(latitude, longitude)
                lat, lon = coords.latitude, coords.longitude
            except ValidationError:
                lat, lon = site.latitude, site.longitude
            logger.debug("geofence bypassed for site %s", site.id)
        else:
            try:
                coords = parse_coordinates(latitude, longitude)
            except ValidationError as e:
                return _denied(ErrorKind.INVALID_LOCATION, e.message, state)
            lat, lon = coords.latitude, coords.longitude
            verdict = self.gate.evaluate(lat, lon, site, accuracy_m)
            if not verdict.admit:
                return _denied(
                    ErrorKind.OUTSIDE_GEOFENCE,
                    "You must be physically present at the site to get a ticket",
                    state,
                    **verdict.to_details(site.name),
                )
        state = AllocatorState.GEOFENCE_CHECKED

        # 4. device identity
        try:
            device = self.resolver.resolve(device_info, network_address)
        except IncompleteDeviceInfo as e:
            return _denied(
                ErrorKind.INCOMPLETE_DEVICE_INFO,
                "Incomplete device information",
                state,
                missing=e.missing,
            )
        state = AllocatorState.DEVICE_RESOLVED

        # 5-7. ledger decision, retried on races and transient store failures
        last_error = ErrorKind.ALLOCATION_CONTENTION
        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = self._decide(site, claim, device, lat, lon, accuracy_m)
            except ConflictError as e:
                logger.info("allocation conflict on attempt %d/%d: %s", attempt, self.max_attempts, e.constraint)
                last_error = ErrorKind.ALLOCATION_CONTENTION
                continue
            except StoreUnavailableError as e:
                logger.warning("store unavailable on attempt %d/%d: %s", attempt, self.max_attempts, e)
                last_error = ErrorKind.STORE_UNAVAILABLE
                continue
            outcome.attempts = attempt
            return outcome

        outcome = _denied(
            last_error,
            "Too many simultaneous requests, please try again"
            if last_error == ErrorKind.ALLOCATION_CONTENTION
            else "The ticket store is unavailable, try again shortly",
            state,
        )
        outcome.attempts = self.max_attempts
        return outcome

    def _decide(
        self,
        site: Site,
        claim: str,
        device: DeviceIdentity,
        lat: float,
        lon: float,
        accuracy_m: Optional[float],
    ) -> AllocationOutcome:
        now = self.clock.now()
        day = now.date()

        with self.ledger.unit_of_work() as tx:
            existing = tx.find_by_device_signals(site.id, day, device, prefer_identity=claim)
            if existing is not None:
                if existing.identity_claim == claim:
                    return AllocationOutcome(decision=Decision.EXISTING, ticket=existing, site=site)
                return _denied(
                    ErrorKind.DEVICE_ALREADY_USED,
                    "This device already holds a ticket for today",
                    AllocatorState.DEVICE_RESOLVED,
                    existing_sequence=existing.sequence,
                    existing_identity=existing.identity_claim,
                    attempted_identity=claim,
                    matched_signals=list(existing.device.matched_signals(device)),
                )

            # A ticket held under this claim by a matching device was returned above
            if tx.find_by_identity(site.id, day, claim) is not None:
                return _denied(
                    ErrorKind.IDENTITY_ALREADY_USED,
                    "This identity already holds a ticket from a different device today",
                    AllocatorState.DEVICE_RESOLVED,
                )

            ticket = Ticket(
                id=generate_ticket_id(),
                site_id=site.id,
                day=day,
                sequence=tx.next_sequence(site.id, day),
                identity_claim=claim,
                device=device,
                latitude=lat,
                longitude=lon,
                accuracy_m=accuracy_m,
                status=TicketStatus.ACTIVE,
                created_at=now,
            )
            tx.insert(ticket)

        return AllocationOutcome(decision=Decision.ALLOCATED, ticket=ticket, site=site)
