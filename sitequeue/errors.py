"""
Error taxonomy for the site queue.

Policy denials are returned as values carrying an ErrorKind; only
infrastructure failures travel as exceptions.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Outcome kinds surfaced to callers."""
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_LOCATION = "INVALID_LOCATION"
    OUTSIDE_GEOFENCE = "OUTSIDE_GEOFENCE"
    INCOMPLETE_DEVICE_INFO = "INCOMPLETE_DEVICE_INFO"
    DEVICE_ALREADY_USED = "DEVICE_ALREADY_USED"
    IDENTITY_ALREADY_USED = "IDENTITY_ALREADY_USED"
    ALLOCATION_CONTENTION = "ALLOCATION_CONTENTION"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    SITE_NOT_CONFIGURED = "SITE_NOT_CONFIGURED"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.ALLOCATION_CONTENTION, ErrorKind.STORE_UNAVAILABLE)


# HTTP status per kind
HTTP_STATUS = {
    ErrorKind.INVALID_FORMAT: 400,
    ErrorKind.INVALID_LOCATION: 400,
    ErrorKind.INCOMPLETE_DEVICE_INFO: 400,
    ErrorKind.EXPIRED: 400,
    ErrorKind.OUTSIDE_GEOFENCE: 403,
    ErrorKind.DEVICE_ALREADY_USED: 403,
    ErrorKind.IDENTITY_ALREADY_USED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALLOCATION_CONTENTION: 503,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.SITE_NOT_CONFIGURED: 503,
}


class LedgerError(Exception):
    """Base class for storage failures."""


class ConflictError(LedgerError):
    """
    Raised when an insert would violate a storage-level uniqueness constraint.

    Under concurrency this is an expected race outcome; the allocator
    re-runs its decision rather than failing the request.
    """
    def __init__(self, constraint: str):
        self.constraint = constraint
        super().__init__(f"uniqueness violated: {constraint}")


class StoreUnavailableError(LedgerError):
    """Raised when the store cannot be reached or stays locked past its timeout."""
