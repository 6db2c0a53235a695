"""
Logging configuration for the site queue.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

from .util import mask_sensitive

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One object per line, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for admission events.

    Identity claims are masked before they reach the log.
    """

    def __init__(self, name: str = "sitequeue.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **{k: v for k, v in kwargs.items() if v is not None},
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def allocation_request(self, identity_claim: Any, network_address: Optional[str]) -> None:
        self._log(
            logging.INFO,
            "ALLOCATION_REQUEST",
            identity_claim=mask_sensitive(str(identity_claim or "")),
            network_address=network_address,
            message="Ticket requested"
        )

    def allocation_decision(
        self,
        decision: str,
        error: Optional[str] = None,
        identity_claim: Any = None,
        sequence: Optional[int] = None,
        reference_id: Optional[str] = None,
        network_address: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log an allocation decision. Denials log at WARNING."""
        level = logging.WARNING if decision == "DENIED" else logging.INFO
        if details and "existing_identity" in details:
            details = dict(details)
            details["existing_identity"] = mask_sensitive(details["existing_identity"])
            details["attempted_identity"] = mask_sensitive(details.get("attempted_identity", ""))
        self._log(
            level,
            "ALLOCATION_DECISION",
            decision=decision,
            error=error,
            identity_claim=mask_sensitive(str(identity_claim or "")),
            sequence=sequence,
            reference_id=reference_id,
            network_address=network_address,
            details=details,
            message=f"Allocation {decision}" + (f" ({error})" if error else "")
        )

    def verification(self, reference_id: str, result: str, status: Optional[str] = None,
                     marked_used: bool = False) -> None:
        level = logging.INFO if result == "VALID" else logging.WARNING
        self._log(
            level,
            "VERIFICATION",
            reference_id=reference_id,
            result=result,
            status=status,
            marked_used=marked_used,
            message=f"Verification {result}"
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context, generating one if absent.
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
