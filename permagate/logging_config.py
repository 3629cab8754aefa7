"""
Logging configuration for Permagate.

Provides structured JSON logging and an audit logger for payment, ticket and
approval events.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .util import mask_sensitive

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
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
    Specialized logger for audit events.

    One method per event the engine emits. Secrets (ticket tokens, key
    material, signatures) are never passed in clear.
    """

    def __init__(self, name: str = "permagate.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
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

    def payment_recorded(
        self,
        tx_hash: str,
        purpose: str,
        amount: int,
        reused: bool
    ) -> None:
        self._log(
            logging.INFO,
            "PAYMENT_RECORDED",
            tx_hash=tx_hash,
            purpose=purpose,
            amount=str(amount),
            reused=reused,
            message=f"Payment {'replayed' if reused else 'recorded'} for {purpose}"
        )

    def payment_consumed(self, tx_hash: str, purpose: str) -> None:
        self._log(
            logging.INFO,
            "PAYMENT_CONSUMED",
            tx_hash=tx_hash,
            purpose=purpose,
            message=f"Payment consumed for {purpose}"
        )

    def repo_registered(
        self,
        repo_id: str,
        owner: str,
        name: str,
        is_multisig: bool,
        threshold: Optional[int] = None
    ) -> None:
        self._log(
            logging.INFO,
            "REPO_REGISTERED",
            repo_id=repo_id,
            owner=owner,
            name=name,
            is_multisig=is_multisig,
            threshold=threshold,
            message=f"Repository {owner}/{name} registered"
        )

    def ticket_issued(self, ticket_id: str, repo_id: str, token: str, expires_at: int) -> None:
        self._log(
            logging.INFO,
            "TICKET_ISSUED",
            ticket_id=ticket_id,
            repo_id=repo_id,
            token=mask_sensitive(token),
            expires_at=expires_at,
            message=f"Ticket issued for repo {repo_id}"
        )

    def ticket_redeemed(self, ticket_id: str, repo_id: str) -> None:
        self._log(
            logging.INFO,
            "TICKET_REDEEMED",
            ticket_id=ticket_id,
            repo_id=repo_id,
            message=f"Ticket {ticket_id} redeemed"
        )

    def approval_recorded(
        self,
        repo_id: str,
        subject_id: str,
        signer: str,
        approvals_count: int,
        approvals_required: int
    ) -> None:
        self._log(
            logging.INFO,
            "APPROVAL_RECORDED",
            repo_id=repo_id,
            subject_id=subject_id,
            signer=signer,
            approvals_count=approvals_count,
            approvals_required=approvals_required,
            message=f"Approval {approvals_count}/{approvals_required} for {subject_id}"
        )

    def approval_reached(self, repo_id: str, subject_id: str, approvals_count: int) -> None:
        self._log(
            logging.INFO,
            "APPROVAL_REACHED",
            repo_id=repo_id,
            subject_id=subject_id,
            approvals_count=approvals_count,
            message=f"Quorum reached for {subject_id}"
        )

    def operation_rejected(self, operation: str, kind: str, **details) -> None:
        self._log(
            logging.WARNING,
            "OPERATION_REJECTED",
            operation=operation,
            kind=kind,
            **details,
            message=f"{operation} rejected: {kind}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
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

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


audit_log = AuditLogger()
