"""
Permagate error kinds.

Every failure the engine reports to its callers is an ``EngineError`` tagged
with one ``ErrorKind``. The kind is the contract; the message is for humans.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Domain failure kinds."""
    # Ledger verification
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    TRANSACTION_FAILED = "transaction_failed"
    DESTINATION_NOT_INVOLVED = "destination_not_involved"
    NO_DEPOSIT_DETECTED = "no_deposit_detected"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    PAYMENT_NOT_CONFIGURED = "payment_not_configured"
    PURPOSE_MISMATCH = "purpose_mismatch"

    # Payment consumption
    PAYMENT_NOT_FOUND = "payment_not_found"
    PAYMENT_WRONG_PURPOSE = "payment_wrong_purpose"
    PAYMENT_NOT_CONFIRMED = "payment_not_confirmed"
    PAYMENT_ALREADY_CONSUMED = "payment_already_consumed"

    # Repositories
    REPO_EXISTS = "repo_exists"
    REPO_NOT_FOUND = "repo_not_found"
    REPO_NOT_MULTISIG = "repo_not_multisig"

    # Tickets
    TICKET_NOT_FOUND = "ticket_not_found"
    TICKET_ALREADY_USED = "ticket_already_used"
    TICKET_EXPIRED = "ticket_expired"

    # Approvals
    SIGNER_NOT_AUTHORIZED = "signer_not_authorized"
    SIGNATURE_INVALID = "signature_invalid"
    SIGNATURE_ALREADY_SUBMITTED = "signature_already_submitted"
    INVALID_SIGNATURE_ENCODING = "invalid_signature_encoding"
    INVALID_SIGNER = "invalid_signer"
    REQUEST_NOT_TRACKED = "request_not_tracked"
    INVALID_THRESHOLD = "invalid_threshold"

    INVALID_INPUT = "invalid_input"


TRANSIENT_KINDS = frozenset({ErrorKind.LEDGER_UNAVAILABLE})


class EngineError(Exception):
    """Raised when an engine operation is rejected."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        self.message = message or kind.value
        self.details = details or {}
        super().__init__(f"{kind.value}: {self.message}")

    def is_transient(self) -> bool:
        """True when retrying the same call later may succeed."""
        return self.kind in TRANSIENT_KINDS

    def to_dict(self) -> Dict[str, Any]:
        d = {"error": self.kind.value, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d
