"""
Payment Ledger

Records verified ledger payments and hands each one out exactly once.

Two operations carry the guarantees:

    verify_and_record    - idempotent on tx_hash; concurrent callers for the
                           same hash end up with the same single record
    consume_exactly_once - runs a unit of work and marks the payment
                           consumed in one transaction; if the unit of work
                           raises, nothing is consumed

Payments are never deleted. Consumption is a timestamp, so a used payment
stays auditable.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from .config import PaymentRequirements
from .db import Store
from .errors import EngineError, ErrorKind
from .ledger import LedgerClient, measure_deposit
from .logging_config import audit_log
from .models import PaymentClaim
from .records import PaymentPurpose, PaymentRecord, PaymentStatus
from .util import atomic_to_decimal, generate_id, now_epoch

logger = logging.getLogger(__name__)

T = TypeVar("T")

UnitOfWork = Callable[[sqlite3.Connection, PaymentRecord], T]


@dataclass
class VerifiedPayment:
    payment: PaymentRecord
    reused: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"payment": self.payment.to_dict(), "reused": self.reused}


def _reject(operation: str, kind: ErrorKind, message: Optional[str] = None, **details) -> EngineError:
    audit_log.operation_rejected(operation, kind.value, **details)
    return EngineError(kind, message, details or None)


class PaymentLedger:
    """
    Payment records keyed by ledger transaction hash.

    Args:
        store: Open store
        ledger: Ledger client used to verify new payments
        requirements: Default recipient, asset and minimum amount
        clock: Returns the current epoch seconds
    """

    def __init__(
        self,
        store: Store,
        ledger: LedgerClient,
        requirements: PaymentRequirements,
        clock: Callable[[], int] = now_epoch
    ):
        self.store = store
        self.ledger = ledger
        self.requirements = requirements
        self.clock = clock

    # ============================================================
    # Lookup
    # ============================================================

    def get_payment(self, tx_hash: str, conn: Optional[sqlite3.Connection] = None) -> Optional[PaymentRecord]:
        conn = conn or self.store.connection()
        row = conn.execute("SELECT * FROM payments WHERE tx_hash = ?", (tx_hash,)).fetchone()
        return PaymentRecord.from_row(row) if row else None

    # ============================================================
    # Verify and record
    # ============================================================

    def verify_and_record(self, claim: PaymentClaim) -> VerifiedPayment:
        """
        Verify ``claim`` against the ledger and record it.

        A hash that is already recorded is returned as-is (``reused=True``)
        after checking the purpose, without another ledger query.

        Raises:
            EngineError: PURPOSE_MISMATCH, PAYMENT_NOT_CONFIGURED,
                LEDGER_UNAVAILABLE, TRANSACTION_NOT_FOUND, TRANSACTION_FAILED,
                DESTINATION_NOT_INVOLVED, NO_DEPOSIT_DETECTED,
                INSUFFICIENT_AMOUNT
        """
        existing = self.get_payment(claim.tx_hash)
        if existing is not None:
            return VerifiedPayment(self._replay(existing, claim.purpose), reused=True)

        recipient = claim.recipient or self.requirements.recipient
        asset_id = claim.asset_id or self.requirements.asset_id
        min_amount = claim.min_amount if claim.min_amount is not None else self.requirements.min_amount
        if not recipient or not asset_id:
            raise _reject("verify_payment", ErrorKind.PAYMENT_NOT_CONFIGURED, tx_hash=claim.tx_hash)

        # Remote call; no store transaction is held here.
        tx = self.ledger.get_transaction(claim.tx_hash)
        try:
            deposit = measure_deposit(tx, recipient, asset_id, self.requirements.decimals)
        except EngineError as e:
            audit_log.operation_rejected("verify_payment", e.kind.value, tx_hash=claim.tx_hash)
            raise

        if deposit.amount < min_amount:
            raise _reject(
                "verify_payment",
                ErrorKind.INSUFFICIENT_AMOUNT,
                tx_hash=claim.tx_hash,
                amount=str(deposit.amount),
                min_amount=str(min_amount),
            )

        metadata = {
            "decimals": deposit.decimals,
            "min_amount": atomic_to_decimal(min_amount, deposit.decimals),
            "destination": recipient,
            "mint": asset_id,
        }
        cur = self.store.connection().execute(
            "INSERT OR IGNORE INTO payments(id, tx_hash, payer, purpose, amount, status, "
            "repo_name, consumed_at, metadata, created_at) VALUES(?,?,?,?,?,?,?,NULL,?,?)",
            (
                generate_id(),
                claim.tx_hash,
                claim.payer,
                claim.purpose.value,
                str(deposit.amount),
                PaymentStatus.CONFIRMED.value,
                claim.repo_name,
                json.dumps(metadata, sort_keys=True),
                self.clock(),
            ),
        )
        payment = self.get_payment(claim.tx_hash)
        if cur.rowcount == 0:
            # Lost the insert race; the winner's row is authoritative.
            logger.debug("Concurrent insert for %s, re-reading", claim.tx_hash)
            return VerifiedPayment(self._replay(payment, claim.purpose), reused=True)

        audit_log.payment_recorded(payment.tx_hash, payment.purpose.value, payment.amount, reused=False)
        return VerifiedPayment(payment, reused=False)

    def _replay(self, payment: PaymentRecord, purpose: PaymentPurpose) -> PaymentRecord:
        if payment.purpose != purpose:
            raise _reject(
                "verify_payment",
                ErrorKind.PURPOSE_MISMATCH,
                f"payment recorded for {payment.purpose.value}",
                tx_hash=payment.tx_hash,
                recorded_purpose=payment.purpose.value,
            )
        if payment.status != PaymentStatus.CONFIRMED:
            self.store.connection().execute(
                "UPDATE payments SET status = ? WHERE id = ? AND status <> ?",
                (PaymentStatus.CONFIRMED.value, payment.id, PaymentStatus.CONFIRMED.value),
            )
            payment.status = PaymentStatus.CONFIRMED
        audit_log.payment_recorded(payment.tx_hash, payment.purpose.value, payment.amount, reused=True)
        return payment

    # ============================================================
    # Consume exactly once
    # ============================================================

    def consume_exactly_once(
        self,
        tx_hash: str,
        expected_purpose: PaymentPurpose,
        unit_of_work: UnitOfWork
    ) -> T:
        """
        Run ``unit_of_work`` and consume the payment atomically.

        The payment row is read under the store's write lock, checked, handed
        to ``unit_of_work(conn, payment)`` and stamped consumed, all in one
        transaction. Any exception rolls everything back.

        Returns:
            Whatever ``unit_of_work`` returns

        Raises:
            EngineError: PAYMENT_NOT_FOUND, PAYMENT_WRONG_PURPOSE,
                PAYMENT_NOT_CONFIRMED, PAYMENT_ALREADY_CONSUMED, or any error
                raised by ``unit_of_work``
        """
        with self.store.transaction() as conn:
            payment = self.get_payment(tx_hash, conn)
            if payment is None:
                raise _reject("consume_payment", ErrorKind.PAYMENT_NOT_FOUND, tx_hash=tx_hash)
            if payment.purpose != expected_purpose:
                raise _reject(
                    "consume_payment",
                    ErrorKind.PAYMENT_WRONG_PURPOSE,
                    tx_hash=tx_hash,
                    expected=expected_purpose.value,
                    recorded=payment.purpose.value,
                )
            if payment.status != PaymentStatus.CONFIRMED:
                raise _reject("consume_payment", ErrorKind.PAYMENT_NOT_CONFIRMED, tx_hash=tx_hash)
            if payment.is_consumed():
                raise _reject("consume_payment", ErrorKind.PAYMENT_ALREADY_CONSUMED, tx_hash=tx_hash)

            result = unit_of_work(conn, payment)

            cur = conn.execute(
                "UPDATE payments SET consumed_at = ? WHERE id = ? AND consumed_at IS NULL",
                (self.clock(), payment.id),
            )
            if cur.rowcount != 1:
                raise _reject("consume_payment", ErrorKind.PAYMENT_ALREADY_CONSUMED, tx_hash=tx_hash)

        audit_log.payment_consumed(tx_hash, expected_purpose.value)
        return result
