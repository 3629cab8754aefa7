"""
Ticket Issuer

One-time, expiring tickets that release a payload reference and its key
material. Issuing consumes an ``otp_share`` payment. Redemption is a single
conditional update, so of two concurrent redemptions exactly one wins.

Only the SHA-256 hash of a ticket token is stored.
"""

import logging
import sqlite3
from typing import Callable, Optional

from .db import Store
from .errors import EngineError, ErrorKind
from .logging_config import audit_log
from .models import TicketRequest
from .payments import PaymentLedger
from .records import IssuedTicket, PaymentPurpose, PaymentRecord, RedeemedTicket, TicketRecord
from .repos import require_repo
from .util import generate_id, generate_key_material, generate_token, now_epoch, sha256_hex

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 60 * 24


class TicketIssuer:

    def __init__(
        self,
        store: Store,
        payments: PaymentLedger,
        default_ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], int] = now_epoch
    ):
        self.store = store
        self.payments = payments
        self.default_ttl_minutes = default_ttl_minutes
        self.clock = clock

    def _load(self, conn: sqlite3.Connection, token_hash: str) -> Optional[TicketRecord]:
        row = conn.execute("SELECT * FROM tickets WHERE token_hash = ?", (token_hash,)).fetchone()
        return TicketRecord.from_row(row) if row else None

    def issue(self, request: TicketRequest) -> IssuedTicket:
        """
        Issue a ticket for a repo, consuming an ``otp_share`` payment.

        ``ttl_minutes`` falls back to the configured default when absent or
        not positive. Key material is generated when not supplied.

        Raises:
            EngineError: REPO_NOT_FOUND, or any consume failure
        """
        repo = require_repo(self.store.connection(), request)
        ttl = request.ttl_minutes if request.ttl_minutes and request.ttl_minutes > 0 else self.default_ttl_minutes
        token = generate_token()
        key_material = request.key_material or generate_key_material()

        def create(conn: sqlite3.Connection, payment: PaymentRecord) -> IssuedTicket:
            now = self.clock()
            ticket_id = generate_id()
            expires_at = now + ttl * 60
            conn.execute(
                "INSERT INTO tickets(id, repo_id, payment_tx, token_hash, key_material, payload_ref, "
                "expires_at, used_at, created_at) VALUES(?,?,?,?,?,?,?,NULL,?)",
                (
                    ticket_id,
                    repo.id,
                    payment.tx_hash,
                    sha256_hex(token),
                    key_material,
                    request.payload_ref,
                    expires_at,
                    now,
                ),
            )
            return IssuedTicket(
                ticket_id=ticket_id,
                repo_id=repo.id,
                token=token,
                key_material=key_material,
                payload_ref=request.payload_ref,
                expires_at=expires_at,
            )

        ticket = self.payments.consume_exactly_once(request.payment_tx, PaymentPurpose.OTP_SHARE, create)
        audit_log.ticket_issued(ticket.ticket_id, ticket.repo_id, token, ticket.expires_at)
        return ticket

    def redeem(self, token: str) -> RedeemedTicket:
        """
        Redeem a ticket token. Succeeds at most once per ticket.

        Raises:
            EngineError: TICKET_NOT_FOUND, TICKET_ALREADY_USED, TICKET_EXPIRED
        """
        if not token:
            raise EngineError(ErrorKind.TICKET_NOT_FOUND)
        conn = self.store.connection()
        ticket = self._load(conn, sha256_hex(token))
        if ticket is None:
            raise EngineError(ErrorKind.TICKET_NOT_FOUND)
        if ticket.used_at is not None:
            raise EngineError(ErrorKind.TICKET_ALREADY_USED)

        now = self.clock()
        if now > ticket.expires_at:
            raise EngineError(ErrorKind.TICKET_EXPIRED)

        cur = conn.execute(
            "UPDATE tickets SET used_at = ? WHERE id = ? AND used_at IS NULL",
            (now, ticket.id),
        )
        if cur.rowcount != 1:
            audit_log.security_event(
                "ticket_redeem_race_lost", severity="low", ticket_id=ticket.id
            )
            raise EngineError(ErrorKind.TICKET_ALREADY_USED)

        audit_log.ticket_redeemed(ticket.id, ticket.repo_id)
        return RedeemedTicket(
            repo_id=ticket.repo_id,
            payload_ref=ticket.payload_ref,
            key_material=ticket.key_material,
        )
