"""
Permagate engine.

Wires configuration, the store, the ledger client and the components into one
object with an explicit lifecycle:

    engine = Engine(EngineConfig.from_env())
    engine.open()
    try:
        verified = engine.payments.verify_and_record(PaymentClaim(tx_hash=...))
        repo = engine.repos.register(RepoRegistration(...))
    finally:
        engine.close()

or ``with Engine(config) as engine: ...``.
"""

import logging
from typing import Callable, Optional

from .approvals import ApprovalCoordinator
from .config import EngineConfig, validate_config
from .db import Store
from .ledger import LedgerClient, SolanaRpcClient
from .payments import PaymentLedger
from .pushes import PushLog
from .repos import RepositoryRegistry
from .signatures import SignatureVerifier
from .tickets import TicketIssuer
from .util import now_epoch

logger = logging.getLogger(__name__)


class Engine:
    """
    Payment-gated authorization engine.

    Args:
        config: Engine configuration
        ledger: Ledger client (defaults to a Solana RPC client for
            ``config.rpc_url``)
        store: Store (defaults to one at ``config.db_path``)
        clock: Returns the current epoch seconds
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        ledger: Optional[LedgerClient] = None,
        store: Optional[Store] = None,
        clock: Callable[[], int] = now_epoch
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        self.store = store or Store(self.config.db_path, busy_timeout=self.config.db_busy_timeout)
        self.ledger = ledger or SolanaRpcClient(self.config.rpc_url, timeout=self.config.ledger_timeout)
        self.verifier = SignatureVerifier(self.config.app_name)

        self.payments = PaymentLedger(self.store, self.ledger, self.config.payment, clock=clock)
        self.approvals = ApprovalCoordinator(self.store, self.verifier, clock=clock)
        self.repos = RepositoryRegistry(self.store, self.payments, self.approvals, clock=clock)
        self.tickets = TicketIssuer(
            self.store,
            self.payments,
            default_ttl_minutes=self.config.ticket_ttl_minutes,
            clock=clock,
        )
        self.pushes = PushLog(self.store, self.approvals, clock=clock)

    def open(self) -> "Engine":
        self.store.open()
        missing = [k for k, ok in validate_config(self.config).items() if not ok]
        if missing:
            logger.warning("Engine opened with incomplete configuration: %s", ", ".join(missing))
        return self

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "Engine":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
