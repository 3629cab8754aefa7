"""
Permagate: payment-gated authorization engine

Version: 1.0.0

Gates three scarce resources behind verified, single-use ledger payments and
Ed25519 signatures:

- repository registration (``repo_init`` payment)
- one-time decryption tickets (``otp_share`` payment)
- multi-party push approval (``multisig_setup`` payment, then a signer quorum)

Usage:
    from permagate import Engine, EngineConfig, PaymentClaim, RepoRegistration

    with Engine(EngineConfig.from_env()) as engine:
        engine.payments.verify_and_record(PaymentClaim(tx_hash=tx))
        repo = engine.repos.register(
            RepoRegistration(name="acme", owner=wallet, payment_tx=tx)
        )

Every rejection is an ``EngineError`` carrying an ``ErrorKind``.
"""

__version__ = "1.0.0"

from .approvals import ApprovalCoordinator
from .config import EngineConfig, PaymentRequirements, validate_config
from .db import Store
from .engine import Engine
from .errors import EngineError, ErrorKind
from .ledger import (
    InMemoryLedger,
    LedgerClient,
    LedgerTransaction,
    SolanaRpcClient,
    TokenBalance,
    measure_deposit,
)
from .models import (
    ApprovalSubmission,
    MultisigSetupRequest,
    PaymentClaim,
    PushEntry,
    RepoRef,
    RepoRegistration,
    TicketRequest,
)
from .payments import PaymentLedger, VerifiedPayment
from .pushes import LoggedPush, PushLog
from .records import (
    ApprovalOutcome,
    ApprovalRequestRecord,
    ApprovalStatus,
    ApprovalStatusView,
    IssuedTicket,
    MultisigSetupResult,
    PaymentPurpose,
    PaymentRecord,
    PaymentStatus,
    PushRecord,
    RedeemedTicket,
    RepoRecord,
)
from .repos import RepositoryRegistry, compute_threshold
from .signatures import SignatureVerifier, approval_message
from .tickets import TicketIssuer


__all__ = [
    "__version__",

    # Engine
    "Engine",
    "EngineConfig",
    "PaymentRequirements",
    "validate_config",
    "Store",

    # Errors
    "EngineError",
    "ErrorKind",

    # Ledger
    "LedgerClient",
    "LedgerTransaction",
    "TokenBalance",
    "SolanaRpcClient",
    "InMemoryLedger",
    "measure_deposit",

    # Inputs
    "PaymentClaim",
    "RepoRef",
    "RepoRegistration",
    "TicketRequest",
    "MultisigSetupRequest",
    "ApprovalSubmission",
    "PushEntry",

    # Components
    "PaymentLedger",
    "VerifiedPayment",
    "RepositoryRegistry",
    "compute_threshold",
    "TicketIssuer",
    "ApprovalCoordinator",
    "PushLog",
    "LoggedPush",
    "SignatureVerifier",
    "approval_message",

    # Records
    "PaymentPurpose",
    "PaymentStatus",
    "PaymentRecord",
    "RepoRecord",
    "IssuedTicket",
    "RedeemedTicket",
    "ApprovalStatus",
    "ApprovalRequestRecord",
    "ApprovalOutcome",
    "ApprovalStatusView",
    "MultisigSetupResult",
    "PushRecord",
]
