"""
Repository Registry

Creates and reads repository metadata. Creation is paid for: every new repo
consumes one ``repo_init`` payment, and switching a repo to multisig mode
consumes one ``multisig_setup`` payment.
"""

import json
import logging
import math
import sqlite3
from typing import TYPE_CHECKING, Callable, List, Optional

from .db import Store
from .errors import EngineError, ErrorKind
from .logging_config import audit_log
from .models import MultisigSetupRequest, RepoRef, RepoRegistration
from .payments import PaymentLedger
from .records import MultisigSetupResult, PaymentPurpose, PaymentRecord, RepoRecord
from .util import generate_id, now_epoch

if TYPE_CHECKING:
    from .approvals import ApprovalCoordinator

logger = logging.getLogger(__name__)


def compute_threshold(signers: List[str], requested: Optional[int] = None) -> Optional[int]:
    """
    Effective approval threshold for a signer set.

    None when there are no signers. Otherwise ``requested`` if it lies in
    ``1..len(signers)``, else a simple majority, ``ceil(n / 2)``.
    """
    if not signers:
        return None
    if requested is not None and 1 <= requested <= len(signers):
        return requested
    return math.ceil(len(signers) / 2)


def load_repo(
    conn: sqlite3.Connection,
    repo_id: Optional[str] = None,
    owner: Optional[str] = None,
    name: Optional[str] = None
) -> Optional[RepoRecord]:
    """Find a repo by id, falling back to (owner, name)."""
    row = None
    if repo_id:
        row = conn.execute("SELECT * FROM repos WHERE id = ?", (repo_id,)).fetchone()
    if row is None and owner and name:
        row = conn.execute(
            "SELECT * FROM repos WHERE owner = ? AND name = ?", (owner, name)
        ).fetchone()
    return RepoRecord.from_row(row) if row else None


def require_repo(conn: sqlite3.Connection, ref: RepoRef) -> RepoRecord:
    repo = load_repo(conn, ref.repo_id, ref.owner, ref.name)
    if repo is None:
        raise EngineError(
            ErrorKind.REPO_NOT_FOUND,
            details={"repo_id": ref.repo_id, "owner": ref.owner, "name": ref.name},
        )
    return repo


class RepositoryRegistry:
    """
    Repository metadata store.

    Args:
        store: Open store
        payments: Payment ledger that gates creation
        approvals: Coordinator that tracks pending approvals for multisig repos
        clock: Returns the current epoch seconds
    """

    def __init__(
        self,
        store: Store,
        payments: PaymentLedger,
        approvals: "ApprovalCoordinator",
        clock: Callable[[], int] = now_epoch
    ):
        self.store = store
        self.payments = payments
        self.approvals = approvals
        self.clock = clock

    def get(self, repo_id: str) -> Optional[RepoRecord]:
        return load_repo(self.store.connection(), repo_id=repo_id)

    def find(self, owner: str, name: str) -> Optional[RepoRecord]:
        return load_repo(self.store.connection(), owner=owner, name=name)

    def resolve(self, ref: RepoRef) -> RepoRecord:
        """
        Raises:
            EngineError(REPO_NOT_FOUND)
        """
        return require_repo(self.store.connection(), ref)

    def register(self, request: RepoRegistration) -> RepoRecord:
        """
        Create a repository, consuming a ``repo_init`` payment.

        A name collision for the owner is a permanent failure: the transaction
        rolls back and the payment stays unconsumed.

        Raises:
            EngineError: REPO_EXISTS, or any consume failure
                (PAYMENT_NOT_FOUND, PAYMENT_WRONG_PURPOSE,
                PAYMENT_NOT_CONFIRMED, PAYMENT_ALREADY_CONSUMED)
        """
        signers = list(request.signers)
        threshold = compute_threshold(signers, request.threshold)
        is_multisig = len(signers) > 0

        def create(conn: sqlite3.Connection, payment: PaymentRecord) -> RepoRecord:
            repo_id = generate_id()
            cur = conn.execute(
                "INSERT OR IGNORE INTO repos(id, name, owner, is_private, is_multisig, threshold, "
                "signers, payment_tx, created_at) VALUES(?,?,?,?,?,?,?,?,?)",
                (
                    repo_id,
                    request.name,
                    request.owner,
                    int(request.is_private),
                    int(is_multisig),
                    threshold,
                    json.dumps(signers),
                    payment.tx_hash,
                    self.clock(),
                ),
            )
            if cur.rowcount == 0:
                audit_log.operation_rejected(
                    "register_repo", ErrorKind.REPO_EXISTS.value,
                    owner=request.owner, name=request.name,
                )
                raise EngineError(
                    ErrorKind.REPO_EXISTS,
                    f"{request.owner}/{request.name} already exists",
                )
            return load_repo(conn, repo_id=repo_id)

        repo = self.payments.consume_exactly_once(request.payment_tx, PaymentPurpose.REPO_INIT, create)
        audit_log.repo_registered(repo.id, repo.owner, repo.name, repo.is_multisig, repo.threshold)
        return repo

    def setup_multisig(self, request: MultisigSetupRequest) -> MultisigSetupResult:
        """
        Create or update a repo in multisig mode and track ``subject_id``.

        Consumes a ``multisig_setup`` payment. An existing repo keeps its
        original payment reference; its signers and threshold are replaced.
        Approval requests already registered keep their required count.

        Raises:
            EngineError: INVALID_THRESHOLD when no signers are given,
                REPO_NOT_FOUND when the repo is absent and no owner/name is
                given to create it, or any consume failure
        """
        signers = list(request.signers)
        threshold = compute_threshold(signers, request.threshold)
        if threshold is None:
            raise EngineError(ErrorKind.INVALID_THRESHOLD, "signers required")

        def apply(conn: sqlite3.Connection, payment: PaymentRecord) -> MultisigSetupResult:
            repo = load_repo(conn, request.repo_id, request.owner, request.name)
            if repo is None:
                if not (request.owner and request.name):
                    raise EngineError(ErrorKind.REPO_NOT_FOUND, details={"repo_id": request.repo_id})
                repo_id = generate_id()
                conn.execute(
                    "INSERT INTO repos(id, name, owner, is_private, is_multisig, threshold, "
                    "signers, payment_tx, created_at) VALUES(?,?,?,0,1,?,?,?,?)",
                    (
                        repo_id,
                        request.name,
                        request.owner,
                        threshold,
                        json.dumps(signers),
                        payment.tx_hash,
                        self.clock(),
                    ),
                )
            else:
                repo_id = repo.id
                conn.execute(
                    "UPDATE repos SET is_multisig = 1, threshold = ?, signers = ?, "
                    "payment_tx = COALESCE(payment_tx, ?) WHERE id = ?",
                    (threshold, json.dumps(signers), payment.tx_hash, repo_id),
                )
            repo = load_repo(conn, repo_id=repo_id)
            approval = self.approvals.register_if_multisig(repo, request.subject_id, request.branch, conn=conn)
            return MultisigSetupResult(repo=repo, approval=approval)

        result = self.payments.consume_exactly_once(request.payment_tx, PaymentPurpose.MULTISIG_SETUP, apply)
        audit_log.repo_registered(
            result.repo.id, result.repo.owner, result.repo.name, True, result.repo.threshold
        )
        return result
