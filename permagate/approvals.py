"""
Approval Coordinator

Signature-gated quorum for pending actions on multisig repositories.

State machine per approval request:

    PENDING --(approvals_count >= approvals_required)--> APPROVED

APPROVED is terminal. Further valid signatures are still stored and counted
but never change the status.

Double counting is prevented by the UNIQUE(request_id, signer) constraint on
stored signatures, not by an application check. The count is recomputed from
the stored rows on every approval.
"""

import logging
import sqlite3
from typing import Callable, List, Optional

from .db import Store, is_unique_violation
from .errors import EngineError, ErrorKind
from .logging_config import audit_log
from .models import ApprovalSubmission, RepoRef
from .records import (
    ApprovalOutcome,
    ApprovalRequestRecord,
    ApprovalSignatureRecord,
    ApprovalStatus,
    ApprovalStatusView,
    RepoRecord,
)
from .repos import require_repo
from .signatures import SignatureVerifier
from .util import generate_id, now_epoch

logger = logging.getLogger(__name__)


class ApprovalCoordinator:
    """
    Tracks approval requests and the signatures submitted for them.

    Args:
        store: Open store
        verifier: Checks signatures over the approval message
        clock: Returns the current epoch seconds
    """

    def __init__(
        self,
        store: Store,
        verifier: SignatureVerifier,
        clock: Callable[[], int] = now_epoch
    ):
        self.store = store
        self.verifier = verifier
        self.clock = clock

    def _load_request(
        self,
        conn: sqlite3.Connection,
        repo_id: str,
        subject_id: str
    ) -> Optional[ApprovalRequestRecord]:
        row = conn.execute(
            "SELECT * FROM approval_requests WHERE repo_id = ? AND subject_id = ?",
            (repo_id, subject_id),
        ).fetchone()
        return ApprovalRequestRecord.from_row(row) if row else None

    def get_request(self, repo_id: str, subject_id: str) -> Optional[ApprovalRequestRecord]:
        return self._load_request(self.store.connection(), repo_id, subject_id)

    def register_if_multisig(
        self,
        repo: RepoRecord,
        subject_id: str,
        branch: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None
    ) -> Optional[ApprovalRequestRecord]:
        """
        Start tracking ``subject_id`` if ``repo`` requires approvals.

        Returns None for repos that are not multisig or have no positive
        threshold. Registering the same subject twice keeps the first request,
        including its required count.

        Args:
            conn: Connection of an enclosing transaction, if any
        """
        if not repo.is_multisig or not repo.threshold or repo.threshold < 1:
            return None
        conn = conn or self.store.connection()
        cur = conn.execute(
            "INSERT OR IGNORE INTO approval_requests(id, repo_id, subject_id, branch, status, "
            "approvals_required, approvals_count, approved_at, created_at) "
            "VALUES(?,?,?,?,?,?,0,NULL,?)",
            (
                generate_id(),
                repo.id,
                subject_id,
                branch,
                ApprovalStatus.PENDING.value,
                repo.threshold,
                self.clock(),
            ),
        )
        if cur.rowcount:
            logger.info("Tracking %s on repo %s (requires %d)", subject_id, repo.id, repo.threshold)
        return self._load_request(conn, repo.id, subject_id)

    def approve(self, submission: ApprovalSubmission) -> ApprovalOutcome:
        """
        Record one signer's approval of a subject.

        Raises:
            EngineError: REPO_NOT_FOUND, REPO_NOT_MULTISIG,
                SIGNER_NOT_AUTHORIZED, INVALID_SIGNATURE_ENCODING,
                INVALID_SIGNER, SIGNATURE_INVALID, REQUEST_NOT_TRACKED,
                SIGNATURE_ALREADY_SUBMITTED
        """
        repo = require_repo(self.store.connection(), submission)
        if not repo.is_multisig:
            raise EngineError(ErrorKind.REPO_NOT_MULTISIG, details={"repo_id": repo.id})

        # Authorization is checked against the current signer set.
        if submission.signer not in repo.signers:
            audit_log.security_event(
                "unauthorized_signer",
                severity="medium",
                repo_id=repo.id,
                subject_id=submission.subject_id,
                signer=submission.signer,
            )
            raise EngineError(ErrorKind.SIGNER_NOT_AUTHORIZED, details={"signer": submission.signer})

        if not self.verifier.verify(submission.subject_id, submission.signature_b64, submission.signer):
            audit_log.security_event(
                "signature_rejected",
                severity="high",
                repo_id=repo.id,
                subject_id=submission.subject_id,
                signer=submission.signer,
            )
            raise EngineError(ErrorKind.SIGNATURE_INVALID)

        reached = False
        with self.store.transaction() as conn:
            request = self._load_request(conn, repo.id, submission.subject_id)
            if request is None:
                raise EngineError(
                    ErrorKind.REQUEST_NOT_TRACKED,
                    details={"repo_id": repo.id, "subject_id": submission.subject_id},
                )

            now = self.clock()
            try:
                conn.execute(
                    "INSERT INTO approval_signatures(id, request_id, signer, signature_b64, created_at) "
                    "VALUES(?,?,?,?,?)",
                    (generate_id(), request.id, submission.signer, submission.signature_b64, now),
                )
            except sqlite3.IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                raise EngineError(
                    ErrorKind.SIGNATURE_ALREADY_SUBMITTED,
                    details={"signer": submission.signer},
                ) from e

            count = conn.execute(
                "SELECT COUNT(*) AS cnt FROM approval_signatures WHERE request_id = ?",
                (request.id,),
            ).fetchone()["cnt"]

            status = request.status
            if status == ApprovalStatus.PENDING and count >= request.approvals_required:
                status = ApprovalStatus.APPROVED
                reached = True
                conn.execute(
                    "UPDATE approval_requests SET approvals_count = ?, status = ?, approved_at = ? "
                    "WHERE id = ? AND status = ?",
                    (count, status.value, now, request.id, ApprovalStatus.PENDING.value),
                )
            else:
                conn.execute(
                    "UPDATE approval_requests SET approvals_count = ? WHERE id = ?",
                    (count, request.id),
                )

        audit_log.approval_recorded(
            repo.id, submission.subject_id, submission.signer, count, request.approvals_required
        )
        if reached:
            audit_log.approval_reached(repo.id, submission.subject_id, count)
        return ApprovalOutcome(status=status, approvals_count=count, approvals_required=request.approvals_required)

    def status(self, ref: RepoRef, subject_id: str) -> ApprovalStatusView:
        """
        Current state of an approval request with its signatures, oldest first.

        Raises:
            EngineError: REPO_NOT_FOUND, REQUEST_NOT_TRACKED
        """
        conn = self.store.connection()
        repo = require_repo(conn, ref)
        request = self._load_request(conn, repo.id, subject_id)
        if request is None:
            raise EngineError(
                ErrorKind.REQUEST_NOT_TRACKED,
                details={"repo_id": repo.id, "subject_id": subject_id},
            )
        rows = conn.execute(
            "SELECT signer, signature_b64, created_at FROM approval_signatures "
            "WHERE request_id = ? ORDER BY created_at ASC, rowid ASC",
            (request.id,),
        ).fetchall()
        signatures: List[ApprovalSignatureRecord] = [
            ApprovalSignatureRecord(r["signer"], r["signature_b64"], r["created_at"]) for r in rows
        ]
        return ApprovalStatusView(
            status=request.status,
            approvals_count=request.approvals_count,
            approvals_required=request.approvals_required,
            approved_at=request.approved_at,
            signatures=signatures,
        )
