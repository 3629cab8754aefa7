"""
Push log.

Records pushes by subject id (the storage transaction id of the pushed
bundle). A push to a multisig repository is registered with the approval
coordinator so signers can approve it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .approvals import ApprovalCoordinator
from .db import Store
from .models import PushEntry
from .records import ApprovalRequestRecord, PushRecord
from .repos import load_repo
from .util import generate_id, now_epoch

logger = logging.getLogger(__name__)


@dataclass
class LoggedPush:
    push: PushRecord
    approval: Optional[ApprovalRequestRecord]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log": self.push.to_dict(),
            "multisig": self.approval.to_dict() if self.approval else None,
        }


class PushLog:

    def __init__(
        self,
        store: Store,
        approvals: ApprovalCoordinator,
        clock: Callable[[], int] = now_epoch
    ):
        self.store = store
        self.approvals = approvals
        self.clock = clock

    def record_push(self, entry: PushEntry) -> LoggedPush:
        """
        Log a push. Idempotent on ``subject_id``: a repeat returns the first entry.
        """
        with self.store.transaction() as conn:
            repo = load_repo(conn, owner=entry.owner, name=entry.repo)
            conn.execute(
                "INSERT OR IGNORE INTO pushes(id, repo_id, subject_id, owner, repo, branch, "
                "encrypted, created_at) VALUES(?,?,?,?,?,?,?,?)",
                (
                    generate_id(),
                    repo.id if repo else None,
                    entry.subject_id,
                    entry.owner,
                    entry.repo,
                    entry.branch,
                    int(entry.encrypted),
                    self.clock(),
                ),
            )
            row = conn.execute("SELECT * FROM pushes WHERE subject_id = ?", (entry.subject_id,)).fetchone()
            approval = None
            if repo is not None:
                approval = self.approvals.register_if_multisig(repo, entry.subject_id, entry.branch, conn=conn)
        logger.info("Push %s logged for %s/%s", entry.subject_id, entry.owner, entry.repo)
        return LoggedPush(push=PushRecord.from_row(row), approval=approval)

    def list_pushes(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[PushRecord]:
        """Pushes newest first, optionally filtered by owner and repo name."""
        clauses = []
        params: List[Any] = []
        if owner:
            clauses.append("owner = ?")
            params.append(owner)
        if repo:
            clauses.append("repo = ?")
            params.append(repo)
        sql = "SELECT * FROM pushes"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.store.connection().execute(sql, params).fetchall()
        return [PushRecord.from_row(r) for r in rows]

    def latest_push(self, owner: Optional[str] = None, repo: Optional[str] = None) -> Optional[PushRecord]:
        pushes = self.list_pushes(owner, repo, limit=1)
        return pushes[0] if pushes else None
