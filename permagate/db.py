"""
Database module for Permagate.

Provides SQLite-based storage for payments, repositories, tickets, approval
requests, approval signatures and the push log.

The store is the only synchronization point shared by every caller, so all
state changes are either one conditional statement (autocommit) or run inside
``Store.transaction()``, which opens a ``BEGIN IMMEDIATE`` transaction. That
takes SQLite's write lock for the whole unit of work: a later reader of the
same row inside another ``transaction()`` waits until commit or rollback.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List

logger = logging.getLogger(__name__)

TABLES = [
    "payments",
    "repos",
    "tickets",
    "approval_requests",
    "approval_signatures",
    "pushes",
]

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS payments (
        id TEXT PRIMARY KEY,
        tx_hash TEXT UNIQUE NOT NULL,
        payer TEXT,
        purpose TEXT NOT NULL,
        amount TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        repo_name TEXT,
        consumed_at INTEGER,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at INTEGER NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS repos (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner TEXT NOT NULL,
        is_private INTEGER NOT NULL DEFAULT 0,
        is_multisig INTEGER NOT NULL DEFAULT 0,
        threshold INTEGER,
        signers TEXT NOT NULL DEFAULT '[]',
        payment_tx TEXT,
        created_at INTEGER NOT NULL,
        UNIQUE(owner, name)
    );""",
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        repo_id TEXT NOT NULL REFERENCES repos(id),
        payment_tx TEXT NOT NULL,
        token_hash TEXT UNIQUE NOT NULL,
        key_material TEXT NOT NULL,
        payload_ref TEXT NOT NULL,
        expires_at INTEGER NOT NULL,
        used_at INTEGER,
        created_at INTEGER NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS approval_requests (
        id TEXT PRIMARY KEY,
        repo_id TEXT NOT NULL REFERENCES repos(id),
        subject_id TEXT NOT NULL,
        branch TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        approvals_required INTEGER NOT NULL CHECK (approvals_required >= 1),
        approvals_count INTEGER NOT NULL DEFAULT 0,
        approved_at INTEGER,
        created_at INTEGER NOT NULL,
        UNIQUE(repo_id, subject_id)
    );""",
    """
    CREATE TABLE IF NOT EXISTS approval_signatures (
        id TEXT PRIMARY KEY,
        request_id TEXT NOT NULL REFERENCES approval_requests(id) ON DELETE CASCADE,
        signer TEXT NOT NULL,
        signature_b64 TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        UNIQUE(request_id, signer)
    );""",
    """
    CREATE TABLE IF NOT EXISTS pushes (
        id TEXT PRIMARY KEY,
        repo_id TEXT REFERENCES repos(id),
        subject_id TEXT UNIQUE NOT NULL,
        owner TEXT,
        repo TEXT,
        branch TEXT,
        encrypted INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL
    );""",
    "CREATE INDEX IF NOT EXISTS idx_approval_signatures_request ON approval_signatures(request_id);",
    "CREATE INDEX IF NOT EXISTS idx_pushes_owner_repo ON pushes(owner, repo);",
]


class Store:
    """
    Relational store handle with an explicit lifecycle.

    Each thread gets its own connection; connections are reused within the
    thread and all of them are closed by ``close()``.
    """

    def __init__(self, path: str, busy_timeout: float = 30.0):
        self.path = Path(path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._opened = False

    def open(self) -> "Store":
        """Create the schema if needed. Safe to call multiple times."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.connection()
        conn.execute("PRAGMA journal_mode=WAL;")
        with self.transaction() as tx:
            for statement in SCHEMA:
                tx.execute(statement)
        self._opened = True
        logger.info("Store opened at %s", self.path)
        return self

    def close(self) -> None:
        """Close every connection opened through this store."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def connection(self) -> sqlite3.Connection:
        """
        Get the calling thread's connection.

        Connections run in autocommit mode; ``transaction()`` manages
        explicit transactions.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Serializable unit of work.

        Commits on success, rolls back on any exception and re-raises it.
        """
        conn = self.connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def stats(self) -> Dict[str, int]:
        """Row counts per table, for monitoring."""
        conn = self.connection()
        stats = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
            stats[f"{table}_count"] = cur.fetchone()["cnt"]
        return stats

    def __enter__(self) -> "Store":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    """True when an IntegrityError comes from a UNIQUE or PRIMARY KEY constraint."""
    message = str(exc)
    return "UNIQUE constraint failed" in message or "PRIMARY KEY" in message
