"""
Ledger verification for Permagate.

A ``LedgerClient`` answers one question: what happened in transaction
``tx_hash``? It reports whether the transaction exists, whether it succeeded,
and the token balances before and after it. ``measure_deposit`` turns that
into the net amount a recipient received in one asset.

Remote calls never run inside a store transaction.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)


# ============================================================
# Ledger data
# ============================================================

@dataclass(frozen=True)
class TokenBalance:
    """One token account balance as reported by the ledger."""
    owner: Optional[str]
    asset_id: Optional[str]
    account_index: int
    amount: int
    decimals: Optional[int] = None


@dataclass
class LedgerTransaction:
    found: bool
    succeeded: bool = False
    pre_balances: List[TokenBalance] = field(default_factory=list)
    post_balances: List[TokenBalance] = field(default_factory=list)

    @classmethod
    def missing(cls) -> "LedgerTransaction":
        return cls(found=False)


@dataclass(frozen=True)
class Deposit:
    amount: int
    decimals: int
    account_index: int


class LedgerClient(ABC):
    """Abstract interface for the external ledger network."""

    @abstractmethod
    def get_transaction(self, tx_hash: str) -> LedgerTransaction:
        """
        Fetch a transaction by hash.

        Returns:
            LedgerTransaction with ``found=False`` when the ledger does not
            know the hash

        Raises:
            EngineError(LEDGER_UNAVAILABLE): On timeouts and transport errors
        """
        pass


# ============================================================
# Solana JSON-RPC
# ============================================================

class SolanaRpcClient(LedgerClient):
    """
    Ledger client for a Solana JSON-RPC endpoint.

    Uses ``getTransaction`` at ``confirmed`` commitment. Every request carries
    a timeout so a hung node surfaces as ``LEDGER_UNAVAILABLE``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._request_id = 0
        self._lock = threading.Lock()

    def _next_id(self) -> int:
        with self._lock:
            self._request_id += 1
            return self._request_id

    def _call(self, method: str, params: List[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        try:
            r = self._session.post(self.url, json=body, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            logger.warning("Ledger RPC %s timed out after %ss", method, self.timeout)
            raise EngineError(ErrorKind.LEDGER_UNAVAILABLE, "ledger request timed out") from e
        except (requests.RequestException, ValueError) as e:
            logger.warning("Ledger RPC %s failed: %s", method, e)
            raise EngineError(ErrorKind.LEDGER_UNAVAILABLE, str(e)) from e

        if data.get("error"):
            err = data["error"]
            logger.warning("Ledger RPC %s returned error: %s", method, err)
            raise EngineError(
                ErrorKind.LEDGER_UNAVAILABLE,
                err.get("message", "rpc error") if isinstance(err, dict) else str(err),
                details={"rpc_error": err},
            )
        return data.get("result")

    def get_transaction(self, tx_hash: str) -> LedgerTransaction:
        result = self._call("getTransaction", [
            tx_hash,
            {
                "encoding": "json",
                "commitment": "confirmed",
                "maxSupportedTransactionVersion": 0,
            },
        ])
        if not result or not result.get("meta"):
            return LedgerTransaction.missing()

        meta = result["meta"]
        return LedgerTransaction(
            found=True,
            succeeded=meta.get("err") is None,
            pre_balances=[_parse_balance(b) for b in meta.get("preTokenBalances") or []],
            post_balances=[_parse_balance(b) for b in meta.get("postTokenBalances") or []],
        )


def _parse_balance(entry: Dict[str, Any]) -> TokenBalance:
    ui = entry.get("uiTokenAmount") or {}
    decimals = ui.get("decimals")
    return TokenBalance(
        owner=entry.get("owner"),
        asset_id=entry.get("mint"),
        account_index=int(entry.get("accountIndex", -1)),
        amount=int(ui.get("amount") or "0"),
        decimals=decimals if isinstance(decimals, int) else None,
    )


# ============================================================
# In-memory ledger
# ============================================================

class InMemoryLedger(LedgerClient):
    """
    Ledger held in memory, for development and tests.

    Thread-safe. ``fail_next`` makes the next lookups raise
    ``LEDGER_UNAVAILABLE`` to simulate an unreachable node.
    """

    def __init__(self):
        self._transactions: Dict[str, LedgerTransaction] = {}
        self._lock = threading.Lock()
        self._failures = 0
        self.calls = 0

    def add(self, tx_hash: str, transaction: LedgerTransaction) -> None:
        with self._lock:
            self._transactions[tx_hash] = transaction

    def add_transfer(
        self,
        tx_hash: str,
        recipient: str,
        asset_id: str,
        amount: int,
        decimals: int = 9,
        pre_amount: Optional[int] = None,
        succeeded: bool = True,
        account_index: int = 1
    ) -> None:
        """Record a transfer of ``amount`` into ``recipient``'s account."""
        pre = []
        if pre_amount is not None:
            pre.append(TokenBalance(recipient, asset_id, account_index, pre_amount, decimals))
        post = [TokenBalance(recipient, asset_id, account_index, (pre_amount or 0) + amount, decimals)]
        self.add(tx_hash, LedgerTransaction(
            found=True,
            succeeded=succeeded,
            pre_balances=pre,
            post_balances=post,
        ))

    def fail_next(self, times: int = 1) -> None:
        with self._lock:
            self._failures += times

    def get_transaction(self, tx_hash: str) -> LedgerTransaction:
        with self._lock:
            self.calls += 1
            if self._failures > 0:
                self._failures -= 1
                raise EngineError(ErrorKind.LEDGER_UNAVAILABLE, "ledger unreachable")
            return self._transactions.get(tx_hash, LedgerTransaction.missing())


# ============================================================
# Deposit measurement
# ============================================================

def measure_deposit(
    tx: LedgerTransaction,
    recipient: str,
    asset_id: str,
    default_decimals: int
) -> Deposit:
    """
    Compute the net amount ``recipient`` received in ``asset_id``.

    The post balance is matched to the pre balance with the same owner, asset
    and account index; a missing pre balance counts as zero, so a destination
    account created by the transaction still measures correctly.

    Raises:
        EngineError: TRANSACTION_NOT_FOUND, TRANSACTION_FAILED,
            DESTINATION_NOT_INVOLVED or NO_DEPOSIT_DETECTED
    """
    if not tx.found:
        raise EngineError(ErrorKind.TRANSACTION_NOT_FOUND)
    if not tx.succeeded:
        raise EngineError(ErrorKind.TRANSACTION_FAILED)

    dest = next(
        (b for b in tx.post_balances if b.owner == recipient and b.asset_id == asset_id),
        None
    )
    if dest is None:
        raise EngineError(ErrorKind.DESTINATION_NOT_INVOLVED)

    pre = next(
        (
            b for b in tx.pre_balances
            if b.owner == recipient
            and b.asset_id == asset_id
            and b.account_index == dest.account_index
        ),
        None
    )
    delta = dest.amount - (pre.amount if pre else 0)
    if delta <= 0:
        raise EngineError(ErrorKind.NO_DEPOSIT_DETECTED)

    decimals = dest.decimals if dest.decimals is not None else default_decimals
    return Deposit(amount=delta, decimals=decimals, account_index=dest.account_index)
