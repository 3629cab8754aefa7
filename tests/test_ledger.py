"""
Ledger verifier tests: deposit measurement and the Solana JSON-RPC client.
"""

import unittest

import pytest
import requests

from permagate.errors import EngineError, ErrorKind
from permagate.ledger import (
    InMemoryLedger,
    LedgerTransaction,
    SolanaRpcClient,
    TokenBalance,
    measure_deposit,
)


def balance(owner, mint, index, amount, decimals=6):
    return TokenBalance(owner, mint, index, amount, decimals)


class TestMeasureDeposit(unittest.TestCase):

    def assertKind(self, kind, tx):
        with self.assertRaises(EngineError) as ctx:
            measure_deposit(tx, "R", "X", 9)
        self.assertEqual(ctx.exception.kind, kind)

    def test_missing_transaction(self):
        self.assertKind(ErrorKind.TRANSACTION_NOT_FOUND, LedgerTransaction.missing())

    def test_failed_transaction(self):
        tx = LedgerTransaction(found=True, succeeded=False, post_balances=[balance("R", "X", 1, 10)])
        self.assertKind(ErrorKind.TRANSACTION_FAILED, tx)

    def test_destination_not_involved(self):
        tx = LedgerTransaction(found=True, succeeded=True, post_balances=[
            balance("someone-else", "X", 1, 10),
            balance("R", "other-mint", 2, 10),
        ])
        self.assertKind(ErrorKind.DESTINATION_NOT_INVOLVED, tx)

    def test_new_account_counts_from_zero(self):
        tx = LedgerTransaction(found=True, succeeded=True, post_balances=[balance("R", "X", 3, 25)])
        deposit = measure_deposit(tx, "R", "X", 9)
        self.assertEqual(deposit.amount, 25)
        self.assertEqual(deposit.decimals, 6)
        self.assertEqual(deposit.account_index, 3)

    def test_existing_account_uses_net_delta(self):
        tx = LedgerTransaction(
            found=True,
            succeeded=True,
            pre_balances=[balance("R", "X", 1, 1000), balance("R", "X", 2, 5)],
            post_balances=[balance("R", "X", 1, 1010)],
        )
        self.assertEqual(measure_deposit(tx, "R", "X", 9).amount, 10)

    def test_no_deposit(self):
        tx = LedgerTransaction(
            found=True,
            succeeded=True,
            pre_balances=[balance("R", "X", 1, 50)],
            post_balances=[balance("R", "X", 1, 50)],
        )
        self.assertKind(ErrorKind.NO_DEPOSIT_DETECTED, tx)

    def test_decimals_fall_back_to_default(self):
        tx = LedgerTransaction(found=True, succeeded=True, post_balances=[
            TokenBalance("R", "X", 1, 7, None),
        ])
        self.assertEqual(measure_deposit(tx, "R", "X", 9).decimals, 9)


class TestInMemoryLedger(unittest.TestCase):

    def test_unknown_hash_is_missing(self):
        self.assertFalse(InMemoryLedger().get_transaction("nope").found)

    def test_fail_next(self):
        ledger = InMemoryLedger()
        ledger.add_transfer("tx", "R", "X", 5)
        ledger.fail_next()
        with self.assertRaises(EngineError) as ctx:
            ledger.get_transaction("tx")
        self.assertTrue(ctx.exception.is_transient())
        self.assertTrue(ledger.get_transaction("tx").found)


# ============================================================
# Solana RPC client
# ============================================================

class FakeResponse:

    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:

    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


RPC_RESULT = {
    "slot": 1,
    "meta": {
        "err": None,
        "preTokenBalances": [
            {"accountIndex": 1, "mint": "X", "owner": "R",
             "uiTokenAmount": {"amount": "1000", "decimals": 9}},
        ],
        "postTokenBalances": [
            {"accountIndex": 1, "mint": "X", "owner": "R",
             "uiTokenAmount": {"amount": "11000", "decimals": 9}},
            {"accountIndex": 2, "mint": "X", "owner": "payer",
             "uiTokenAmount": {"amount": "0", "decimals": 9}},
        ],
    },
}


def test_rpc_get_transaction_parses_balances():
    session = FakeSession(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": RPC_RESULT}))
    client = SolanaRpcClient("http://rpc.test", timeout=2.5, session=session)

    tx = client.get_transaction("sig1")

    assert tx.found and tx.succeeded
    assert tx.pre_balances[0] == TokenBalance("R", "X", 1, 1000, 9)
    assert len(tx.post_balances) == 2
    assert measure_deposit(tx, "R", "X", 6).amount == 10000

    sent = session.requests[0]
    assert sent["url"] == "http://rpc.test"
    assert sent["timeout"] == 2.5
    assert sent["json"]["method"] == "getTransaction"
    assert sent["json"]["params"][0] == "sig1"
    assert sent["json"]["params"][1]["commitment"] == "confirmed"
    assert sent["json"]["params"][1]["maxSupportedTransactionVersion"] == 0


def test_rpc_null_result_is_missing():
    session = FakeSession(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": None}))
    tx = SolanaRpcClient("http://rpc.test", session=session).get_transaction("sig")
    assert tx.found is False


def test_rpc_failed_transaction():
    result = {"meta": {"err": {"InstructionError": [0, "Custom"]}, "postTokenBalances": []}}
    session = FakeSession(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": result}))
    tx = SolanaRpcClient("http://rpc.test", session=session).get_transaction("sig")
    assert tx.found is True
    assert tx.succeeded is False


@pytest.mark.parametrize("exc", [
    requests.Timeout("slow"),
    requests.ConnectionError("refused"),
])
def test_rpc_transport_errors_are_transient(exc):
    client = SolanaRpcClient("http://rpc.test", session=FakeSession(exc=exc))
    with pytest.raises(EngineError) as info:
        client.get_transaction("sig")
    assert info.value.kind == ErrorKind.LEDGER_UNAVAILABLE
    assert info.value.is_transient()


def test_rpc_http_error_is_transient():
    client = SolanaRpcClient("http://rpc.test", session=FakeSession(FakeResponse({}, status=503)))
    with pytest.raises(EngineError) as info:
        client.get_transaction("sig")
    assert info.value.kind == ErrorKind.LEDGER_UNAVAILABLE


def test_rpc_error_payload():
    payload = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "Node is behind"}}
    client = SolanaRpcClient("http://rpc.test", session=FakeSession(FakeResponse(payload)))
    with pytest.raises(EngineError) as info:
        client.get_transaction("sig")
    assert info.value.kind == ErrorKind.LEDGER_UNAVAILABLE
    assert info.value.message == "Node is behind"
    assert info.value.details["rpc_error"]["code"] == -32005
