"""
Ticket Issuer tests.
"""

import threading

import pytest

from permagate import EngineError, ErrorKind, PaymentPurpose, RepoRegistration, TicketRequest
from permagate.util import sha256_hex


@pytest.fixture
def repo(engine, pay):
    pay("repo-tx")
    return engine.repos.register(RepoRegistration(name="acme", owner="alice", payment_tx="repo-tx"))


def issue(engine, pay, repo, tx="otp-tx", **kwargs):
    pay(tx, purpose=PaymentPurpose.OTP_SHARE)
    return engine.tickets.issue(TicketRequest(
        repo_id=repo.id, payload_ref="bundle-ref", payment_tx=tx, **kwargs
    ))


def test_issue_and_redeem(engine, pay, repo, clock):
    ticket = issue(engine, pay, repo, ttl_minutes=10)

    assert len(ticket.token) == 32
    assert ticket.expires_at == clock.now + 600
    assert ticket.repo_id == repo.id
    assert engine.payments.get_payment("otp-tx").is_consumed()

    redeemed = engine.tickets.redeem(ticket.token)
    assert redeemed.repo_id == repo.id
    assert redeemed.payload_ref == "bundle-ref"
    assert redeemed.key_material == ticket.key_material
    assert redeemed.to_dict()["decrypt_key"] == ticket.key_material
    assert ticket.to_dict()["otp"] == ticket.token


def test_issue_by_owner_and_name(engine, pay, repo):
    pay("otp-tx", purpose=PaymentPurpose.OTP_SHARE)
    ticket = engine.tickets.issue(TicketRequest(
        owner="alice", name="acme", payload_ref="bundle-ref", payment_tx="otp-tx",
    ))
    assert ticket.repo_id == repo.id


def test_token_not_stored_in_clear(engine, pay, repo):
    ticket = issue(engine, pay, repo)
    row = engine.store.connection().execute("SELECT token_hash FROM tickets").fetchone()
    assert row["token_hash"] == sha256_hex(ticket.token)
    assert row["token_hash"] != ticket.token


def test_supplied_key_material_kept(engine, pay, repo):
    ticket = issue(engine, pay, repo, key_material="caller-key")
    assert ticket.key_material == "caller-key"
    assert engine.tickets.redeem(ticket.token).key_material == "caller-key"


def test_default_ttl(engine, pay, repo, clock):
    ticket = issue(engine, pay, repo, ttl_minutes=0)
    assert ticket.expires_at == clock.now + 1440 * 60


def test_redeem_twice(engine, pay, repo):
    ticket = issue(engine, pay, repo)
    engine.tickets.redeem(ticket.token)
    with pytest.raises(EngineError) as info:
        engine.tickets.redeem(ticket.token)
    assert info.value.kind == ErrorKind.TICKET_ALREADY_USED


def test_expired_ticket(engine, pay, repo, clock):
    ticket = issue(engine, pay, repo, ttl_minutes=1)
    clock.advance(120)
    with pytest.raises(EngineError) as info:
        engine.tickets.redeem(ticket.token)
    assert info.value.kind == ErrorKind.TICKET_EXPIRED


def test_ticket_valid_at_expiry_instant(engine, pay, repo, clock):
    ticket = issue(engine, pay, repo, ttl_minutes=1)
    clock.advance(60)
    assert engine.tickets.redeem(ticket.token).repo_id == repo.id


def test_unknown_token(engine):
    for token in ["deadbeef", ""]:
        with pytest.raises(EngineError) as info:
            engine.tickets.redeem(token)
        assert info.value.kind == ErrorKind.TICKET_NOT_FOUND


def test_one_payment_one_ticket(engine, pay, repo):
    issue(engine, pay, repo)
    with pytest.raises(EngineError) as info:
        engine.tickets.issue(TicketRequest(repo_id=repo.id, payload_ref="again", payment_tx="otp-tx"))
    assert info.value.kind == ErrorKind.PAYMENT_ALREADY_CONSUMED
    assert engine.store.stats()["tickets_count"] == 1


def test_unknown_repo_leaves_payment(engine, pay):
    pay("otp-tx", purpose=PaymentPurpose.OTP_SHARE)
    with pytest.raises(EngineError) as info:
        engine.tickets.issue(TicketRequest(repo_id="missing", payload_ref="x", payment_tx="otp-tx"))
    assert info.value.kind == ErrorKind.REPO_NOT_FOUND
    assert engine.payments.get_payment("otp-tx").consumed_at is None


def test_concurrent_redeem_succeeds_once(engine, pay, repo):
    ticket = issue(engine, pay, repo)
    n = 4
    barrier = threading.Barrier(n)
    outcomes = []
    lock = threading.Lock()

    def redeem():
        barrier.wait()
        try:
            engine.tickets.redeem(ticket.token)
            outcome = "ok"
        except EngineError as e:
            outcome = e.kind
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=redeem) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count(ErrorKind.TICKET_ALREADY_USED) == n - 1
