import base58
import pytest
from nacl.signing import SigningKey

from permagate import (
    Engine,
    EngineConfig,
    InMemoryLedger,
    PaymentClaim,
    PaymentPurpose,
    PaymentRequirements,
    approval_message,
)
from permagate.util import b64e

RECIPIENT = "RecipientWa11et"
ASSET = "AssetM1nt"
START = 1_700_000_000


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class Signer:
    """Ed25519 key pair identified by its base58 public key."""

    def __init__(self):
        self.key = SigningKey.generate()
        self.identity = base58.b58encode(bytes(self.key.verify_key)).decode("ascii")

    def sign(self, subject_id: str, app_name: str = "Permagit") -> str:
        return b64e(self.key.sign(approval_message(app_name, subject_id)).signature)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def config(tmp_path):
    return EngineConfig(
        db_path=str(tmp_path / "permagate.db"),
        db_busy_timeout=30.0,
        rpc_url="http://ledger.invalid",
        ledger_timeout=1.0,
        app_name="Permagit",
        ticket_ttl_minutes=1440,
        payment=PaymentRequirements(recipient=RECIPIENT, asset_id=ASSET, min_amount=10, decimals=0),
    )


@pytest.fixture
def engine(config, ledger, clock):
    eng = Engine(config, ledger=ledger, clock=clock).open()
    yield eng
    eng.close()


@pytest.fixture
def pay(engine, ledger):
    """Put a transfer on the ledger and record it. Returns the PaymentRecord."""
    def _pay(tx_hash, purpose=PaymentPurpose.REPO_INIT, amount=10, payer=None):
        ledger.add_transfer(tx_hash, RECIPIENT, ASSET, amount, decimals=0)
        return engine.payments.verify_and_record(
            PaymentClaim(tx_hash=tx_hash, purpose=purpose, payer=payer)
        ).payment
    return _pay


@pytest.fixture
def make_signer():
    return Signer


@pytest.fixture
def signers():
    return [Signer(), Signer(), Signer()]
