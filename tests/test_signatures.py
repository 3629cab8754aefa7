"""
Signature verifier tests.
"""

import base58
import pytest

from permagate.errors import EngineError, ErrorKind
from permagate.signatures import (
    SignatureVerifier,
    approval_message,
    decode_public_key,
    decode_signature,
)
from permagate.util import b64e


def test_approval_message_template():
    assert approval_message("Permagit", "tx1") == b"Permagit Push Approval:tx1"


def test_valid_signature(make_signer):
    signer = make_signer()
    verifier = SignatureVerifier("Permagit")
    assert verifier.verify("push-1", signer.sign("push-1"), signer.identity) is True


def test_signature_over_other_subject_rejected(make_signer):
    signer = make_signer()
    verifier = SignatureVerifier("Permagit")
    assert verifier.verify("push-2", signer.sign("push-1"), signer.identity) is False


def test_signature_from_other_app_rejected(make_signer):
    signer = make_signer()
    verifier = SignatureVerifier("Permagit")
    assert verifier.verify("push-1", signer.sign("push-1", app_name="Other"), signer.identity) is False


def test_signature_from_other_key_rejected(make_signer):
    alice, mallory = make_signer(), make_signer()
    verifier = SignatureVerifier()
    assert verifier.verify("push-1", mallory.sign("push-1"), alice.identity) is False


@pytest.mark.parametrize("bad", ["%%%not-base64%%%", b64e(b"short")])
def test_malformed_signature(bad, make_signer):
    signer = make_signer()
    with pytest.raises(EngineError) as info:
        SignatureVerifier().verify("push-1", bad, signer.identity)
    assert info.value.kind == ErrorKind.INVALID_SIGNATURE_ENCODING


@pytest.mark.parametrize("bad", ["0OIl", base58.b58encode(b"too short").decode("ascii")])
def test_malformed_signer(bad, make_signer):
    signer = make_signer()
    with pytest.raises(EngineError) as info:
        SignatureVerifier().verify("push-1", signer.sign("push-1"), bad)
    assert info.value.kind == ErrorKind.INVALID_SIGNER


def test_decoders(make_signer):
    signer = make_signer()
    assert len(decode_public_key(signer.identity)) == 32
    assert len(decode_signature(signer.sign("x"))) == 64
