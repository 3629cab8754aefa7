"""
Signature verification for Permagate approvals.

Signers are identified by base58-encoded Ed25519 public keys; signatures are
base64-encoded detached Ed25519 signatures over a fixed message template.

Malformed input raises ``EngineError`` (INVALID_SIGNATURE_ENCODING or
INVALID_SIGNER) so callers can tell bad input from a rejected signature.
"""

import binascii

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .errors import EngineError, ErrorKind
from .util import b64d

SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 32

APPROVAL_TEMPLATE = "{app} Push Approval:{subject_id}"


def approval_message(app_name: str, subject_id: str) -> bytes:
    """The exact bytes a signer signs to approve ``subject_id``."""
    return APPROVAL_TEMPLATE.format(app=app_name, subject_id=subject_id).encode("utf-8")


def decode_signature(signature_b64: str) -> bytes:
    try:
        signature = b64d(signature_b64)
    except (binascii.Error, ValueError) as e:
        raise EngineError(ErrorKind.INVALID_SIGNATURE_ENCODING) from e
    if len(signature) != SIGNATURE_LENGTH:
        raise EngineError(
            ErrorKind.INVALID_SIGNATURE_ENCODING,
            f"signature must be {SIGNATURE_LENGTH} bytes"
        )
    return signature


def decode_public_key(signer: str) -> bytes:
    try:
        key = base58.b58decode(signer)
    except ValueError as e:
        raise EngineError(ErrorKind.INVALID_SIGNER) from e
    if len(key) != PUBLIC_KEY_LENGTH:
        raise EngineError(ErrorKind.INVALID_SIGNER, f"public key must be {PUBLIC_KEY_LENGTH} bytes")
    return key


def verify_detached(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify an Ed25519 detached signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        VerifyKey(public_key).verify(message, signature)
        return True
    except BadSignatureError:
        return False


class SignatureVerifier:
    """Verifies approval signatures for one application name."""

    def __init__(self, app_name: str = "Permagit"):
        self.app_name = app_name

    def message_for(self, subject_id: str) -> bytes:
        return approval_message(self.app_name, subject_id)

    def verify(self, subject_id: str, signature_b64: str, signer: str) -> bool:
        """
        Check ``signature_b64`` from ``signer`` over the approval message.

        Raises:
            EngineError: INVALID_SIGNATURE_ENCODING or INVALID_SIGNER on
                malformed input
        """
        signature = decode_signature(signature_b64)
        public_key = decode_public_key(signer)
        return verify_detached(self.message_for(subject_id), signature, public_key)
