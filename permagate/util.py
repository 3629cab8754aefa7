"""
Utility functions for Permagate.

Provides hashing, encoding, token generation,
amount conversion and time utilities.
"""

import base64
import hashlib
import re
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Union

DECIMAL_PATTERN = re.compile(r'^(\d+)(\.\d+)?$')


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes. Rejects non-alphabet characters."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def utc_rfc3339(ts_epoch: Optional[int]) -> Optional[str]:
    """Convert Unix timestamp to RFC3339 UTC string."""
    if ts_epoch is None:
        return None
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def generate_id() -> str:
    """Generate a random record identifier."""
    return str(uuid.uuid4())


def generate_token(nbytes: int = 16) -> str:
    """Generate an unguessable hex token (16 bytes = 128 bits by default)."""
    return secrets.token_hex(nbytes)


def generate_key_material(nbytes: int = 32) -> str:
    """Generate base64 encoded random key material (256 bits by default)."""
    return b64e(secrets.token_bytes(nbytes))


def decimal_to_atomic(value: str, decimals: int) -> int:
    """
    Convert a decimal token amount ("10.5") to its smallest unit.

    Extra fractional digits beyond ``decimals`` are truncated.

    Raises:
        ValueError: If the value is not a plain non-negative decimal
    """
    if not isinstance(value, str):
        raise ValueError("invalid_decimal")
    normalized = value.strip()
    if not DECIMAL_PATTERN.match(normalized):
        raise ValueError("invalid_decimal")
    whole, _, fraction = normalized.partition(".")
    frac_padded = (fraction + "0" * decimals)[:decimals]
    return int(whole + frac_padded)


def atomic_to_decimal(amount: int, decimals: int) -> str:
    """Convert a smallest-unit amount to a decimal string without trailing zeros."""
    negative = amount < 0
    raw = str(abs(amount)).rjust(decimals + 1, "0")
    if decimals == 0:
        int_part, frac_part = raw, ""
    else:
        int_part = raw[:-decimals] or "0"
        frac_part = raw[-decimals:].rstrip("0")
    text = int_part + ("." + frac_part if frac_part else "")
    return ("-" if negative else "") + text


def parse_signers(value: Union[None, str, Iterable[Any]]) -> List[str]:
    """
    Normalize a signer list.

    Accepts a list or a comma-separated string. Entries are trimmed, blanks
    and non-strings dropped, duplicates removed keeping first occurrence.
    """
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [v if isinstance(v, str) else "" for v in value]
    seen = set()
    signers = []
    for item in items:
        item = item.strip()
        if item and item not in seen:
            seen.add(item)
            signers.append(item)
    return signers


def mask_sensitive(value: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if not value:
        return ""
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
