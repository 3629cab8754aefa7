"""
Configuration module for Permagate.

Centralizes all configuration with environment variable support and
validation. The engine never reads the environment itself; callers build an
``EngineConfig`` (usually with ``EngineConfig.from_env()``) and inject it.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .util import decimal_to_atomic

# ============================================================
# Environment Configuration
# ============================================================

DB_PATH = os.getenv("PERMAGATE_DB_PATH", "data/permagate.db")
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("DB_BUSY_TIMEOUT_SECONDS", "30"))

# Ledger network
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
LEDGER_TIMEOUT_SECONDS = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "10"))

# Payment requirements
PAYMENT_DESTINATION = os.getenv("PAYMENT_DESTINATION", "")
PAYMENT_TOKEN_MINT = os.getenv("PAYMENT_TOKEN_MINT", "")
PAYMENT_TOKEN_DECIMALS = int(os.getenv("PAYMENT_TOKEN_DECIMALS", "9"))
PAYMENT_MIN_TOKENS = os.getenv("PAYMENT_MIN_TOKENS", "10")

# Approval message template prefix
APP_NAME = os.getenv("PERMAGATE_APP_NAME", "Permagit")

# Tickets
TICKET_TTL_MINUTES = int(os.getenv("TICKET_TTL_MINUTES", str(60 * 24)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")


@dataclass
class PaymentRequirements:
    """What a payment must deliver to be accepted."""
    recipient: str
    asset_id: str
    min_amount: int
    decimals: int = 9

    def is_configured(self) -> bool:
        return bool(self.recipient and self.asset_id)


@dataclass
class EngineConfig:
    """Everything the engine needs, resolved once at startup."""
    db_path: str = DB_PATH
    db_busy_timeout: float = DB_BUSY_TIMEOUT_SECONDS
    rpc_url: str = SOLANA_RPC_URL
    ledger_timeout: float = LEDGER_TIMEOUT_SECONDS
    app_name: str = APP_NAME
    ticket_ttl_minutes: int = TICKET_TTL_MINUTES
    payment: PaymentRequirements = field(default_factory=lambda: PaymentRequirements(
        recipient=PAYMENT_DESTINATION,
        asset_id=PAYMENT_TOKEN_MINT,
        min_amount=decimal_to_atomic(PAYMENT_MIN_TOKENS, PAYMENT_TOKEN_DECIMALS),
        decimals=PAYMENT_TOKEN_DECIMALS,
    ))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
        """
        env = os.environ if environ is None else environ
        decimals = int(env.get("PAYMENT_TOKEN_DECIMALS", "9"))
        min_tokens = env.get("PAYMENT_MIN_TOKENS", "10")
        return cls(
            db_path=env.get("PERMAGATE_DB_PATH", "data/permagate.db"),
            db_busy_timeout=float(env.get("DB_BUSY_TIMEOUT_SECONDS", "30")),
            rpc_url=env.get("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"),
            ledger_timeout=float(env.get("LEDGER_TIMEOUT_SECONDS", "10")),
            app_name=env.get("PERMAGATE_APP_NAME", "Permagit"),
            ticket_ttl_minutes=int(env.get("TICKET_TTL_MINUTES", str(60 * 24))),
            payment=PaymentRequirements(
                recipient=env.get("PAYMENT_DESTINATION", ""),
                asset_id=env.get("PAYMENT_TOKEN_MINT", ""),
                min_amount=decimal_to_atomic(min_tokens, decimals),
                decimals=decimals,
            ),
        )


# ============================================================
# Validation
# ============================================================

def validate_config(config: EngineConfig) -> Dict[str, bool]:
    """
    Report which required settings are present.
    Returns dict of setting -> present.
    """
    return {
        "payment_destination": bool(config.payment.recipient),
        "payment_token_mint": bool(config.payment.asset_id),
        "payment_min_amount": config.payment.min_amount > 0,
        "rpc_url": bool(config.rpc_url),
    }
