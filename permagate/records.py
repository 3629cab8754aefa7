"""
Permagate stored records.

Plain dataclasses mirroring the store's rows. Components return these; the
``to_dict`` forms are what an API layer would serialize.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .util import atomic_to_decimal, utc_rfc3339


class PaymentPurpose(str, Enum):
    """What a payment is allowed to pay for."""
    REPO_INIT = "repo_init"
    OTP_SHARE = "otp_share"
    MULTISIG_SETUP = "multisig_setup"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class ApprovalStatus(str, Enum):
    """
    Approval request states.

    PENDING: waiting for signatures
    APPROVED: quorum reached (terminal)
    """
    PENDING = "pending"
    APPROVED = "approved"


@dataclass
class PaymentRecord:
    id: str
    tx_hash: str
    payer: Optional[str]
    purpose: PaymentPurpose
    amount: int
    status: PaymentStatus
    repo_name: Optional[str]
    consumed_at: Optional[int]
    metadata: Dict[str, Any]
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PaymentRecord":
        return cls(
            id=row["id"],
            tx_hash=row["tx_hash"],
            payer=row["payer"],
            purpose=PaymentPurpose(row["purpose"]),
            amount=int(row["amount"]),
            status=PaymentStatus(row["status"]),
            repo_name=row["repo_name"],
            consumed_at=row["consumed_at"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=row["created_at"],
        )

    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    def to_dict(self, decimals: Optional[int] = None) -> Dict[str, Any]:
        if decimals is None:
            decimals = int(self.metadata.get("decimals", 0))
        return {
            "id": self.id,
            "tx_hash": self.tx_hash,
            "payer": self.payer,
            "purpose": self.purpose.value,
            "amount": str(self.amount),
            "amount_decimal": atomic_to_decimal(self.amount, decimals),
            "status": self.status.value,
            "repo_name": self.repo_name,
            "consumed_at": utc_rfc3339(self.consumed_at),
            "metadata": self.metadata,
            "created_at": utc_rfc3339(self.created_at),
        }


@dataclass
class RepoRecord:
    id: str
    name: str
    owner: str
    is_private: bool
    is_multisig: bool
    threshold: Optional[int]
    signers: List[str]
    payment_tx: Optional[str]
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RepoRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            owner=row["owner"],
            is_private=bool(row["is_private"]),
            is_multisig=bool(row["is_multisig"]),
            threshold=row["threshold"],
            signers=json.loads(row["signers"] or "[]"),
            payment_tx=row["payment_tx"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner": self.owner,
            "is_private": self.is_private,
            "is_multisig": self.is_multisig,
            "threshold": self.threshold,
            "signers": list(self.signers),
            "payment_tx": self.payment_tx,
            "created_at": utc_rfc3339(self.created_at),
        }


@dataclass
class TicketRecord:
    id: str
    repo_id: str
    payment_tx: str
    token_hash: str
    key_material: str
    payload_ref: str
    expires_at: int
    used_at: Optional[int]
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TicketRecord":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            payment_tx=row["payment_tx"],
            token_hash=row["token_hash"],
            key_material=row["key_material"],
            payload_ref=row["payload_ref"],
            expires_at=row["expires_at"],
            used_at=row["used_at"],
            created_at=row["created_at"],
        )


@dataclass
class IssuedTicket:
    """Returned once, at issue time. The token is not stored in clear."""
    ticket_id: str
    repo_id: str
    token: str
    key_material: str
    payload_ref: str
    expires_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "otp": self.token,
            "decrypt_key": self.key_material,
            "payload_ref": self.payload_ref,
            "repo_id": self.repo_id,
            "expires_at": utc_rfc3339(self.expires_at),
        }


@dataclass
class RedeemedTicket:
    repo_id: str
    payload_ref: str
    key_material: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo_id": self.repo_id,
            "payload_ref": self.payload_ref,
            "decrypt_key": self.key_material,
        }


@dataclass
class ApprovalRequestRecord:
    id: str
    repo_id: str
    subject_id: str
    branch: Optional[str]
    status: ApprovalStatus
    approvals_required: int
    approvals_count: int
    approved_at: Optional[int]
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ApprovalRequestRecord":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            subject_id=row["subject_id"],
            branch=row["branch"],
            status=ApprovalStatus(row["status"]),
            approvals_required=row["approvals_required"],
            approvals_count=row["approvals_count"],
            approved_at=row["approved_at"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "approvals_required": self.approvals_required,
            "approvals_count": self.approvals_count,
        }


@dataclass
class ApprovalSignatureRecord:
    signer: str
    signature_b64: str
    created_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signer": self.signer,
            "signature_b64": self.signature_b64,
            "created_at": utc_rfc3339(self.created_at),
        }


@dataclass
class ApprovalOutcome:
    """Result of a single approval submission."""
    status: ApprovalStatus
    approvals_count: int
    approvals_required: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "approvals_count": self.approvals_count,
            "approvals_required": self.approvals_required,
        }


@dataclass
class ApprovalStatusView:
    status: ApprovalStatus
    approvals_count: int
    approvals_required: int
    approved_at: Optional[int]
    signatures: List[ApprovalSignatureRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "approvals_count": self.approvals_count,
            "approvals_required": self.approvals_required,
            "approved_at": utc_rfc3339(self.approved_at),
            "signatures": [s.to_dict() for s in self.signatures],
        }


@dataclass
class MultisigSetupResult:
    repo: RepoRecord
    approval: Optional[ApprovalRequestRecord]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo": self.repo.to_dict(),
            "multisig": self.approval.to_dict() if self.approval else None,
        }


@dataclass
class PushRecord:
    id: str
    repo_id: Optional[str]
    subject_id: str
    owner: Optional[str]
    repo: Optional[str]
    branch: Optional[str]
    encrypted: bool
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PushRecord":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            subject_id=row["subject_id"],
            owner=row["owner"],
            repo=row["repo"],
            branch=row["branch"],
            encrypted=bool(row["encrypted"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "tx_id": self.subject_id,
            "owner": self.owner,
            "repo": self.repo,
            "branch": self.branch,
            "encrypted": self.encrypted,
            "created_at": utc_rfc3339(self.created_at),
        }
