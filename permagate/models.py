"""
Input models for Permagate operations.

Every operation takes one of these instead of a loose dict. Strings are
trimmed; signer lists accept a list or a comma-separated string.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .records import PaymentPurpose
from .util import parse_signers


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)


class RepoRef(_Input):
    """Identifies a repository by id, or by owner and name."""
    repo_id: Optional[str] = None
    owner: Optional[str] = None
    name: Optional[str] = None

    def has_identity(self) -> bool:
        return bool(self.repo_id or (self.owner and self.name))


class PaymentClaim(_Input):
    """A caller's claim that ``tx_hash`` paid for ``purpose``.

    ``min_amount``, ``asset_id`` and ``recipient`` default to the engine's
    configured payment requirements.
    """
    tx_hash: str = Field(min_length=1)
    purpose: PaymentPurpose = PaymentPurpose.REPO_INIT
    payer: Optional[str] = None
    repo_name: Optional[str] = None
    min_amount: Optional[int] = Field(default=None, ge=0)
    asset_id: Optional[str] = None
    recipient: Optional[str] = None


class RepoRegistration(_Input):
    name: str = Field(min_length=1)
    owner: str = Field(min_length=1)
    payment_tx: str = Field(min_length=1)
    is_private: bool = False
    signers: List[str] = Field(default_factory=list)
    threshold: Optional[int] = None

    @field_validator("signers", mode="before")
    @classmethod
    def _parse_signers(cls, v):
        return parse_signers(v)


class TicketRequest(RepoRef):
    payload_ref: str = Field(min_length=1)
    payment_tx: str = Field(min_length=1)
    key_material: Optional[str] = None
    ttl_minutes: Optional[int] = None

    @model_validator(mode="after")
    def _require_repo(self):
        if not self.has_identity():
            raise ValueError("repo_id or owner and name required")
        return self


class MultisigSetupRequest(RepoRef):
    subject_id: str = Field(min_length=1)
    payment_tx: str = Field(min_length=1)
    signers: List[str] = Field(default_factory=list)
    threshold: Optional[int] = None
    branch: Optional[str] = None

    @field_validator("signers", mode="before")
    @classmethod
    def _parse_signers(cls, v):
        return parse_signers(v)

    @model_validator(mode="after")
    def _require_repo(self):
        if not self.has_identity():
            raise ValueError("repo_id or owner and name required")
        return self


class ApprovalSubmission(RepoRef):
    subject_id: str = Field(min_length=1)
    signer: str = Field(min_length=1)
    signature_b64: str = Field(min_length=1)

    @model_validator(mode="after")
    def _require_repo(self):
        if not self.has_identity():
            raise ValueError("repo_id or owner and name required")
        return self


class PushEntry(_Input):
    subject_id: str = Field(min_length=1)
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    encrypted: bool = False
