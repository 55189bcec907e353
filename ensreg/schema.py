"""
Request and result models for the commit-reveal flow and name resolution.

Secrets and hashes are carried as 0x-prefixed hex strings so results print and
serialize cleanly.
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ensreg.controller import CommitmentVariant, PriceShape
from ensreg.names import ZERO_ADDRESS, is_valid_label

NameType = Literal["contract", "transaction", "event"]


class RegistrationRequest(BaseModel):
    """Parameters that must be identical across commit and register."""

    label: str = Field(..., description="Name fragment, e.g. 'alice' for alice.eth")
    owner: str = Field(..., description="Address that will own the name")
    duration_seconds: int = Field(..., gt=0)
    secret: bytes = Field(..., description="32 random bytes; lose it and the commitment is unusable")
    resolver: str = Field(ZERO_ADDRESS, description="Resolver set at registration; zero when none")

    @field_validator("label")
    @classmethod
    def _label(cls, v: str) -> str:
        if not is_valid_label(v):
            raise ValueError(f"invalid label: {v!r}")
        return v

    @field_validator("secret")
    @classmethod
    def _secret(cls, v: bytes) -> bytes:
        if len(v) != 32:
            raise ValueError("secret must be exactly 32 bytes")
        return v

    @property
    def name(self) -> str:
        return f"{self.label}.eth"


class Quote(BaseModel):
    label: str
    duration_seconds: int
    base: int
    premium: int = 0
    total: int
    shape: PriceShape


class CommitResult(BaseModel):
    """Outcome of commit(). The caller must persist `secret`."""

    label: str
    commitment: str
    secret: str
    variant: CommitmentVariant
    tx_hash: Optional[str] = Field(None, description="None when an existing valid commitment was reused")
    block_number: Optional[int] = None
    already_committed: bool = False


class CommitmentStatus(BaseModel):
    label: str
    commitment: str
    variant: CommitmentVariant
    found: bool
    timestamp: int = 0
    age_seconds: int = 0
    min_age: int
    max_age: int
    ready: bool = False
    expired: bool = False
    remaining_seconds: int = Field(0, description="Seconds until ready; 0 once matured")


class RegistrationResult(BaseModel):
    name: str
    owner: str
    tx_hash: str
    block_number: Optional[int] = None
    value_wei: int
    variant: CommitmentVariant
    verified_owner: str = Field(..., description="registry.owner(namehash(name)) read after mining")


class NetworkStatus(BaseModel):
    """Connectivity check against the configured network."""

    network: str
    rpc_chain_id: int
    expected_chain_id: int
    block_number: int
    block_timestamp: int
    controller: str
    controller_has_code: bool

    @property
    def chain_matches(self) -> bool:
        return self.rpc_chain_id == self.expected_chain_id


class ResolveResult(BaseModel):
    name: str
    address: str
    network: str
    is_internal: bool = False
    type: Optional[NameType] = None
    resolver: Optional[str] = None
    text_records: Dict[str, str] = Field(default_factory=dict)
    forward_verified: Optional[bool] = Field(
        None, description="Reverse lookups only: whether name resolves back to address"
    )


class InternalName(BaseModel):
    """Locally assigned name for a contract, transaction or event (not on-chain)."""

    type: NameType
    address: str
    name: str
    network: str
    timestamp: int = Field(..., description="Milliseconds since epoch when registered")
