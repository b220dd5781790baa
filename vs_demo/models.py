"""Pydantic data models for the VS demo workflows."""

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict

VPR_REF_PREFIX = "vpr:"


def vpr_schema_ref(chain_id: str, schema_id: str) -> str:
    """On-chain schema reference, e.g. vpr:verana:vna-testnet-1/cs/v1/js/110."""
    return f"vpr:verana:{chain_id}/cs/v1/js/{schema_id}"


class AgentHandle(BaseModel):
    """A running VS Agent.

    The DID is generated once at agent bootstrap and never changes.
    """

    admin_url: str
    public_url: str
    container_name: str
    did: Optional[str] = None
    tunnel_url: Optional[str] = None


class SchemaReference(BaseModel):
    """A credential schema as published by a Trust Registry.

    Attributes:
        schema_id: Numeric on-chain schema id
        credential_url: URL of the VTJSC describing the schema
        json_schema_ref: The vpr: reference embedded in the VTJSC
    """

    model_config = ConfigDict(frozen=True)

    schema_id: str
    credential_url: str
    json_schema_ref: str


class PermissionType(str, Enum):
    ECOSYSTEM = "ECOSYSTEM"
    ISSUER_GRANTOR = "ISSUER_GRANTOR"
    VERIFIER_GRANTOR = "VERIFIER_GRANTOR"
    ISSUER = "ISSUER"
    VERIFIER = "VERIFIER"
    HOLDER = "HOLDER"


class PermissionState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    SLASHED = "SLASHED"
    EXPIRED = "EXPIRED"


class Permission(BaseModel):
    """Permission record as listed by the indexer."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    perm_state: Optional[str] = None
    schema_id: Optional[str] = None
    did: Optional[str] = None
    effective_from: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.perm_state == PermissionState.ACTIVE.value


class IssuanceResponse(BaseModel):
    """Result of an issue-credential call.

    `kind` records whether the agent wrapped the credential in a
    ``{"credential": ...}`` envelope or returned it bare.
    """

    kind: Literal["wrapped", "bare"]
    credential: Dict[str, Any]

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "IssuanceResponse":
        wrapped = body.get("credential")
        if isinstance(wrapped, dict):
            return cls(kind="wrapped", credential=wrapped)
        return cls(kind="bare", credential=body)


class LinkedPresentation(BaseModel):
    """A credential attached to the agent's DID document."""

    schema_base_id: str
    credential: Dict[str, Any]


class TrustRegistry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_did: str
    language: str
    doc_url: str
    doc_digest: str
    aka: str = ""
