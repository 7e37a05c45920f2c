"""
Credential object contracts.

Credential objects are opaque, namespace-scoped key/value secrets. Their
payload is modelled as a closed tagged union keyed on ``type``; only the
types listed in ``COPYABLE_CREDENTIAL_TYPES`` may ever be copied across a
namespace boundary. Identity tokens and registry auth exist in the union so
they can be recognised and refused by tag.

All secret material is held in ``SecretStr`` so that serialising any of these
models (for logging or for an API response) renders masked values.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class CredentialType(str, Enum):
    BASIC_AUTH = "basic-auth"
    SSH_KEY = "ssh-key"
    OPAQUE = "opaque"
    SERVICE_ACCOUNT_TOKEN = "service-account-token"
    REGISTRY_AUTH = "registry-auth"


COPYABLE_CREDENTIAL_TYPES: frozenset[CredentialType] = frozenset(
    {CredentialType.BASIC_AUTH, CredentialType.SSH_KEY, CredentialType.OPAQUE}
)


class BasicAuthPayload(BaseModel):
    type: Literal[CredentialType.BASIC_AUTH] = CredentialType.BASIC_AUTH
    username: SecretStr
    password: SecretStr

    def keys(self) -> list[str]:
        return ["username", "password"]


class SSHKeyPayload(BaseModel):
    type: Literal[CredentialType.SSH_KEY] = CredentialType.SSH_KEY
    private_key: SecretStr

    def keys(self) -> list[str]:
        return ["ssh-privatekey"]


class OpaquePayload(BaseModel):
    type: Literal[CredentialType.OPAQUE] = CredentialType.OPAQUE
    data: Dict[str, SecretStr] = Field(default_factory=dict)

    def keys(self) -> list[str]:
        return sorted(self.data)


class ServiceAccountTokenPayload(BaseModel):
    type: Literal[CredentialType.SERVICE_ACCOUNT_TOKEN] = CredentialType.SERVICE_ACCOUNT_TOKEN
    token: SecretStr

    def keys(self) -> list[str]:
        return ["token"]


class RegistryAuthPayload(BaseModel):
    type: Literal[CredentialType.REGISTRY_AUTH] = CredentialType.REGISTRY_AUTH
    config: SecretStr

    def keys(self) -> list[str]:
        return [".dockerconfigjson"]


CredentialPayload = Annotated[
    Union[
        BasicAuthPayload,
        SSHKeyPayload,
        OpaquePayload,
        ServiceAccountTokenPayload,
        RegistryAuthPayload,
    ],
    Field(discriminator="type"),
]


class OwnerReference(BaseModel):
    """A cascading-deletion relation: this object goes away when the owner does."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str


class CredentialObject(BaseModel):
    """A namespace-scoped credential object as stored by the platform."""

    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner: Optional[OwnerReference] = None
    created_at: Optional[datetime] = None
    payload: CredentialPayload

    @property
    def type(self) -> CredentialType:
        return self.payload.type

    @property
    def copyable(self) -> bool:
        return self.payload.type in COPYABLE_CREDENTIAL_TYPES

    def reveal(self) -> dict:
        """Return the payload with secret values unmasked, for storage only."""
        dumped = self.payload.model_dump()
        return _unmask(dumped)


def _unmask(value):
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, dict):
        return {k: _unmask(v) for k, v in value.items()}
    return value


__all__ = [
    "CredentialType",
    "COPYABLE_CREDENTIAL_TYPES",
    "BasicAuthPayload",
    "SSHKeyPayload",
    "OpaquePayload",
    "ServiceAccountTokenPayload",
    "RegistryAuthPayload",
    "CredentialPayload",
    "OwnerReference",
    "CredentialObject",
]
