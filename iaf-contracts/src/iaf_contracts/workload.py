"""
Workload contracts.

A workload is one deployable unit owned by one namespace. Its environment is
assembled from three places: plain variables the caller set, variables
contributed by attached data sources, and reference-typed variables injected
by managed-service bindings. The names across all three must never overlap;
``Workload.env_var_origins`` is the single place that computes who owns which
name so the collision checks in the control plane agree with each other.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .naming import validate_env_var_name

PLAIN_ENV_ORIGIN = "workload env var"


class CredentialKeyRef(BaseModel):
    """Points at one key of a credential object in the workload's namespace."""

    name: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)


class EnvVar(BaseModel):
    """An environment variable: either a literal value or a credential reference."""

    name: str
    value: Optional[str] = None
    secret_ref: Optional[CredentialKeyRef] = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        return validate_env_var_name(value)

    @model_validator(mode="after")
    def _one_source(self) -> "EnvVar":
        if self.value is not None and self.secret_ref is not None:
            raise ValueError(f"env var {self.name!r} cannot have both a value and a secret_ref")
        return self

    @property
    def is_reference(self) -> bool:
        return self.secret_ref is not None


class GitSource(BaseModel):
    url: str = Field(..., min_length=1)
    revision: str = "main"
    credential: Optional[str] = Field(
        default=None,
        description="Name of a git credential in the session namespace used to clone private repositories.",
    )


class WorkloadSource(BaseModel):
    """Exactly one of a pre-built image, a git reference, or an uploaded blob."""

    image: Optional[str] = None
    git: Optional[GitSource] = None
    blob: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "WorkloadSource":
        provided = [field for field in ("image", "git", "blob") if getattr(self, field)]
        if len(provided) != 1:
            raise ValueError("exactly one of image, git, or blob must be provided")
        return self

    @property
    def kind(self) -> str:
        if self.image:
            return "image"
        if self.git:
            return "git"
        return "code"


class WorkloadPhase(str, Enum):
    PENDING = "Pending"
    BUILDING = "Building"
    DEPLOYING = "Deploying"
    RUNNING = "Running"
    FAILED = "Failed"


class WorkloadStatus(BaseModel):
    """Observed state, written only by the build/deploy subsystem."""

    phase: WorkloadPhase = WorkloadPhase.PENDING
    build_status: str = ""
    latest_image: str = ""
    available_replicas: int = 0
    url: str = ""


class AttachedDataSource(BaseModel):
    data_source: str
    credential_name: str
    env_var_names: List[str] = Field(default_factory=list)


class BoundManagedService(BaseModel):
    service: str
    credential_name: str


class Workload(BaseModel):
    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    source: WorkloadSource
    port: int = Field(default=8080, ge=1, le=65535)
    replicas: int = Field(default=1, ge=0)
    env: List[EnvVar] = Field(default_factory=list)
    attached_data_sources: List[AttachedDataSource] = Field(default_factory=list)
    bound_services: List[BoundManagedService] = Field(default_factory=list)
    status: WorkloadStatus = Field(default_factory=WorkloadStatus)

    def env_var_origins(self) -> Dict[str, str]:
        """Map every variable name the workload will receive to a description of its origin."""
        origins: Dict[str, str] = {}
        service_by_credential = {b.credential_name: b.service for b in self.bound_services}
        for var in self.env:
            if var.secret_ref is not None and var.secret_ref.name in service_by_credential:
                origins[var.name] = f"service {service_by_credential[var.secret_ref.name]!r}"
            else:
                origins[var.name] = PLAIN_ENV_ORIGIN
        for attachment in self.attached_data_sources:
            for name in attachment.env_var_names:
                origins[name] = f"data source {attachment.data_source!r}"
        return origins

    def attachment(self, data_source: str) -> Optional[AttachedDataSource]:
        for attachment in self.attached_data_sources:
            if attachment.data_source == data_source:
                return attachment
        return None

    def binding(self, service: str) -> Optional[BoundManagedService]:
        for binding in self.bound_services:
            if binding.service == service:
                return binding
        return None


__all__ = [
    "PLAIN_ENV_ORIGIN",
    "CredentialKeyRef",
    "EnvVar",
    "GitSource",
    "WorkloadSource",
    "WorkloadPhase",
    "WorkloadStatus",
    "AttachedDataSource",
    "BoundManagedService",
    "Workload",
]
