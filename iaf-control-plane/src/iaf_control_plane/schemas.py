"""
This module defines the Pydantic request models for the control-plane HTTP API.

Response bodies are the plain payloads returned by the service classes; the
records themselves are defined in ``iaf_contracts``. Secret-bearing fields are
typed as ``SecretStr`` so they are masked if a request model is ever logged.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr

from iaf_contracts import CredentialPayload, DataSource, EnvVar, WorkloadSource, WorkloadStatus


class RegisterSessionRequest(BaseModel):
    name: str = Field(default="", description="Optional display name for the session")


class SessionResponse(BaseModel):
    session_id: str
    namespace: str
    message: str


class DeployWorkloadRequest(BaseModel):
    """Payload for creating or updating a workload."""

    name: str = Field(..., description="Workload name; unique across all sessions")
    source: WorkloadSource
    port: int = Field(default=8080, ge=1, le=65535)
    replicas: int = Field(default=1, ge=0)
    env: List[EnvVar] = Field(default_factory=list, description="Plain environment variables")


class AttachDataSourceRequest(BaseModel):
    data_source: str = Field(..., description="Name of the data source to attach")


class ProvisionServiceRequest(BaseModel):
    name: str = Field(..., description="Service name (lowercase, hyphens allowed)")
    type: str = Field(..., description="Service type: 'postgres'")
    plan: str = Field(..., description="Service plan: 'micro', 'small' or 'ha'")


class BindServiceRequest(BaseModel):
    workload: str = Field(..., description="Name of the workload to bind to")


class AddGitCredentialRequest(BaseModel):
    """
    Payload for storing a git credential.

    ``basic-auth`` requires ``username`` and ``password`` and an ``https://``
    server URL; ``ssh`` requires ``private_key`` and an ``identity@host``
    endpoint.
    """

    name: str
    type: str = Field(..., description="'basic-auth' or 'ssh'")
    git_server_url: str
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    private_key: Optional[SecretStr] = None


class RegisterDataSourceRequest(BaseModel):
    """Operator payload adding a catalog entry, optionally with its credential."""

    data_source: DataSource
    credential: Optional[CredentialPayload] = None


class ClusterConditionsReport(BaseModel):
    """Condition list reported by the database operator for one cluster."""

    conditions: List[Dict[str, Any]] = Field(default_factory=list)


class WorkloadStatusReport(BaseModel):
    status: WorkloadStatus
