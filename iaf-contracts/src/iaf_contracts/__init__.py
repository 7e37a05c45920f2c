"""
This package defines the shared data contracts used across the IAF control
plane.

It is the single source of truth for the records the control plane reads and
writes (sessions, workloads, managed services, data sources and credential
objects) and for the deterministic naming rules that tie them together. The
models are Pydantic-based so every record crossing a module or process
boundary is validated on the way in.
"""
from .credentials import (
    COPYABLE_CREDENTIAL_TYPES,
    BasicAuthPayload,
    CredentialObject,
    CredentialPayload,
    CredentialType,
    OpaquePayload,
    OwnerReference,
    RegistryAuthPayload,
    ServiceAccountTokenPayload,
    SSHKeyPayload,
)
from .data_source import DataSource, DataSourceSecretRef
from .managed_service import (
    PLAN_CATALOG,
    SERVICE_ENV_VAR_NAMES,
    SERVICE_ENV_VARS,
    ManagedService,
    ManagedServiceStatus,
    PlanEntry,
    ServicePhase,
    ServicePlan,
    ServiceType,
    plan_entry,
    service_type,
)
from .naming import (
    NAMESPACE_PREFIX,
    connection_credential_name,
    data_source_credential_name,
    managed_labels,
    namespace_for_session,
    network_policy_name,
    validate_env_var_name,
    validate_resource_name,
)
from .session import Session
from .workload import (
    AttachedDataSource,
    BoundManagedService,
    CredentialKeyRef,
    EnvVar,
    GitSource,
    Workload,
    WorkloadPhase,
    WorkloadSource,
    WorkloadStatus,
)

__all__ = [
    "COPYABLE_CREDENTIAL_TYPES",
    "BasicAuthPayload",
    "CredentialObject",
    "CredentialPayload",
    "CredentialType",
    "OpaquePayload",
    "OwnerReference",
    "RegistryAuthPayload",
    "ServiceAccountTokenPayload",
    "SSHKeyPayload",
    "DataSource",
    "DataSourceSecretRef",
    "PLAN_CATALOG",
    "SERVICE_ENV_VAR_NAMES",
    "SERVICE_ENV_VARS",
    "ManagedService",
    "ManagedServiceStatus",
    "PlanEntry",
    "ServicePhase",
    "ServicePlan",
    "ServiceType",
    "plan_entry",
    "service_type",
    "NAMESPACE_PREFIX",
    "connection_credential_name",
    "data_source_credential_name",
    "managed_labels",
    "namespace_for_session",
    "network_policy_name",
    "validate_env_var_name",
    "validate_resource_name",
    "Session",
    "AttachedDataSource",
    "BoundManagedService",
    "CredentialKeyRef",
    "EnvVar",
    "GitSource",
    "Workload",
    "WorkloadPhase",
    "WorkloadSource",
    "WorkloadStatus",
]

__version__ = "0.1.0"
