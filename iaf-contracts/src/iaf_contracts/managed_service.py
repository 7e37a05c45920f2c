"""
Managed service contracts and the resource plan catalog.

A managed service is a platform-provisioned backing resource (currently only
PostgreSQL) with its own lifecycle. Its phase is driven by what the database
operator reports; its bound-workload list is the deletion guard that keeps a
service with live consumers from being deprovisioned.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .naming import connection_credential_name


class ServiceType(str, Enum):
    POSTGRES = "postgres"


class ServicePlan(str, Enum):
    MICRO = "micro"
    SMALL = "small"
    HA = "ha"


class ServicePhase(str, Enum):
    PROVISIONING = "Provisioning"
    READY = "Ready"
    FAILED = "Failed"
    DELETING = "Deleting"


class PlanEntry(BaseModel):
    """Concrete sizing for one plan tier."""

    model_config = ConfigDict(frozen=True)

    instances: int = Field(..., ge=1)
    cpu: str
    memory: str
    storage_gb: int = Field(..., ge=1)

    @property
    def storage(self) -> str:
        return f"{self.storage_gb}Gi"


PLAN_CATALOG: Mapping[ServicePlan, PlanEntry] = MappingProxyType(
    {
        ServicePlan.MICRO: PlanEntry(instances=1, cpu="250m", memory="256Mi", storage_gb=1),
        ServicePlan.SMALL: PlanEntry(instances=1, cpu="500m", memory="512Mi", storage_gb=5),
        ServicePlan.HA: PlanEntry(instances=3, cpu="1", memory="1Gi", storage_gb=10),
    }
)


def plan_entry(plan: str) -> PlanEntry:
    """
    Look up the sizing for a plan name.

    Raises:
        ValueError: For any name outside the catalog. There is no default plan.
    """
    try:
        return PLAN_CATALOG[ServicePlan(plan)]
    except ValueError:
        supported = ", ".join(p.value for p in ServicePlan)
        raise ValueError(f"unsupported plan {plan!r}; supported plans: {supported}") from None


def service_type(value: str) -> ServiceType:
    try:
        return ServiceType(value)
    except ValueError:
        supported = ", ".join(t.value for t in ServiceType)
        raise ValueError(f"unsupported service type {value!r}; supported types: {supported}") from None


# Variable name -> key in the operator-published connection credential.
# Order is the order variables are appended to a workload on bind.
SERVICE_ENV_VARS: Mapping[str, str] = MappingProxyType(
    {
        "DATABASE_URL": "uri",
        "PGHOST": "host",
        "PGPORT": "port",
        "PGDATABASE": "database",
        "PGUSER": "username",
        "PGPASSWORD": "password",
    }
)
SERVICE_ENV_VAR_NAMES: List[str] = list(SERVICE_ENV_VARS)


class ManagedServiceStatus(BaseModel):
    phase: ServicePhase = ServicePhase.PROVISIONING
    message: str = ""
    credential_ref: Optional[str] = Field(
        default=None,
        description="Operator-published credential name; set only once Ready and never returned to callers.",
    )
    bound_workloads: List[str] = Field(default_factory=list)


class ManagedService(BaseModel):
    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    type: ServiceType
    plan: ServicePlan
    status: ManagedServiceStatus = Field(default_factory=ManagedServiceStatus)

    @property
    def expected_credential_ref(self) -> str:
        return connection_credential_name(self.name)

    @property
    def is_ready(self) -> bool:
        return self.status.phase == ServicePhase.READY


__all__ = [
    "ServiceType",
    "ServicePlan",
    "ServicePhase",
    "PlanEntry",
    "PLAN_CATALOG",
    "plan_entry",
    "service_type",
    "SERVICE_ENV_VARS",
    "SERVICE_ENV_VAR_NAMES",
    "ManagedServiceStatus",
    "ManagedService",
]
