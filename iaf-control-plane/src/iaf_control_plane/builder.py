"""
Managed-database resource builder.

Turns a `ManagedService` into the manifests the database operator acts on (a
CloudNativePG ``Cluster`` sized from the plan catalog, plus a NetworkPolicy
that fences the database pods off from other tenants) and interprets the
condition list the operator later writes back into a platform phase.

Both manifests carry an owner reference to the ManagedService so that
deleting the service record cascades to them.
"""
from __future__ import annotations

from typing import Any, Dict, Tuple

from iaf_contracts import (
    ManagedService,
    ServicePhase,
    connection_credential_name,
    managed_labels,
    network_policy_name,
    plan_entry,
)
from iaf_contracts.naming import MANAGED_SERVICE_LABEL

CLUSTER_API_VERSION = "postgresql.cnpg.io/v1"
CLUSTER_KIND = "Cluster"
OWNER_API_VERSION = "iaf.io/v1alpha1"
MANAGED_SERVICE_KIND = "ManagedService"
CLUSTER_POD_LABEL = "cnpg.io/cluster"
NAMESPACE_NAME_LABEL = "kubernetes.io/metadata.name"


def _metadata(service: ManagedService, name: str) -> Dict[str, Any]:
    return {
        "name": name,
        "namespace": service.namespace,
        "labels": managed_labels(**{MANAGED_SERVICE_LABEL: service.name}),
        "ownerReferences": [
            {
                "apiVersion": OWNER_API_VERSION,
                "kind": MANAGED_SERVICE_KIND,
                "name": service.name,
                "controller": True,
            }
        ],
    }


def build_database_cluster(service: ManagedService) -> Dict[str, Any]:
    """
    Builds the operator manifest for a managed PostgreSQL service.

    Raises:
        ValueError: If the service's plan is not in the catalog.
    """
    plan = plan_entry(service.plan.value)
    return {
        "apiVersion": CLUSTER_API_VERSION,
        "kind": CLUSTER_KIND,
        "metadata": _metadata(service, service.name),
        "spec": {
            "instances": plan.instances,
            "storage": {"size": plan.storage},
            "resources": {
                "requests": {
                    "cpu": plan.cpu,
                    "memory": plan.memory,
                }
            },
        },
    }


def build_network_policy(service: ManagedService, operator_namespace: str) -> Dict[str, Any]:
    """
    Builds the ingress policy for a service's database pods.

    Ingress is allowed from pods in the service's own namespace and from the
    operator's control namespace. The operator polls each database pod on an
    internal status port; without that peer the cluster never reports Ready.
    """
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": _metadata(service, network_policy_name(service.name)),
        "spec": {
            "podSelector": {"matchLabels": {CLUSTER_POD_LABEL: service.name}},
            "policyTypes": ["Ingress"],
            "ingress": [
                {
                    "from": [
                        {"podSelector": {}},
                        {"namespaceSelector": {"matchLabels": {NAMESPACE_NAME_LABEL: operator_namespace}}},
                    ],
                    "ports": [{"protocol": "TCP"}],
                }
            ],
        },
    }


def read_cluster_status(resource: Dict[str, Any]) -> Tuple[ServicePhase, str]:
    """
    Interprets an operator-managed cluster resource.

    The phase is Ready only when the resource carries a ``Ready`` condition
    whose status is exactly ``"True"``. A missing status, a missing condition
    or any other value all mean Provisioning.

    Returns:
        A ``(phase, credential_ref)`` tuple. The credential reference is the
        deterministic ``<name>-app`` regardless of phase.
    """
    credential_ref = connection_credential_name(resource.get("metadata", {}).get("name", ""))
    status = resource.get("status")
    if not isinstance(status, dict):
        return ServicePhase.PROVISIONING, credential_ref
    conditions = status.get("conditions")
    if not isinstance(conditions, list):
        return ServicePhase.PROVISIONING, credential_ref
    for condition in conditions:
        if not isinstance(condition, dict) or condition.get("type") != "Ready":
            continue
        if condition.get("status") == "True":
            return ServicePhase.READY, credential_ref
        return ServicePhase.PROVISIONING, credential_ref
    return ServicePhase.PROVISIONING, credential_ref
