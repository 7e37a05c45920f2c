"""
Typed access to the records the control plane keeps in the object store.

The store itself deals in JSON documents. This module converts between those
documents and the contract models, and translates the store's low-level
exceptions into caller-facing errors whose messages name the missing object
and point at the call that lists what does exist.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from iaf_contracts import CredentialObject, DataSource, ManagedService, OwnerReference, Workload

from .database import CLUSTER_SCOPE, Database, ObjectNotFound, StoredObject, StoreError, VersionConflict
from .errors import BackendError, ConflictError, NotFoundError, VariableCollisionError

WORKLOAD_KIND = "Workload"
MANAGED_SERVICE_KIND = "ManagedService"
DATABASE_CLUSTER_KIND = "DatabaseCluster"
NETWORK_POLICY_KIND = "NetworkPolicy"
DATA_SOURCE_KIND = "DataSource"
CREDENTIAL_KIND = "Credential"


def _get(db: Database, kind: str, namespace: str, name: str, not_found: str) -> StoredObject:
    try:
        return db.get(kind, namespace, name)
    except ObjectNotFound:
        raise NotFoundError(not_found, name=name) from None
    except StoreError as exc:
        raise BackendError(f"getting {kind.lower()} {name!r}: {exc}") from exc


def get_workload(db: Database, namespace: str, name: str) -> Tuple[Workload, int]:
    """Returns the workload and the version it was read at."""
    obj = _get(
        db,
        WORKLOAD_KIND,
        namespace,
        name,
        f"workload {name!r} not found in your session namespace; use list_workloads to see your workloads",
    )
    return Workload.model_validate(obj.body), obj.version


def save_workload(db: Database, workload: Workload, version: int) -> int:
    """
    Writes a workload back if nobody else changed it since ``version``.

    Returns:
        The new version.

    Raises:
        ConflictError: If a concurrent writer updated the workload first.
    """
    try:
        stored = db.update(
            WORKLOAD_KIND,
            workload.namespace,
            workload.name,
            workload.model_dump(mode="json"),
            expected_version=version,
        )
    except VersionConflict:
        raise ConflictError(
            f"workload {workload.name!r} was modified concurrently; re-read it and retry",
            name=workload.name,
        ) from None
    except ObjectNotFound:
        raise NotFoundError(f"workload {workload.name!r} no longer exists", name=workload.name) from None
    except StoreError as exc:
        raise BackendError(f"updating workload {workload.name!r}: {exc}") from exc
    return stored.version


def list_workloads(db: Database, namespace: str) -> List[Workload]:
    try:
        return [Workload.model_validate(o.body) for o in db.list(WORKLOAD_KIND, namespace)]
    except StoreError as exc:
        raise BackendError(f"listing workloads: {exc}") from exc


def get_service(db: Database, namespace: str, name: str) -> Tuple[ManagedService, int]:
    obj = _get(
        db,
        MANAGED_SERVICE_KIND,
        namespace,
        name,
        f"service {name!r} not found; use list_services to see your services",
    )
    return ManagedService.model_validate(obj.body), obj.version


def get_data_source(db: Database, name: str) -> DataSource:
    obj = _get(
        db,
        DATA_SOURCE_KIND,
        CLUSTER_SCOPE,
        name,
        f"data source {name!r} not found; use list_data_sources to see available sources",
    )
    return DataSource.model_validate(obj.body)


def credential_from_stored(obj: StoredObject) -> CredentialObject:
    return CredentialObject(
        name=obj.name,
        namespace=obj.namespace,
        labels=obj.labels,
        annotations=obj.body.get("annotations", {}),
        owner=obj.owner,
        created_at=obj.created_at,
        payload=obj.body["payload"],
    )


def find_credential(db: Database, namespace: str, name: str) -> Optional[CredentialObject]:
    try:
        obj = db.find(CREDENTIAL_KIND, namespace, name)
    except StoreError as exc:
        raise BackendError(f"reading credential {name!r}: {exc}") from exc
    return credential_from_stored(obj) if obj is not None else None


def create_credential(db: Database, credential: CredentialObject, *, owner: Optional[OwnerReference] = None) -> None:
    """
    Stores a credential object.

    Raises:
        database.ObjectAlreadyExists: If the name is taken; callers decide
            whether that means reuse or failure.
    """
    db.create(
        CREDENTIAL_KIND,
        credential.namespace,
        credential.name,
        {"annotations": credential.annotations, "payload": credential.reveal()},
        labels=credential.labels,
        owner=owner or credential.owner,
    )


def check_env_collisions(workload: Workload, candidates: Iterable[str], hint: str) -> None:
    """
    Fails if any candidate variable name is already present on the workload.

    The error names the first conflicting variable and where the workload
    already gets it from (plain variable, data source or bound service).
    """
    origins = workload.env_var_origins()
    for name in candidates:
        if name in origins:
            raise VariableCollisionError(name, origins[name], hint)
