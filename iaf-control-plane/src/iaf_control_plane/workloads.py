"""
Workload records: deploy, status, list and delete.

A workload's name is served at ``<name>.<base_domain>`` and so is unique across
every session. Observed status belongs to the build/deploy subsystem, which
reports it through `record_status`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from iaf_contracts import (
    EnvVar,
    OwnerReference,
    Workload,
    WorkloadPhase,
    WorkloadSource,
    WorkloadStatus,
    managed_labels,
)
from iaf_contracts.naming import CREDENTIAL_TYPE_LABEL

from . import records
from .audit import audit
from .bindings import ServiceBindingService
from .config import ControlPlaneSettings
from .database import Database, ObjectAlreadyExists, ObjectNotFound, StoreError
from .errors import (
    BackendError,
    ConflictError,
    NameUnavailableError,
    NotFoundError,
    PreconditionError,
)
from .names import check_name_available, require_name
from .retry import update_with_retry
from .sessions import SessionRegistry
from .validation import Resolver, resolve_host, validate_git_url

logger = logging.getLogger(__name__)

GIT_CREDENTIAL_TYPE = "git"
COLLISION_HINT = "rename the variable or detach/unbind the source that provides it"


class WorkloadService:
    """
    Manages workload records in a session's namespace.

    Attributes:
        db: The object store.
        sessions: Resolves session ids to namespaces.
        bindings: Used to release a deleted workload from service bound lists.
        settings: Supplies the routing domain.
        resolver: Hostname resolver used when validating git URLs.
    """

    def __init__(
        self,
        db: Database,
        sessions: SessionRegistry,
        bindings: ServiceBindingService,
        settings: ControlPlaneSettings,
        resolver: Resolver = resolve_host,
    ):
        self.db = db
        self.sessions = sessions
        self.bindings = bindings
        self.settings = settings
        self.resolver = resolver

    def url_for(self, name: str) -> str:
        return f"http://{name}.{self.settings.base_domain}"

    def deploy(
        self,
        session_id: str,
        name: str,
        source: WorkloadSource,
        port: int = 8080,
        replicas: int = 1,
        env: Optional[List[EnvVar]] = None,
    ) -> Dict[str, Any]:
        """
        Creates a workload, or updates the caller's existing workload of that name.

        Args:
            session_id: The caller's session.
            name: Workload name, unique across all sessions.
            source: Exactly one of image, git reference or uploaded blob.
            port: Container port.
            replicas: Desired replica count.
            env: Plain environment variables. On update these replace the
                 previous plain variables; injected variables are kept.

        Raises:
            NameUnavailableError: If another session owns the name.
            VariableCollisionError: If a plain variable shadows an injected one.
            SecurityRejectionError: If the git URL points somewhere disallowed.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "workload name")
        plain = list(env or [])
        self._check_plain_env(plain)
        if source.git is not None:
            validate_git_url(source.git.url, resolver=self.resolver)
            if source.git.credential:
                self._require_git_credential(namespace, source.git.credential)
        check_name_available(self.db, records.WORKLOAD_KIND, name, namespace)

        try:
            existing = self.db.find(records.WORKLOAD_KIND, namespace, name)
        except StoreError as exc:
            raise BackendError(f"reading workload {name!r}: {exc}") from exc

        if existing is None:
            workload = Workload(
                name=name,
                namespace=namespace,
                source=source,
                port=port,
                replicas=replicas,
                env=plain,
            )
            try:
                self.db.create(
                    records.WORKLOAD_KIND,
                    namespace,
                    name,
                    workload.model_dump(mode="json"),
                    labels=managed_labels(),
                    unique_cluster_wide=True,
                )
            except ObjectAlreadyExists as exc:
                if exc.namespace == namespace:
                    raise ConflictError(f"workload {name!r} was created concurrently; retry", name=name) from None
                raise NameUnavailableError(
                    f"workload name {name!r} is already in use by another session; choose a different name",
                    name=name,
                ) from None
            except StoreError as exc:
                raise BackendError(f"creating workload {name!r}: {exc}") from exc
            status = "created"
        else:
            workload = Workload.model_validate(existing.body)
            injected = workload.model_copy(update={"env": [e for e in workload.env if e.is_reference]})
            records.check_env_collisions(injected, [e.name for e in plain], COLLISION_HINT)
            workload.source = source
            workload.port = port
            workload.replicas = replicas
            workload.env = plain + injected.env
            records.save_workload(self.db, workload, existing.version)
            status = "updated"

        logger.info("%s workload %s/%s from %s", status, namespace, name, source.kind)
        return {
            "name": name,
            "status": status,
            "source": source.kind,
            "build_required": source.kind != "image",
            "message": (
                f"Workload {name!r} {status}. It will be available at {self.url_for(name)} once deployed."
            ),
        }

    @staticmethod
    def _check_plain_env(env: List[EnvVar]) -> None:
        seen = set()
        for var in env:
            if var.is_reference:
                raise PreconditionError(
                    f"env var {var.name!r} must be a plain value; credential references are injected "
                    "by attaching data sources or binding services",
                    variable=var.name,
                )
            if var.name in seen:
                raise PreconditionError(f"env var {var.name!r} is defined more than once", variable=var.name)
            seen.add(var.name)

    def _require_git_credential(self, namespace: str, name: str) -> None:
        credential = records.find_credential(self.db, namespace, name)
        if credential is None:
            raise NotFoundError(
                f"git credential {name!r} not found; use add_git_credential to create it", name=name
            )
        if credential.labels.get(CREDENTIAL_TYPE_LABEL) != GIT_CREDENTIAL_TYPE:
            raise PreconditionError(f"credential {name!r} is not a git credential", name=name)

    def status(self, session_id: str, name: str) -> Dict[str, Any]:
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "workload name")
        workload, _ = records.get_workload(self.db, namespace, name)
        return {
            "name": workload.name,
            "phase": workload.status.phase.value,
            "url": workload.status.url,
            "latest_image": workload.status.latest_image,
            "build_status": workload.status.build_status,
            "available_replicas": workload.status.available_replicas,
            "replicas": workload.replicas,
            "port": workload.port,
            "source": workload.source.kind,
            "env_var_names": sorted(workload.env_var_origins()),
            "data_sources": [a.data_source for a in workload.attached_data_sources],
            "services": [b.service for b in workload.bound_services],
        }

    def list_workloads(self, session_id: str, phase: Optional[str] = None) -> Dict[str, Any]:
        namespace = self.sessions.resolve_namespace(session_id)
        if phase is not None:
            try:
                wanted = WorkloadPhase(phase)
            except ValueError:
                supported = ", ".join(p.value for p in WorkloadPhase)
                raise PreconditionError(f"unknown phase {phase!r}; supported phases: {supported}") from None
        items = []
        for workload in records.list_workloads(self.db, namespace):
            if phase is not None and workload.status.phase != wanted:
                continue
            items.append(
                {
                    "name": workload.name,
                    "phase": workload.status.phase.value,
                    "url": workload.status.url,
                    "available_replicas": workload.status.available_replicas,
                    "replicas": workload.replicas,
                }
            )
        return {"workloads": items, "total": len(items)}

    def delete(self, session_id: str, name: str) -> Dict[str, Any]:
        """
        Deletes a workload and everything it owns.

        Credential copies it owns go with it, unless another workload in the
        namespace still attaches the same copy; ownership then passes to that
        workload. The workload is released from every bound list first and put
        back on them if the delete itself fails.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "workload name")
        workload, _ = records.get_workload(self.db, namespace, name)
        handed_over = self._hand_over_copies(namespace, workload)
        released = self.bindings.release_workload(namespace, name)
        try:
            deleted = self.db.delete(records.WORKLOAD_KIND, namespace, name)
        except ObjectNotFound:
            raise NotFoundError(f"workload {name!r} not found", name=name) from None
        except StoreError as exc:
            self.bindings.restore_workload(namespace, name, released)
            raise BackendError(f"deleting workload {name!r}: {exc}") from exc

        audit(
            "workload_deleted",
            session=session_id,
            workload=name,
            namespace=namespace,
            owned_objects=len(deleted) - 1,
            released_services=",".join(released) or None,
            handed_over=",".join(handed_over) or None,
        )
        return {
            "name": name,
            "status": "deleted",
            "message": f"Workload {name!r} and all associated resources have been deleted.",
        }

    def _hand_over_copies(self, namespace: str, workload: Workload) -> List[str]:
        """Re-owns shared credential copies to another workload that still attaches them."""
        copies = {a.credential_name for a in workload.attached_data_sources}
        if not copies:
            return []
        heirs = {}
        for other in records.list_workloads(self.db, namespace):
            if other.name == workload.name:
                continue
            for attachment in other.attached_data_sources:
                if attachment.credential_name in copies:
                    heirs.setdefault(attachment.credential_name, other.name)

        handed_over = []
        for credential_name, heir in sorted(heirs.items()):
            try:
                copy = self.db.find(records.CREDENTIAL_KIND, namespace, credential_name)
                if copy is None or copy.owner is None or copy.owner.name != workload.name:
                    continue
                self.db.set_owner(
                    records.CREDENTIAL_KIND,
                    namespace,
                    credential_name,
                    OwnerReference(kind=records.WORKLOAD_KIND, name=heir),
                )
            except ObjectNotFound:
                continue
            except StoreError as exc:
                raise BackendError(f"handing over credential {credential_name!r}: {exc}") from exc
            logger.info("credential %s/%s now owned by workload %s", namespace, credential_name, heir)
            handed_over.append(credential_name)
        return handed_over

    def record_status(self, namespace: str, name: str, status: WorkloadStatus) -> Workload:
        """Stores the status reported by the build/deploy subsystem."""

        def apply(body: Dict[str, Any]) -> Dict[str, Any]:
            body["status"] = status.model_dump(mode="json")
            return body

        stored = update_with_retry(
            self.db,
            records.WORKLOAD_KIND,
            namespace,
            name,
            apply,
            attempts=self.settings.bind_retry_attempts,
            operation="workload status report",
        )
        return Workload.model_validate(stored.body)
