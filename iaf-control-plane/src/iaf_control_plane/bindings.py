"""
Managed-service lifecycle and binding.

Each service keeps the list of workloads bound to it. That list is the deletion
guard and is only changed through `update_with_retry`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from iaf_contracts import (
    SERVICE_ENV_VAR_NAMES,
    SERVICE_ENV_VARS,
    BoundManagedService,
    CredentialKeyRef,
    EnvVar,
    ManagedService,
    ManagedServiceStatus,
    OwnerReference,
    ServicePhase,
    Workload,
    managed_labels,
    network_policy_name,
    plan_entry,
    service_type,
)
from iaf_contracts.naming import MANAGED_SERVICE_LABEL

from . import records
from .audit import audit
from .builder import build_database_cluster, build_network_policy, read_cluster_status
from .config import ControlPlaneSettings
from .database import Database, ObjectAlreadyExists, ObjectNotFound, StoreError, VersionConflict
from .errors import (
    AlreadyExistsError,
    BackendError,
    ConflictError,
    ControlPlaneError,
    NameUnavailableError,
    NotFoundError,
    PreconditionError,
)
from .names import check_name_available, require_name
from .retry import update_with_retry
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

COLLISION_HINT = "remove or rename the conflicting variable before binding"
READY_MESSAGE = "Service is ready. Use bind_service to inject credentials into a workload."
PROVISIONING_MESSAGE = "Provisioning in progress. Poll service_status every 10s."
MISSING_RESOURCE_MESSAGE = "The backing database resource is missing. Deprovision the service and provision it again."


class ServiceBindingService:
    """
    Provisions managed services and binds them to workloads.

    Attributes:
        db: The object store.
        sessions: Resolves session ids to namespaces.
        settings: Supplies the operator namespace and the retry bound.
    """

    def __init__(self, db: Database, sessions: SessionRegistry, settings: ControlPlaneSettings):
        self.db = db
        self.sessions = sessions
        self.settings = settings

    def _update_service(self, namespace: str, name: str, mutate, operation: str):
        return update_with_retry(
            self.db,
            records.MANAGED_SERVICE_KIND,
            namespace,
            name,
            mutate,
            attempts=self.settings.bind_retry_attempts,
            operation=operation,
        )

    def provision(self, session_id: str, name: str, type: str, plan: str) -> Dict[str, Any]:
        """
        Creates a managed service in the Provisioning phase and returns at once.

        Type and plan are checked against their closed sets before anything is
        written. The operator manifest and network policy are created owned by
        the service record so deleting the record removes them.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "service name")
        try:
            kind = service_type(type)
            plan_entry(plan)
        except ValueError as exc:
            raise PreconditionError(str(exc)) from None
        check_name_available(self.db, records.MANAGED_SERVICE_KIND, name, namespace)

        service = ManagedService(
            name=name,
            namespace=namespace,
            type=kind,
            plan=plan,
            status=ManagedServiceStatus(phase=ServicePhase.PROVISIONING, message=PROVISIONING_MESSAGE),
        )
        try:
            self.db.create(
                records.MANAGED_SERVICE_KIND,
                namespace,
                name,
                service.model_dump(mode="json"),
                labels=managed_labels(),
                unique_cluster_wide=True,
            )
        except ObjectAlreadyExists as exc:
            if exc.namespace == namespace:
                raise AlreadyExistsError(f"service {name!r} already exists", name=name) from None
            raise NameUnavailableError(
                f"service name {name!r} is already in use by another session; choose a different name",
                name=name,
            ) from None
        except StoreError as exc:
            raise BackendError(f"provisioning service {name!r}: {exc}") from exc

        owner = OwnerReference(kind=records.MANAGED_SERVICE_KIND, name=name)
        labels = managed_labels(**{MANAGED_SERVICE_LABEL: name})
        try:
            self.db.create(
                records.DATABASE_CLUSTER_KIND,
                namespace,
                name,
                build_database_cluster(service),
                labels=labels,
                owner=owner,
            )
            self.db.create(
                records.NETWORK_POLICY_KIND,
                namespace,
                network_policy_name(name),
                build_network_policy(service, self.settings.operator_namespace),
                labels=labels,
                owner=owner,
            )
        except StoreError as exc:
            try:
                self.db.delete(records.MANAGED_SERVICE_KIND, namespace, name)
            except StoreError as cleanup_exc:
                logger.warning("cleanup of service %s/%s failed: %s", namespace, name, cleanup_exc)
            raise BackendError(f"creating database resources for service {name!r}: {exc}") from exc

        logger.info("provisioning service %s/%s (%s, %s)", namespace, name, kind.value, plan)
        return {
            "name": name,
            "type": kind.value,
            "plan": plan,
            "phase": ServicePhase.PROVISIONING.value,
            "message": (
                "Provisioning started. Poll service_status every 10s until phase is Ready, "
                "then use bind_service to connect it to a workload."
            ),
        }

    def status(self, session_id: str, name: str) -> Dict[str, Any]:
        """
        Reconciles and reports a service's phase.

        The variable names a bind would inject are included only once the
        service is Ready. The credential reference itself is never returned.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "service name")
        service = self.reconcile(namespace, name)
        result: Dict[str, Any] = {
            "name": service.name,
            "type": service.type.value,
            "plan": service.plan.value,
            "phase": service.status.phase.value,
            "message": service.status.message,
        }
        if service.is_ready:
            result["connection_env_vars"] = list(SERVICE_ENV_VAR_NAMES)
        return result

    def reconcile(self, namespace: str, name: str) -> ManagedService:
        """Mirrors the operator-reported condition onto the service record."""
        service, _ = records.get_service(self.db, namespace, name)
        try:
            cluster = self.db.find(records.DATABASE_CLUSTER_KIND, namespace, name)
        except StoreError as exc:
            raise BackendError(f"reading database resource for service {name!r}: {exc}") from exc

        credential_ref: Optional[str] = None
        if cluster is None:
            phase, message = ServicePhase.FAILED, MISSING_RESOURCE_MESSAGE
        else:
            phase, ref = read_cluster_status(cluster.body)
            if phase == ServicePhase.READY:
                credential_ref, message = ref, READY_MESSAGE
            else:
                message = PROVISIONING_MESSAGE

        current = service.status
        if (current.phase, current.message, current.credential_ref) == (phase, message, credential_ref):
            return service

        def apply(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            fresh = ManagedService.model_validate(body)
            fresh.status.phase = phase
            fresh.status.message = message
            fresh.status.credential_ref = credential_ref
            return fresh.model_dump(mode="json")

        stored = self._update_service(namespace, name, apply, "service status update")
        logger.info("service %s/%s is now %s", namespace, name, phase.value)
        return ManagedService.model_validate(stored.body)

    def record_cluster_conditions(self, namespace: str, name: str, conditions: List[Dict[str, Any]]) -> None:
        """
        Stores the condition list reported by the database operator.

        This is the operator's side of the status contract. The owning service
        is reconciled straight away so its phase never waits for a caller to
        poll `status`.
        """

        def apply(body: Dict[str, Any]) -> Dict[str, Any]:
            body["status"] = {"conditions": conditions}
            return body

        update_with_retry(
            self.db,
            records.DATABASE_CLUSTER_KIND,
            namespace,
            name,
            apply,
            attempts=self.settings.bind_retry_attempts,
            operation="database status report",
        )
        try:
            self.reconcile(namespace, name)
        except NotFoundError:
            logger.debug("no service owns database resource %s/%s", namespace, name)

    def bind(self, session_id: str, service_name: str, workload_name: str) -> Dict[str, Any]:
        """
        Binds a Ready service to a workload.

        Appends one reference-typed variable per connection key to the
        workload and adds the workload to the service's bound list. Binding
        the same pair twice is an error.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(service_name, "service name")
        require_name(workload_name, "workload name")

        service = self.reconcile(namespace, service_name)
        if not service.is_ready:
            raise PreconditionError(
                f"service {service_name!r} is not ready (phase: {service.status.phase.value}); "
                "poll service_status until phase is Ready",
                phase=service.status.phase.value,
            )
        credential_name = service.expected_credential_ref
        if service.status.credential_ref != credential_name:
            raise PreconditionError(
                f"service {service_name!r} has an unexpected connection credential; this is a platform error",
                name=service_name,
            )

        workload, version = records.get_workload(self.db, namespace, workload_name)
        if workload.binding(service_name) is not None:
            raise PreconditionError(
                f"service {service_name!r} is already bound to workload {workload_name!r}",
                name=service_name,
            )
        records.check_env_collisions(workload, SERVICE_ENV_VAR_NAMES, COLLISION_HINT)

        for var_name, key in SERVICE_ENV_VARS.items():
            workload.env.append(EnvVar(name=var_name, secret_ref=CredentialKeyRef(name=credential_name, key=key)))
        workload.bound_services.append(BoundManagedService(service=service_name, credential_name=credential_name))
        records.save_workload(self.db, workload, version)

        try:
            self._add_bound(namespace, service_name, workload_name)
        except ControlPlaneError:
            self._revert_binding(namespace, workload_name, service_name)
            raise

        audit("service_bound", session=session_id, service=service_name, workload=workload_name, namespace=namespace)
        return {
            "bound": True,
            "service": service_name,
            "workload": workload_name,
            "injected_env_vars": list(SERVICE_ENV_VAR_NAMES),
            "message": (
                f"Workload {workload_name!r} is now bound to service {service_name!r}. Credentials are injected "
                "as credential references; values are never returned."
            ),
        }

    def _revert_binding(self, namespace: str, workload_name: str, service_name: str) -> None:
        try:
            workload, version = records.get_workload(self.db, namespace, workload_name)
            if _strip_binding(workload, service_name):
                records.save_workload(self.db, workload, version)
        except ControlPlaneError as exc:
            logger.warning(
                "reverting binding of %s to %s/%s failed: %s", service_name, namespace, workload_name, exc
            )

    def unbind(self, session_id: str, service_name: str, workload_name: str) -> Dict[str, Any]:
        """
        Removes a binding.

        Exactly the reference variables the binding added are removed; plain
        variables and other bindings are left alone.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(service_name, "service name")
        require_name(workload_name, "workload name")

        service, _ = records.get_service(self.db, namespace, service_name)
        workload, version = records.get_workload(self.db, namespace, workload_name)
        listed = workload_name in service.status.bound_workloads
        removed = _strip_binding(workload, service_name)
        if not removed and not listed:
            raise PreconditionError(
                f"service {service_name!r} is not bound to workload {workload_name!r}",
                name=service_name,
            )
        if removed:
            records.save_workload(self.db, workload, version)

        self._release(namespace, service_name, workload_name)

        audit(
            "service_unbound", session=session_id, service=service_name, workload=workload_name, namespace=namespace
        )
        return {
            "unbound": True,
            "service": service_name,
            "workload": workload_name,
            "removed_env_vars": removed,
            "message": (
                f"Workload {workload_name!r} has been unbound from service {service_name!r}. "
                "Removed the injected environment variables."
            ),
        }

    def _add_bound(self, namespace: str, service_name: str, workload_name: str) -> None:
        def add(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            bound = body["status"].setdefault("bound_workloads", [])
            if workload_name in bound:
                return None
            bound.append(workload_name)
            return body

        self._update_service(namespace, service_name, add, "bound workload update")

    def _release(self, namespace: str, service_name: str, workload_name: str) -> None:
        def drop(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            bound = body["status"].get("bound_workloads", [])
            if workload_name not in bound:
                return None
            body["status"]["bound_workloads"] = [w for w in bound if w != workload_name]
            return body

        try:
            self._update_service(namespace, service_name, drop, "bound workload update")
        except NotFoundError:
            logger.debug("service %s/%s already gone", namespace, service_name)

    def release_workload(self, namespace: str, workload_name: str) -> List[str]:
        """
        Removes a deleted workload from every bound list in the namespace.

        Returns:
            The services the workload was released from.
        """
        try:
            stored = self.db.list(records.MANAGED_SERVICE_KIND, namespace)
        except StoreError as exc:
            raise BackendError(f"listing services: {exc}") from exc
        released = []
        for obj in stored:
            if workload_name in obj.body["status"].get("bound_workloads", []):
                self._release(namespace, obj.name, workload_name)
                released.append(obj.name)
        return released

    def restore_workload(self, namespace: str, workload_name: str, services: List[str]) -> None:
        """Puts a workload back on bound lists it was released from; failures are logged."""
        for service_name in services:
            try:
                self._add_bound(namespace, service_name, workload_name)
            except ControlPlaneError as exc:
                logger.warning(
                    "restoring %s on service %s/%s failed: %s", workload_name, namespace, service_name, exc
                )

    def deprovision(self, session_id: str, name: str) -> Dict[str, Any]:
        """
        Deletes a service that has no bound workloads.

        The guard and the delete are tied to the same record version, so a
        bind that lands in between makes the delete fail instead of orphaning
        the new binding.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "service name")
        service, version = records.get_service(self.db, namespace, name)
        bound = service.status.bound_workloads
        if bound:
            raise PreconditionError(
                f"service {name!r} is still bound to workloads {bound}; "
                "use unbind_service to remove all bindings before deprovisioning",
                bound_workloads=list(bound),
            )
        try:
            self.db.delete(records.MANAGED_SERVICE_KIND, namespace, name, expected_version=version)
        except VersionConflict:
            raise ConflictError(
                f"service {name!r} changed while deprovisioning; check its bindings and retry", name=name
            ) from None
        except ObjectNotFound:
            raise NotFoundError(f"service {name!r} not found", name=name) from None
        except StoreError as exc:
            raise BackendError(f"deprovisioning service {name!r}: {exc}") from exc

        audit("service_deprovisioned", session=session_id, service=name, namespace=namespace)
        return {
            "name": name,
            "phase": ServicePhase.DELETING.value,
            "message": f"Service {name!r} is being deprovisioned. All data will be permanently deleted.",
        }

    def list_services(self, session_id: str) -> Dict[str, Any]:
        namespace = self.sessions.resolve_namespace(session_id)
        try:
            stored = self.db.list(records.MANAGED_SERVICE_KIND, namespace)
        except StoreError as exc:
            raise BackendError(f"listing services: {exc}") from exc
        items = []
        for obj in stored:
            service = ManagedService.model_validate(obj.body)
            items.append(
                {
                    "name": service.name,
                    "type": service.type.value,
                    "plan": service.plan.value,
                    "phase": service.status.phase.value,
                    "bound_workloads": list(service.status.bound_workloads),
                }
            )
        return {"services": items, "total": len(items)}


def _strip_binding(workload: Workload, service_name: str) -> List[str]:
    """Removes a service binding and its reference variables; returns the removed names."""
    binding = workload.binding(service_name)
    if binding is None:
        return []
    removed = []
    kept = []
    for var in workload.env:
        if (
            var.secret_ref is not None
            and var.secret_ref.name == binding.credential_name
            and var.name in SERVICE_ENV_VARS
        ):
            removed.append(var.name)
        else:
            kept.append(var)
    workload.env = kept
    workload.bound_services = [b for b in workload.bound_services if b.service != service_name]
    return removed
