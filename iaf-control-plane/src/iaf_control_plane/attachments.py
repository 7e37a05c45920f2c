"""
Data-source catalog and attachment.

Attaching a source copies its credential into the workload's namespace, owned by
the workload. Callers only ever see catalog metadata and variable names.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from iaf_contracts import (
    AttachedDataSource,
    CredentialObject,
    CredentialPayload,
    DataSource,
    OwnerReference,
    data_source_credential_name,
    managed_labels,
)
from iaf_contracts.naming import DATA_SOURCE_LABEL

from . import records
from .audit import audit
from .config import ControlPlaneSettings
from .database import CLUSTER_SCOPE, Database, ObjectAlreadyExists, ObjectNotFound, StoreError
from .errors import (
    AlreadyExistsError,
    BackendError,
    ControlPlaneError,
    NotFoundError,
    PreconditionError,
    SecurityRejectionError,
)
from .names import require_name
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

COLLISION_HINT = (
    "choose a data source that uses different variable names or detach the conflicting source first"
)


class DataSourceService:
    """
    Manages the data-source catalog and attaches sources to workloads.

    Attributes:
        db: The object store.
        sessions: Resolves session ids to namespaces.
        settings: Names the namespace that holds data-source credentials.
    """

    def __init__(self, db: Database, sessions: SessionRegistry, settings: ControlPlaneSettings):
        self.db = db
        self.sessions = sessions
        self.settings = settings

    # Operator side

    def register_data_source(self, source: DataSource, credential: Optional[CredentialPayload] = None) -> DataSource:
        """
        Adds a data source to the catalog.

        Args:
            source: Catalog entry.
            credential: Optional payload to store at ``source.secret_ref``.
                        When omitted, the referenced credential must already
                        exist or be stored later.

        Raises:
            AlreadyExistsError: If a data source with that name exists.
            PreconditionError: If the credential lives outside the system namespace.
        """
        if source.secret_ref.namespace != self.settings.system_namespace:
            raise PreconditionError(
                f"data source credentials must live in namespace {self.settings.system_namespace!r}, "
                f"not {source.secret_ref.namespace!r}",
                name=source.name,
            )
        try:
            self.db.create(records.DATA_SOURCE_KIND, CLUSTER_SCOPE, source.name, source.model_dump(mode="json"))
        except ObjectAlreadyExists:
            raise AlreadyExistsError(f"data source {source.name!r} already exists", name=source.name) from None
        except StoreError as exc:
            raise BackendError(f"registering data source {source.name!r}: {exc}") from exc

        if credential is not None:
            ref = source.secret_ref
            try:
                records.create_credential(
                    self.db,
                    CredentialObject(
                        name=ref.name,
                        namespace=ref.namespace,
                        labels=managed_labels(),
                        payload=credential,
                    ),
                )
            except ObjectAlreadyExists:
                logger.info("credential %s/%s already present; keeping it", ref.namespace, ref.name)
            except StoreError as exc:
                self._discard_data_source(source.name)
                raise BackendError(f"storing credential for data source {source.name!r}: {exc}") from exc
        logger.info("registered data source %s (%s)", source.name, source.kind)
        return source

    def _discard_data_source(self, name: str) -> None:
        try:
            self.db.delete(records.DATA_SOURCE_KIND, CLUSTER_SCOPE, name)
        except StoreError as exc:
            logger.warning("cleanup of data source %s failed: %s", name, exc)

    # Session side

    def list_data_sources(
        self,
        session_id: str,
        kind: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Lists catalog entries, optionally filtered by kind and tags.

        Every requested tag must be present on an entry for it to match.
        """
        self.sessions.resolve_namespace(session_id)
        required = [t.strip() for t in tags or [] if t.strip()]
        try:
            stored = self.db.list(records.DATA_SOURCE_KIND, CLUSTER_SCOPE)
        except StoreError as exc:
            raise BackendError(f"listing data sources: {exc}") from exc

        entries = []
        for obj in stored:
            source = DataSource.model_validate(obj.body)
            if kind and source.kind != kind:
                continue
            if required and not source.has_all_tags(required):
                continue
            entries.append(source.summary())
        return {"data_sources": entries, "total": len(entries)}

    def get_data_source(self, session_id: str, name: str) -> Dict[str, Any]:
        self.sessions.resolve_namespace(session_id)
        if not name:
            raise PreconditionError("name is required")
        return records.get_data_source(self.db, name).summary(detailed=True)

    def attach(self, session_id: str, workload_name: str, data_source_name: str) -> Dict[str, Any]:
        """
        Attaches a data source to a workload in the caller's namespace.

        Attaching a source that is already attached succeeds without copying
        anything again. A credential copy left behind by an earlier partial
        attempt is reused, but only if it was copied from the same source.

        Returns:
            The data source, workload, injected variable names and a message.

        Raises:
            VariableCollisionError: If a contributed variable already exists.
            SecurityRejectionError: If the source's credential type is never attachable.
            PreconditionError: If the credential lacks a mapped key, or the copy
                name is held by another source's copy.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(workload_name, "workload name")
        if not data_source_name:
            raise PreconditionError("data_source is required")

        workload, version = records.get_workload(self.db, namespace, workload_name)

        existing = workload.attachment(data_source_name)
        if existing is not None:
            return {
                "data_source": data_source_name,
                "workload": workload_name,
                "env_var_names": list(existing.env_var_names),
                "already_attached": True,
                "message": f"Data source {data_source_name!r} is already attached to workload {workload_name!r}.",
            }

        source = records.get_data_source(self.db, data_source_name)
        env_var_names = source.env_var_names()
        records.check_env_collisions(workload, env_var_names, COLLISION_HINT)

        original = records.find_credential(self.db, source.secret_ref.namespace, source.secret_ref.name)
        if original is None:
            raise NotFoundError(
                f"credential for data source {data_source_name!r} not found; contact your platform administrator",
                name=data_source_name,
            )
        if not original.copyable:
            raise SecurityRejectionError(
                f"data source {data_source_name!r} references a credential of type {original.type.value!r}, "
                "which is never attachable; contact your platform administrator"
            )
        missing = sorted(set(source.env_var_mapping) - set(original.payload.keys()))
        if missing:
            raise PreconditionError(
                f"credential for data source {data_source_name!r} has no keys {missing}; "
                "contact your platform administrator",
                name=data_source_name,
            )

        copy_name = data_source_credential_name(data_source_name)
        created = self._ensure_copy(original, copy_name, namespace, workload_name, data_source_name)

        workload.attached_data_sources.append(
            AttachedDataSource(
                data_source=data_source_name,
                credential_name=copy_name,
                env_var_names=env_var_names,
            )
        )
        try:
            records.save_workload(self.db, workload, version)
        except ControlPlaneError:
            if created:
                self._discard_copy(namespace, copy_name)
            raise

        audit(
            "data_source_attached",
            session=session_id,
            data_source=data_source_name,
            workload=workload_name,
            namespace=namespace,
        )
        return {
            "data_source": data_source_name,
            "workload": workload_name,
            "env_var_names": env_var_names,
            "already_attached": False,
            "message": (
                f"Data source {data_source_name!r} attached to workload {workload_name!r}. "
                f"The workload will restart to pick up: {', '.join(env_var_names)}."
            ),
        }

    def _ensure_copy(
        self,
        original: CredentialObject,
        copy_name: str,
        namespace: str,
        workload_name: str,
        data_source_name: str,
    ) -> bool:
        """Creates the namespace-local copy; returns False when an earlier copy was reused."""
        copy = CredentialObject(
            name=copy_name,
            namespace=namespace,
            labels=managed_labels(**{DATA_SOURCE_LABEL: data_source_name}),
            payload=original.payload,
        )
        try:
            records.create_credential(
                self.db, copy, owner=OwnerReference(kind=records.WORKLOAD_KIND, name=workload_name)
            )
            return True
        except ObjectAlreadyExists:
            pass
        except StoreError as exc:
            raise BackendError(f"copying data source credentials: {exc}") from exc

        previous = records.find_credential(self.db, namespace, copy_name)
        if previous is None or previous.labels.get(DATA_SOURCE_LABEL) != data_source_name:
            raise PreconditionError(
                f"credential name {copy_name!r} for data source {data_source_name!r} is already used by "
                f"another data source's credentials (names are truncated to 63 characters); "
                "detach the other source first",
                name=copy_name,
            )
        logger.info("reusing credential copy %s/%s from an earlier attach", namespace, copy_name)
        return False

    def _discard_copy(self, namespace: str, name: str) -> None:
        try:
            self.db.delete(records.CREDENTIAL_KIND, namespace, name)
        except ObjectNotFound:
            pass
        except StoreError as exc:
            logger.warning("cleanup of credential copy %s/%s failed: %s", namespace, name, exc)
