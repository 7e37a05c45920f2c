"""
Session registry: issues one namespace per session and resolves session ids.

Registration also creates the namespace and its build service account.
"""
from __future__ import annotations

import logging
import secrets

from iaf_contracts import Session, managed_labels, namespace_for_session

from .audit import audit
from .database import CLUSTER_SCOPE, Database, ObjectAlreadyExists, ObjectNotFound, StoreError
from .errors import BackendError, SessionNotFoundError

logger = logging.getLogger(__name__)

SESSION_KIND = "Session"
NAMESPACE_KIND = "Namespace"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
BUILD_SERVICE_ACCOUNT = "iaf-build-sa"


class SessionRegistry:
    """Creates sessions and maps session ids to namespaces."""

    def __init__(self, db: Database):
        self.db = db

    def register(self, name: str = "") -> Session:
        """
        Creates a new session with a random id and its own namespace.

        Args:
            name: Optional display name chosen by the caller.

        Returns:
            The new session.
        """
        session_id = secrets.token_hex(16)
        session = Session(id=session_id, name=name, namespace=namespace_for_session(session_id))
        try:
            self.db.create(
                SESSION_KIND,
                CLUSTER_SCOPE,
                session.id,
                session.model_dump(mode="json"),
            )
            self.ensure_namespace(session.namespace)
        except StoreError as exc:
            raise BackendError(f"registering session: {exc}") from exc
        audit("session_registered", session=session.id, namespace=session.namespace)
        return session

    def ensure_namespace(self, namespace: str) -> None:
        """Idempotently creates the namespace and its build service account."""
        for kind, ns, name, body in (
            (NAMESPACE_KIND, CLUSTER_SCOPE, namespace, {}),
            (SERVICE_ACCOUNT_KIND, namespace, BUILD_SERVICE_ACCOUNT, {"secrets": []}),
        ):
            try:
                self.db.create(kind, ns, name, body, labels=managed_labels())
            except ObjectAlreadyExists:
                logger.debug("%s %s already exists", kind, name)

    def lookup(self, session_id: str) -> Session:
        """
        Returns the session for the given id.

        Raises:
            SessionNotFoundError: If the id is unknown.
        """
        if not session_id:
            raise SessionNotFoundError()
        try:
            obj = self.db.get(SESSION_KIND, CLUSTER_SCOPE, session_id)
        except ObjectNotFound:
            raise SessionNotFoundError() from None
        except StoreError as exc:
            raise BackendError(f"looking up session: {exc}") from exc
        return Session.model_validate(obj.body)

    def resolve_namespace(self, session_id: str) -> str:
        return self.lookup(session_id).namespace
