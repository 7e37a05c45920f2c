"""
Git credentials for private repositories.

Credentials are stored in the session namespace and registered with the
namespace's build service account, which is how the build step picks them up
when cloning. The server each credential is for is validated before anything
is stored, since the build step dereferences it with platform privileges.
Credential material is accepted here and never returned.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from iaf_contracts import BasicAuthPayload, CredentialObject, CredentialType, SSHKeyPayload, managed_labels
from iaf_contracts.naming import CREDENTIAL_TYPE_LABEL, GIT_SERVER_ANNOTATION

from . import records
from .audit import audit
from .config import ControlPlaneSettings
from .database import Database, ObjectAlreadyExists, ObjectNotFound, StoreError
from .errors import (
    AlreadyExistsError,
    BackendError,
    ControlPlaneError,
    NotFoundError,
    PreconditionError,
)
from .names import require_name
from .retry import update_with_retry
from .sessions import BUILD_SERVICE_ACCOUNT, SERVICE_ACCOUNT_KIND, SessionRegistry
from .validation import Resolver, resolve_host, validate_https_endpoint, validate_ssh_endpoint
from .workloads import GIT_CREDENTIAL_TYPE

logger = logging.getLogger(__name__)

BASIC_AUTH = "basic-auth"
SSH = "ssh"
MAX_PASSWORD_BYTES = 4096
MAX_PRIVATE_KEY_BYTES = 16 * 1024
PEM_PREFIX = "-----BEGIN "


class GitCredentialService:
    """Adds, lists and deletes git credentials in a session's namespace."""

    def __init__(
        self,
        db: Database,
        sessions: SessionRegistry,
        settings: ControlPlaneSettings,
        resolver: Resolver = resolve_host,
    ):
        self.db = db
        self.sessions = sessions
        self.settings = settings
        self.resolver = resolver

    def add(
        self,
        session_id: str,
        name: str,
        type: str,
        git_server_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Stores a git credential and registers it with the build service account.

        ``basic-auth`` credentials need an ``https://`` server URL plus a
        username and password; ``ssh`` credentials need an ``identity@host``
        endpoint and a PEM-encoded private key. To rotate a credential,
        delete it and add it again.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        require_name(name, "credential name")

        if type == BASIC_AUTH:
            validate_https_endpoint(git_server_url, resolver=self.resolver)
            if not username:
                raise PreconditionError("username is required for basic-auth")
            if not password:
                raise PreconditionError("password is required for basic-auth")
            if len(password.encode()) > MAX_PASSWORD_BYTES:
                raise PreconditionError(f"password must be {MAX_PASSWORD_BYTES} bytes or fewer")
            payload = BasicAuthPayload(username=username, password=password)
        elif type == SSH:
            validate_ssh_endpoint(git_server_url, resolver=self.resolver)
            if not private_key:
                raise PreconditionError("private_key is required for ssh")
            if len(private_key.encode()) > MAX_PRIVATE_KEY_BYTES:
                raise PreconditionError(f"private_key must be {MAX_PRIVATE_KEY_BYTES} bytes or fewer")
            if not private_key.startswith(PEM_PREFIX):
                raise PreconditionError("private_key must be a PEM-encoded key (must start with '-----BEGIN ...')")
            payload = SSHKeyPayload(private_key=private_key)
        else:
            raise PreconditionError(f"type must be {BASIC_AUTH!r} or {SSH!r}")

        limit = self.settings.max_git_credentials_per_session
        if len(self._git_credentials(namespace)) >= limit:
            raise PreconditionError(
                f"credential limit reached: a session may have at most {limit} git credentials; "
                "delete an existing one before adding a new one"
            )

        credential = CredentialObject(
            name=name,
            namespace=namespace,
            labels=managed_labels(**{CREDENTIAL_TYPE_LABEL: GIT_CREDENTIAL_TYPE}),
            annotations={GIT_SERVER_ANNOTATION: git_server_url},
            payload=payload,
        )
        try:
            records.create_credential(self.db, credential)
        except ObjectAlreadyExists:
            raise AlreadyExistsError(
                f"credential {name!r} already exists; delete it first to replace it", name=name
            ) from None
        except StoreError as exc:
            raise BackendError(f"creating credential {name!r}: {exc}") from exc

        try:
            self._register_with_build_account(namespace, name)
        except ControlPlaneError:
            try:
                self.db.delete(records.CREDENTIAL_KIND, namespace, name)
            except StoreError as exc:
                logger.warning("cleanup of credential %s/%s failed: %s", namespace, name, exc)
            raise

        audit("git_credential_added", session=session_id, credential=name, type=type, namespace=namespace)
        return {"name": name, "type": type, "git_server_url": git_server_url, "created": True}

    def _git_credentials(self, namespace: str):
        try:
            return self.db.list(
                records.CREDENTIAL_KIND, namespace, labels={CREDENTIAL_TYPE_LABEL: GIT_CREDENTIAL_TYPE}
            )
        except StoreError as exc:
            raise BackendError(f"listing git credentials: {exc}") from exc

    def _register_with_build_account(self, namespace: str, name: str) -> None:
        def add(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            secrets = body.setdefault("secrets", [])
            if name in secrets:
                return None
            secrets.append(name)
            return body

        update_with_retry(
            self.db,
            SERVICE_ACCOUNT_KIND,
            namespace,
            BUILD_SERVICE_ACCOUNT,
            add,
            attempts=self.settings.bind_retry_attempts,
            operation="build service account update",
        )

    def _unregister_from_build_account(self, namespace: str, name: str) -> None:
        def drop(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            secrets = body.get("secrets", [])
            if name not in secrets:
                return None
            body["secrets"] = [s for s in secrets if s != name]
            return body

        update_with_retry(
            self.db,
            SERVICE_ACCOUNT_KIND,
            namespace,
            BUILD_SERVICE_ACCOUNT,
            drop,
            attempts=self.settings.bind_retry_attempts,
            operation="build service account update",
        )

    def list_credentials(self, session_id: str) -> Dict[str, Any]:
        """Lists git credentials by name, type, server and creation time only."""
        namespace = self.sessions.resolve_namespace(session_id)
        items = []
        for obj in self._git_credentials(namespace):
            credential = records.credential_from_stored(obj)
            items.append(
                {
                    "name": credential.name,
                    "type": SSH if credential.type == CredentialType.SSH_KEY else credential.type.value,
                    "git_server_url": credential.annotations.get(GIT_SERVER_ANNOTATION, ""),
                    "created_at": credential.created_at.isoformat() if credential.created_at else "",
                }
            )
        return {"credentials": items, "total": len(items)}

    def delete(self, session_id: str, name: str) -> Dict[str, Any]:
        """
        Deletes a git credential and removes it from the build service account.

        Only credentials created through `add` can be deleted here; other
        credential objects in the namespace (such as data-source copies) are
        refused.
        """
        namespace = self.sessions.resolve_namespace(session_id)
        if not name:
            raise PreconditionError("name is required")
        credential = records.find_credential(self.db, namespace, name)
        if credential is None:
            raise NotFoundError(f"credential {name!r} not found", name=name)
        if credential.labels.get(CREDENTIAL_TYPE_LABEL) != GIT_CREDENTIAL_TYPE:
            raise PreconditionError(f"credential {name!r} is not a git credential managed by the platform", name=name)

        self._unregister_from_build_account(namespace, name)
        try:
            self.db.delete(records.CREDENTIAL_KIND, namespace, name)
        except ObjectNotFound:
            raise NotFoundError(f"credential {name!r} not found", name=name) from None
        except StoreError as exc:
            raise BackendError(f"deleting credential {name!r}: {exc}") from exc

        audit("git_credential_deleted", session=session_id, credential=name, namespace=namespace)
        return {"name": name, "deleted": True}
