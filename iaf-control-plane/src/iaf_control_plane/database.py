"""
A small SQLite object store standing in for the cluster API server.

Records are JSON documents addressed by ``(kind, namespace, name)``, with a
version for compare-and-swap updates and owner references that cascade on
delete.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from iaf_contracts import OwnerReference

logger = logging.getLogger(__name__)

CLUSTER_SCOPE = ""


class StoreError(RuntimeError):
    """The underlying database failed."""


class ObjectNotFound(StoreError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {_qualified(namespace, name)} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ObjectAlreadyExists(StoreError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {_qualified(namespace, name)} already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class VersionConflict(StoreError):
    def __init__(self, kind: str, namespace: str, name: str, expected: int):
        super().__init__(f"{kind} {_qualified(namespace, name)} was modified (expected version {expected})")
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.expected = expected


def _qualified(namespace: str, name: str) -> str:
    return f"{namespace}/{name}" if namespace else name


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StoredObject:
    """One record as read from the store."""

    kind: str
    namespace: str
    name: str
    version: int
    body: Dict[str, Any]
    labels: Dict[str, str] = field(default_factory=dict)
    owner: Optional[OwnerReference] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Database:
    """
    Manages all interactions with the SQLite database backing the object store.

    Attributes:
        path: The file path to the SQLite database.
    """

    def __init__(self, path: str):
        self.path = path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """
        Provides a connection to the SQLite database.

        The connection commits on a clean exit and rolls back when the body
        raises. Driver-level failures are re-raised as `StoreError` so callers
        only ever deal with this module's exception types.
        """
        try:
            con = sqlite3.connect(self.path, check_same_thread=False, timeout=10.0)
        except sqlite3.Error as exc:
            raise StoreError(f"opening object store {self.path!r}: {exc}") from exc
        try:
            con.row_factory = sqlite3.Row
            yield con
            con.commit()
        except sqlite3.Error as exc:
            con.rollback()
            raise StoreError(str(exc)) from exc
        except BaseException:
            con.rollback()
            raise
        finally:
            con.close()

    def init_schema(self) -> None:
        """Creates the objects table and its indexes if they don't already exist."""
        with self.connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS objects (
                    kind TEXT NOT NULL,
                    namespace TEXT NOT NULL,
                    name TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    owner_kind TEXT,
                    owner_name TEXT,
                    labels TEXT NOT NULL DEFAULT '{}',
                    body TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (kind, namespace, name)
                )
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS objects_by_name ON objects (kind, name)")
            con.execute(
                "CREATE INDEX IF NOT EXISTS objects_by_owner ON objects (namespace, owner_kind, owner_name)"
            )

    def create(
        self,
        kind: str,
        namespace: str,
        name: str,
        body: Dict[str, Any],
        *,
        labels: Optional[Dict[str, str]] = None,
        owner: Optional[OwnerReference] = None,
        unique_cluster_wide: bool = False,
    ) -> StoredObject:
        """
        Inserts a new object at version 1.

        Args:
            kind: Object kind, e.g. ``"Workload"``.
            namespace: Owning namespace, or ``CLUSTER_SCOPE``.
            name: Object name.
            body: JSON-serialisable document.
            labels: Optional labels used for filtering.
            owner: Optional owner in the same namespace; the object is deleted
                   when the owner is.
            unique_cluster_wide: When True, the insert fails if an object of
                   the same kind and name exists in any namespace. The check
                   and the insert share one write transaction.

        Raises:
            ObjectAlreadyExists: If the name is taken.
        """
        now = _utc_now()
        with self.connect() as con:
            con.execute("BEGIN IMMEDIATE")
            if unique_cluster_wide:
                existing = con.execute(
                    "SELECT namespace FROM objects WHERE kind = ? AND name = ?", (kind, name)
                ).fetchone()
                if existing is not None:
                    raise ObjectAlreadyExists(kind, existing["namespace"], name)
            try:
                con.execute(
                    """
                    INSERT INTO objects (kind, namespace, name, version, owner_kind, owner_name,
                                         labels, body, created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        kind,
                        namespace,
                        name,
                        owner.kind if owner else None,
                        owner.name if owner else None,
                        json.dumps(labels or {}),
                        json.dumps(body),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError:
                raise ObjectAlreadyExists(kind, namespace, name) from None
        return StoredObject(
            kind=kind,
            namespace=namespace,
            name=name,
            version=1,
            body=body,
            labels=dict(labels or {}),
            owner=owner,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def get(self, kind: str, namespace: str, name: str) -> StoredObject:
        """
        Fetches a single object.

        Raises:
            ObjectNotFound: If no such object exists.
        """
        with self.connect() as con:
            row = con.execute(
                "SELECT * FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            ).fetchone()
        if row is None:
            raise ObjectNotFound(kind, namespace, name)
        return self._row_to_object(row)

    def find(self, kind: str, namespace: str, name: str) -> Optional[StoredObject]:
        """Like `get`, but returns None for a missing object."""
        try:
            return self.get(kind, namespace, name)
        except ObjectNotFound:
            return None

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        *,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[StoredObject]:
        """
        Lists objects of a kind, optionally restricted to a namespace.

        Args:
            kind: Object kind.
            namespace: Namespace filter; None lists across all namespaces.
            labels: Every given label must match exactly.
        """
        with self.connect() as con:
            if namespace is None:
                rows = con.execute(
                    "SELECT * FROM objects WHERE kind = ? ORDER BY namespace, name", (kind,)
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM objects WHERE kind = ? AND namespace = ? ORDER BY name",
                    (kind, namespace),
                ).fetchall()
        objects = [self._row_to_object(r) for r in rows]
        if labels:
            objects = [o for o in objects if all(o.labels.get(k) == v for k, v in labels.items())]
        return objects

    def update(
        self,
        kind: str,
        namespace: str,
        name: str,
        body: Dict[str, Any],
        *,
        expected_version: int,
    ) -> StoredObject:
        """
        Replaces an object's body if its version is still ``expected_version``.

        Raises:
            ObjectNotFound: If the object no longer exists.
            VersionConflict: If another writer updated it first.
        """
        now = _utc_now()
        with self.connect() as con:
            cur = con.execute(
                """
                UPDATE objects SET body = ?, version = version + 1, updated_at = ?
                WHERE kind = ? AND namespace = ? AND name = ? AND version = ?
                """,
                (json.dumps(body), now, kind, namespace, name, expected_version),
            )
            if cur.rowcount == 0:
                exists = con.execute(
                    "SELECT 1 FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                    (kind, namespace, name),
                ).fetchone()
                if exists is None:
                    raise ObjectNotFound(kind, namespace, name)
                raise VersionConflict(kind, namespace, name, expected_version)
            row = con.execute(
                "SELECT * FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            ).fetchone()
        return self._row_to_object(row)

    def set_owner(self, kind: str, namespace: str, name: str, owner: Optional[OwnerReference]) -> StoredObject:
        """Points an object's owner reference at ``owner``, bumping its version."""
        now = _utc_now()
        with self.connect() as con:
            cur = con.execute(
                """
                UPDATE objects SET owner_kind = ?, owner_name = ?, version = version + 1, updated_at = ?
                WHERE kind = ? AND namespace = ? AND name = ?
                """,
                (owner.kind if owner else None, owner.name if owner else None, now, kind, namespace, name),
            )
            if cur.rowcount == 0:
                raise ObjectNotFound(kind, namespace, name)
            row = con.execute(
                "SELECT * FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            ).fetchone()
        return self._row_to_object(row)

    def delete(
        self,
        kind: str,
        namespace: str,
        name: str,
        *,
        expected_version: Optional[int] = None,
    ) -> List[StoredObject]:
        """
        Deletes an object and, transitively, everything it owns.

        Args:
            expected_version: When given, the delete only happens if the
                   object is still at this version.

        Returns:
            Every deleted object, dependents first.

        Raises:
            ObjectNotFound: If the object does not exist.
            VersionConflict: If ``expected_version`` no longer matches.
        """
        with self.connect() as con:
            con.execute("BEGIN IMMEDIATE")
            row = con.execute(
                "SELECT * FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
                (kind, namespace, name),
            ).fetchone()
            if row is None:
                raise ObjectNotFound(kind, namespace, name)
            if expected_version is not None and row["version"] != expected_version:
                raise VersionConflict(kind, namespace, name, expected_version)
            deleted: List[StoredObject] = []
            self._delete_cascade(con, self._row_to_object(row), deleted)
        for obj in deleted[:-1]:
            logger.debug("garbage-collected %s %s owned by %s %s", obj.kind, obj.name, kind, name)
        return deleted

    def _delete_cascade(self, con: sqlite3.Connection, obj: StoredObject, deleted: List[StoredObject]) -> None:
        dependents = con.execute(
            "SELECT * FROM objects WHERE namespace = ? AND owner_kind = ? AND owner_name = ?",
            (obj.namespace, obj.kind, obj.name),
        ).fetchall()
        for row in dependents:
            self._delete_cascade(con, self._row_to_object(row), deleted)
        con.execute(
            "DELETE FROM objects WHERE kind = ? AND namespace = ? AND name = ?",
            (obj.kind, obj.namespace, obj.name),
        )
        deleted.append(obj)

    @staticmethod
    def _row_to_object(row: sqlite3.Row) -> StoredObject:
        owner = None
        if row["owner_kind"]:
            owner = OwnerReference(kind=row["owner_kind"], name=row["owner_name"])
        return StoredObject(
            kind=row["kind"],
            namespace=row["namespace"],
            name=row["name"],
            version=row["version"],
            body=json.loads(row["body"]),
            labels=json.loads(row["labels"]),
            owner=owner,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
