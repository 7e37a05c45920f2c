"""
Bounded optimistic-concurrency updates.

Bound-workload lists and service-account credential lists are mutated by
independent callers that race by design. `update_with_retry` performs a
read-modify-write against the object store, re-reading and re-applying the
caller's delta whenever another writer got there first, and gives up with a
distinct `RetriesExhaustedError` after a fixed number of attempts.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .database import Database, ObjectNotFound, StoredObject, StoreError, VersionConflict
from .errors import BackendError, NotFoundError, RetriesExhaustedError

logger = logging.getLogger(__name__)

Mutation = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def update_with_retry(
    db: Database,
    kind: str,
    namespace: str,
    name: str,
    mutate: Mutation,
    *,
    attempts: int = 3,
    operation: str = "update",
) -> StoredObject:
    """
    Applies ``mutate`` to the current body of an object, retrying on conflict.

    Args:
        db: The object store.
        kind: Object kind.
        namespace: Object namespace.
        name: Object name.
        mutate: Receives a copy of the current body and returns the new body,
                or None when no change is needed. It is called once per
                attempt against a fresh read, so it must be idempotent.
        attempts: Maximum number of read-modify-write attempts.
        operation: Short description used in error messages.

    Returns:
        The stored object after the update (or as read, for a no-op).

    Raises:
        NotFoundError: If the object does not exist.
        RetriesExhaustedError: If every attempt hit a version conflict.
        BackendError: For any other store failure.
    """
    for attempt in range(1, attempts + 1):
        try:
            current = db.get(kind, namespace, name)
            body = mutate(dict(current.body))
            if body is None:
                return current
            return db.update(kind, namespace, name, body, expected_version=current.version)
        except VersionConflict:
            logger.info("%s %s/%s: version conflict on attempt %d/%d", operation, namespace, name, attempt, attempts)
        except ObjectNotFound:
            raise NotFoundError(f"{kind.lower()} {name!r} not found", name=name) from None
        except StoreError as exc:
            raise BackendError(f"{operation}: {exc}") from exc
    raise RetriesExhaustedError(
        f"{operation} on {kind.lower()} {name!r} failed after {attempts} attempts due to concurrent updates; "
        "the change was not applied, retry the call",
        name=name,
        attempts=attempts,
    )
