"""
Name uniqueness guard.

Every workload is served at ``<name>.<base_domain>``, so a name must be unique
across all tenants, not just within the caller's namespace. This guard is the
friendly pre-check run on creation paths: it lists the kind cluster-wide and
names the namespace that already holds the name. It takes no lock; the
authoritative create (``Database.create(..., unique_cluster_wide=True)``)
repeats the check inside its write transaction.
"""
from __future__ import annotations

from iaf_contracts import validate_resource_name

from .database import Database, StoreError
from .errors import BackendError, NameUnavailableError, PreconditionError


def require_name(name: str, what: str) -> str:
    """Validates a caller-supplied object name, raising `PreconditionError`."""
    try:
        return validate_resource_name(name, what=what)
    except ValueError as exc:
        raise PreconditionError(f"invalid {what}: {exc}", name=name) from None


def check_name_available(db: Database, kind: str, name: str, own_namespace: str) -> None:
    """
    Verifies that no object of ``kind`` called ``name`` exists in another namespace.

    An object with that name in ``own_namespace`` is fine: the caller is
    updating its own object in place.

    Raises:
        NameUnavailableError: If another namespace holds the name.
        BackendError: If the store cannot be listed.
    """
    try:
        existing = db.list(kind)
    except StoreError as exc:
        raise BackendError(f"checking {kind.lower()} name availability: {exc}") from exc
    for obj in existing:
        if obj.name == name and obj.namespace != own_namespace:
            raise NameUnavailableError(
                f"{kind.lower()} name {name!r} is already in use by another session; choose a different name",
                name=name,
            )
