"""
Error taxonomy for control-plane operations.

Every public operation either returns a structured payload or raises one of
the classes below. Each class carries a stable ``kind`` that callers can
branch on and the HTTP status the API layer maps it to. Messages are written
for the caller: they name the offending value and say what to do next, and
never include credential material.
"""
from __future__ import annotations

from typing import Any, Dict


class ControlPlaneError(RuntimeError):
    """Base class for every caller-facing control-plane failure."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class PreconditionError(ControlPlaneError):
    """The request is invalid in the current state; retrying unchanged will not help."""

    kind = "precondition_failed"
    status_code = 400


class SessionNotFoundError(PreconditionError):
    kind = "session_not_found"
    status_code = 401

    def __init__(self, message: str = "session not found, call register first", **details: Any):
        super().__init__(message, **details)


class VariableCollisionError(PreconditionError):
    kind = "variable_collision"
    status_code = 409

    def __init__(self, variable: str, origin: str, hint: str):
        super().__init__(
            f"env var {variable!r} is already defined by {origin}; {hint}",
            variable=variable,
            origin=origin,
        )
        self.variable = variable
        self.origin = origin


class NameUnavailableError(PreconditionError):
    kind = "name_unavailable"
    status_code = 409


class NotFoundError(ControlPlaneError):
    kind = "not_found"
    status_code = 404


class AlreadyExistsError(ControlPlaneError):
    kind = "already_exists"
    status_code = 409


class ConflictError(ControlPlaneError):
    """A concurrent writer changed the record between read and write."""

    kind = "conflict"
    status_code = 409


class RetriesExhaustedError(ControlPlaneError):
    """Optimistic-concurrency retries ran out; the update was not applied."""

    kind = "retries_exhausted"
    status_code = 409


class SecurityRejectionError(ControlPlaneError):
    kind = "security_rejected"
    status_code = 403


class BackendError(ControlPlaneError):
    """The object store or another backend failed; wraps the cause with operation context."""

    kind = "backend_error"
    status_code = 502


__all__ = [
    "ControlPlaneError",
    "PreconditionError",
    "SessionNotFoundError",
    "VariableCollisionError",
    "NameUnavailableError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "RetriesExhaustedError",
    "SecurityRejectionError",
    "BackendError",
]
