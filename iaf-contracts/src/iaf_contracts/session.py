"""
Session contract: the tenant isolation unit.

A session is created once by a caller and pins that caller to exactly one
namespace for the rest of its life. The namespace is derived from the id, so
it never needs to be stored separately from the id to be trusted.
"""
from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .naming import namespace_for_session


def _utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """An isolated tenant context bound to exactly one namespace."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque session identifier.")
    name: str = Field(default="", description="Caller-supplied display name.")
    namespace: str = Field(..., min_length=1, description="Namespace owned by this session.")
    created_at: datetime = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def _namespace_matches_id(self) -> "Session":
        expected = namespace_for_session(self.id)
        if self.namespace != expected:
            raise ValueError(f"namespace {self.namespace!r} does not match session id (expected {expected!r})")
        return self


__all__ = ["Session"]
