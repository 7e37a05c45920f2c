"""
Deterministic naming rules shared by every IAF component.

Every object the platform creates on behalf of a session is addressed by a
name derived from its inputs: namespaces from session ids, credential copies
from data source names, connection credentials from service names. Keeping
these derivations in one module means the control plane, the database
operator integration and the tests all agree on what an object is called
without having to look it up.
"""
from __future__ import annotations

import re
from typing import Final


NAMESPACE_PREFIX: Final[str] = "iaf-"
DATA_SOURCE_CREDENTIAL_PREFIX: Final[str] = "iaf-ds-"
CONNECTION_CREDENTIAL_SUFFIX: Final[str] = "-app"
NETWORK_POLICY_SUFFIX: Final[str] = "-netpol"
MAX_NAME_LENGTH: Final[int] = 63
RESERVED_NAME_PREFIXES: Final[tuple[str, ...]] = ("kube-", "iaf-")

MANAGED_BY_LABEL: Final[str] = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE: Final[str] = "iaf"
DATA_SOURCE_LABEL: Final[str] = "iaf.io/datasource"
MANAGED_SERVICE_LABEL: Final[str] = "iaf.io/managed-service"
CREDENTIAL_TYPE_LABEL: Final[str] = "iaf.io/credential-type"
GIT_SERVER_ANNOTATION: Final[str] = "iaf.io/git-server"

_RESOURCE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_ENV_VAR_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def namespace_for_session(session_id: str) -> str:
    """Return the namespace that isolates the given session."""
    if not session_id or not session_id.strip():
        raise ValueError("session id cannot be empty")
    return NAMESPACE_PREFIX + session_id.strip()


def data_source_credential_name(data_source: str) -> str:
    """
    Name of the namespace-local copy of a data source's credential.

    The name is the prefix plus the data source name, truncated (not hashed)
    to the DNS label limit. Two long data source names that share their first
    56 characters therefore map to the same copy; callers must check the
    copy's data source label before reusing it.
    """
    return (DATA_SOURCE_CREDENTIAL_PREFIX + data_source)[:MAX_NAME_LENGTH]


def connection_credential_name(service: str) -> str:
    """Name of the credential object the database operator publishes for ``service``."""
    return service + CONNECTION_CREDENTIAL_SUFFIX


def network_policy_name(service: str) -> str:
    return service + NETWORK_POLICY_SUFFIX


def validate_resource_name(name: str, *, what: str = "name") -> str:
    """
    Validate a caller-chosen workload, service or credential name.

    Names must be DNS labels: 1-63 characters of lowercase letters, digits
    and hyphens, starting with a letter or digit. Names starting with a
    reserved platform prefix are rejected.

    Args:
        name: The candidate name.
        what: Noun used in error messages (e.g. "service name").

    Returns:
        The name, unchanged.

    Raises:
        ValueError: If the name is not acceptable.
    """
    if not name:
        raise ValueError(f"{what} must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"{what} must be {MAX_NAME_LENGTH} characters or fewer (got {len(name)})")
    if not _RESOURCE_NAME_PATTERN.match(name):
        raise ValueError(
            f"{what} {name!r} is invalid: must be lowercase alphanumeric and hyphens, "
            "starting with a letter or digit"
        )
    for prefix in RESERVED_NAME_PREFIXES:
        if name.startswith(prefix):
            raise ValueError(f"{what} must not start with the reserved prefix {prefix!r}")
    return name


def validate_env_var_name(name: str) -> str:
    """Validate a POSIX environment variable name."""
    if not name:
        raise ValueError("environment variable name must not be empty")
    if not _ENV_VAR_PATTERN.match(name):
        raise ValueError(
            f"environment variable name {name!r} is invalid: must start with a letter or "
            "underscore and contain only letters, digits, and underscores"
        )
    return name


def managed_labels(**extra: str) -> dict[str, str]:
    """Labels stamped on every object the platform creates."""
    labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE}
    labels.update(extra)
    return labels


__all__ = [
    "NAMESPACE_PREFIX",
    "DATA_SOURCE_CREDENTIAL_PREFIX",
    "MAX_NAME_LENGTH",
    "RESERVED_NAME_PREFIXES",
    "MANAGED_BY_LABEL",
    "MANAGED_BY_VALUE",
    "DATA_SOURCE_LABEL",
    "MANAGED_SERVICE_LABEL",
    "CREDENTIAL_TYPE_LABEL",
    "GIT_SERVER_ANNOTATION",
    "namespace_for_session",
    "data_source_credential_name",
    "connection_credential_name",
    "network_policy_name",
    "validate_resource_name",
    "validate_env_var_name",
    "managed_labels",
]
