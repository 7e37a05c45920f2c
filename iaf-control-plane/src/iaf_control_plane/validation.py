"""
Credential endpoint validation.

Git server URLs supplied by callers are later dereferenced by the build step,
which runs with platform privileges outside the caller's namespace. An
unvalidated URL would let a caller make that step reach into the cluster's
internal network, so every endpoint must use TLS (or SSH) and must neither be
nor resolve to a private, loopback or link-local address. A hostname that does
not resolve is rejected too.

Rejection messages name the rule and at most the hostname; they never echo
the full URL, which may carry embedded credentials.
"""
from __future__ import annotations

import ipaddress
import re
import socket
from typing import Callable, Iterable, List
from urllib.parse import urlsplit

from .errors import PreconditionError, SecurityRejectionError

Resolver = Callable[[str], Iterable[str]]

_SSH_ENDPOINT_PATTERN = re.compile(
    r"^(?P<identity>[A-Za-z0-9._-]+)@(?P<host>[A-Za-z0-9][A-Za-z0-9.-]*)(?::(?P<path>\S*))?$"
)


def resolve_host(host: str) -> List[str]:
    """Resolve a hostname to every address it maps to."""
    infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    return sorted({info[4][0] for info in infos})


def _is_internal(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


def reject_internal_host(host: str, *, field: str, resolver: Resolver = resolve_host) -> None:
    """
    Raises `SecurityRejectionError` if ``host`` is, or resolves to, an internal address.

    Args:
        host: Hostname or IP literal.
        field: Name of the input being validated, for the error message.
        resolver: Hostname resolver; injectable for tests.
    """
    host = host.strip().strip("[]").lower()
    if not host:
        raise SecurityRejectionError(f"{field} must include a host")
    if host == "localhost" or host.endswith(".localhost"):
        raise SecurityRejectionError(f"{field} must not point to a local or internal host")

    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        try:
            addresses = list(resolver(host))
        except (OSError, UnicodeError):
            raise SecurityRejectionError(
                f"{field} host {host!r} could not be resolved; only publicly resolvable hosts are allowed"
            ) from None
        if not addresses:
            raise SecurityRejectionError(
                f"{field} host {host!r} could not be resolved; only publicly resolvable hosts are allowed"
            )

    for address in addresses:
        if _is_internal(address):
            raise SecurityRejectionError(
                f"{field} must not point to a private, loopback, or link-local address ({host})"
            )


def validate_https_endpoint(url: str, *, field: str = "git_server_url", resolver: Resolver = resolve_host) -> str:
    """
    Validates an endpoint used for basic-auth credentials.

    The scheme must be ``https`` and the host must be public.

    Returns:
        The hostname that was validated.
    """
    if not url:
        raise PreconditionError(f"{field} is required")
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError:
        raise SecurityRejectionError(f"{field} is not a valid URL") from None
    if parts.scheme != "https":
        raise SecurityRejectionError(
            f"{field} must use the https:// scheme (got {parts.scheme or 'none'!r}); plain-text schemes are not allowed"
        )
    if parts.username or parts.password:
        raise SecurityRejectionError(f"{field} must not embed credentials; supply them separately")
    reject_internal_host(hostname, field=field, resolver=resolver)
    return hostname


def validate_ssh_endpoint(endpoint: str, *, field: str = "git_server_url", resolver: Resolver = resolve_host) -> str:
    """
    Validates an endpoint used for SSH credentials.

    The endpoint must look like ``identity@host`` optionally followed by
    ``:path``, and the host must be public.

    Returns:
        The hostname that was validated.
    """
    if not endpoint:
        raise PreconditionError(f"{field} is required")
    match = _SSH_ENDPOINT_PATTERN.match(endpoint)
    if match is None:
        raise SecurityRejectionError(f"{field} for ssh must match identity@host[:path] (e.g. git@github.com)")
    host = match.group("host")
    reject_internal_host(host, field=field, resolver=resolver)
    return host


def validate_git_url(url: str, *, resolver: Resolver = resolve_host) -> str:
    """Validates a workload's git source URL with whichever rule its form calls for."""
    if "://" in url:
        return validate_https_endpoint(url, field="git url", resolver=resolver)
    return validate_ssh_endpoint(url, field="git url", resolver=resolver)
