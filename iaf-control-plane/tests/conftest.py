from __future__ import annotations

import socket
from pathlib import Path
from typing import Dict, List

import pytest

from iaf_contracts import BasicAuthPayload, DataSource, DataSourceSecretRef, EnvVar, WorkloadSource
from iaf_control_plane.config import ControlPlaneSettings
from iaf_control_plane.service import ControlPlane

# Hostname -> addresses. Anything else fails to resolve.
FAKE_DNS: Dict[str, List[str]] = {
    "github.com": ["140.82.112.3"],
    "gitlab.com": ["172.65.251.78"],
    "internal.example.com": ["10.0.0.5"],
    "metadata.example.com": ["169.254.169.254"],
    "mixed.example.com": ["8.8.8.8", "192.168.1.20"],
}


def fake_resolver(host: str) -> List[str]:
    try:
        return FAKE_DNS[host]
    except KeyError:
        raise socket.gaierror(f"unknown host {host}") from None


@pytest.fixture
def settings(tmp_path: Path) -> ControlPlaneSettings:
    return ControlPlaneSettings(database_path=str(tmp_path / "iaf.db"))


@pytest.fixture
def plane(settings: ControlPlaneSettings) -> ControlPlane:
    return ControlPlane.from_settings(settings, resolver=fake_resolver)


@pytest.fixture
def session_id(plane: ControlPlane) -> str:
    return plane.sessions.register("tests").id


@pytest.fixture
def namespace(plane: ControlPlane, session_id: str) -> str:
    return plane.sessions.resolve_namespace(session_id)


def deploy(plane: ControlPlane, session_id: str, name: str, env: Dict[str, str] | None = None) -> None:
    plane.workloads.deploy(
        session_id,
        name,
        WorkloadSource(image="nginx:1.27"),
        env=[EnvVar(name=k, value=v) for k, v in (env or {}).items()],
    )


def register_source(
    plane: ControlPlane,
    name: str,
    mapping: Dict[str, str],
    *,
    kind: str = "postgres",
    tags: List[str] | None = None,
    payload=None,
) -> DataSource:
    source = DataSource(
        name=name,
        kind=kind,
        description=f"{name} database",
        schema_description="orders(id, total)",
        tags=tags or [],
        secret_ref=DataSourceSecretRef(name=f"{name}-creds", namespace=plane.settings.system_namespace),
        env_var_mapping=mapping,
    )
    if payload is None:
        payload = BasicAuthPayload(username="svc-reader", password="s3cr3t-value")
    return plane.data_sources.register_data_source(source, payload)


def report_ready(plane: ControlPlane, namespace: str, service: str, ready: str = "True") -> None:
    plane.bindings.record_cluster_conditions(
        namespace, service, [{"type": "Ready", "status": ready, "reason": "ClusterIsReady"}]
    )


@pytest.fixture
def ready_service(plane: ControlPlane, session_id: str, namespace: str) -> str:
    plane.bindings.provision(session_id, "mydb", "postgres", "micro")
    report_ready(plane, namespace, "mydb")
    plane.bindings.status(session_id, "mydb")
    return "mydb"
