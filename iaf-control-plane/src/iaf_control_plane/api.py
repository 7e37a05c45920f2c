"""
This module defines the FastAPI routes for the IAF control plane.

Every session-scoped operation lives under ``/sessions/{session_id}``; the
session id is resolved to the caller's namespace by the service layer before
anything else happens. A small set of platform-side routes lets the database
operator and the build/deploy subsystem report observed state, and lets
platform operators add data sources to the catalog.

Service errors are mapped to `HTTPException` with the error's status code and
a structured ``detail`` carrying its ``kind`` and message.
"""
from typing import Any, Callable, Optional

from fastapi import APIRouter, HTTPException

from .errors import ControlPlaneError
from .schemas import (
    AddGitCredentialRequest,
    AttachDataSourceRequest,
    BindServiceRequest,
    ClusterConditionsReport,
    DeployWorkloadRequest,
    ProvisionServiceRequest,
    RegisterDataSourceRequest,
    RegisterSessionRequest,
    SessionResponse,
    WorkloadStatusReport,
)
from .service import ControlPlane


def _call(operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return operation(*args, **kwargs)
    except ControlPlaneError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_payload()) from exc


def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def get_router(plane: ControlPlane) -> APIRouter:
    """
    Creates and configures the API router for the control plane.

    Args:
        plane: The assembled control-plane services.

    Returns:
        A configured `APIRouter` instance with every control-plane endpoint.
    """
    router = APIRouter()

    @router.get("/health")
    def health_check():
        """Provides a simple health check endpoint for the service."""
        return {"status": "healthy"}

    @router.post("/sessions", response_model=SessionResponse)
    def register_session(request: RegisterSessionRequest):
        """
        Registers a new session and provisions its namespace.

        The returned session id must be passed to every other call.
        """
        session = _call(plane.sessions.register, request.name)
        return SessionResponse(
            session_id=session.id,
            namespace=session.namespace,
            message="Session registered. Pass session_id to every subsequent call.",
        )

    # Workloads

    @router.post("/sessions/{session_id}/workloads")
    def deploy_workload(session_id: str, request: DeployWorkloadRequest):
        """Creates a workload, or updates the caller's workload with the same name."""
        return _call(
            plane.workloads.deploy,
            session_id,
            request.name,
            request.source,
            port=request.port,
            replicas=request.replicas,
            env=request.env,
        )

    @router.get("/sessions/{session_id}/workloads")
    def list_workloads(session_id: str, phase: Optional[str] = None):
        return _call(plane.workloads.list_workloads, session_id, phase=phase)

    @router.get("/sessions/{session_id}/workloads/{name}")
    def workload_status(session_id: str, name: str):
        return _call(plane.workloads.status, session_id, name)

    @router.delete("/sessions/{session_id}/workloads/{name}")
    def delete_workload(session_id: str, name: str):
        """Deletes a workload together with the credential copies it owns."""
        return _call(plane.workloads.delete, session_id, name)

    @router.post("/sessions/{session_id}/workloads/{name}/data-sources")
    def attach_data_source(session_id: str, name: str, request: AttachDataSourceRequest):
        """
        Attaches a catalog data source to a workload.

        Only the injected variable names are returned, never credential values.
        """
        return _call(plane.data_sources.attach, session_id, name, request.data_source)

    # Data-source catalog

    @router.get("/sessions/{session_id}/data-sources")
    def list_data_sources(session_id: str, kind: Optional[str] = None, tags: Optional[str] = None):
        """Lists data sources; ``tags`` is comma-separated and every tag must match."""
        tag_list = tags.split(",") if tags else None
        return _call(plane.data_sources.list_data_sources, session_id, kind=kind, tags=tag_list)

    @router.get("/sessions/{session_id}/data-sources/{name}")
    def get_data_source(session_id: str, name: str):
        return _call(plane.data_sources.get_data_source, session_id, name)

    # Managed services

    @router.post("/sessions/{session_id}/services")
    def provision_service(session_id: str, request: ProvisionServiceRequest):
        """Starts provisioning a managed service; poll its status until Ready."""
        return _call(plane.bindings.provision, session_id, request.name, request.type, request.plan)

    @router.get("/sessions/{session_id}/services")
    def list_services(session_id: str):
        return _call(plane.bindings.list_services, session_id)

    @router.get("/sessions/{session_id}/services/{name}")
    def service_status(session_id: str, name: str):
        return _call(plane.bindings.status, session_id, name)

    @router.delete("/sessions/{session_id}/services/{name}")
    def deprovision_service(session_id: str, name: str):
        """Deletes a managed service; refused while any workload is bound to it."""
        return _call(plane.bindings.deprovision, session_id, name)

    @router.post("/sessions/{session_id}/services/{name}/bindings")
    def bind_service(session_id: str, name: str, request: BindServiceRequest):
        return _call(plane.bindings.bind, session_id, name, request.workload)

    @router.delete("/sessions/{session_id}/services/{name}/bindings/{workload}")
    def unbind_service(session_id: str, name: str, workload: str):
        return _call(plane.bindings.unbind, session_id, name, workload)

    # Git credentials

    @router.post("/sessions/{session_id}/git-credentials")
    def add_git_credential(session_id: str, request: AddGitCredentialRequest):
        """Stores a git credential; its material is never returned by any route."""
        return _call(
            plane.git_credentials.add,
            session_id,
            request.name,
            request.type,
            request.git_server_url,
            username=request.username,
            password=_secret(request.password),
            private_key=_secret(request.private_key),
        )

    @router.get("/sessions/{session_id}/git-credentials")
    def list_git_credentials(session_id: str):
        return _call(plane.git_credentials.list_credentials, session_id)

    @router.delete("/sessions/{session_id}/git-credentials/{name}")
    def delete_git_credential(session_id: str, name: str):
        return _call(plane.git_credentials.delete, session_id, name)

    # Platform side

    @router.post("/platform/data-sources")
    def register_data_source(request: RegisterDataSourceRequest):
        """Adds a data source to the catalog (platform operators only)."""
        source = _call(plane.data_sources.register_data_source, request.data_source, request.credential)
        return source.summary(detailed=True)

    @router.put("/platform/namespaces/{namespace}/clusters/{name}/conditions")
    def report_cluster_conditions(namespace: str, name: str, report: ClusterConditionsReport):
        """Receives the condition list written by the database operator."""
        _call(plane.bindings.record_cluster_conditions, namespace, name, report.conditions)
        return {"status": "success"}

    @router.put("/platform/namespaces/{namespace}/workloads/{name}/status")
    def report_workload_status(namespace: str, name: str, report: WorkloadStatusReport):
        """Receives observed workload state from the build/deploy subsystem."""
        _call(plane.workloads.record_status, namespace, name, report.status)
        return {"status": "success"}

    return router
