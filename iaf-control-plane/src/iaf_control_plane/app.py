"""
This module is responsible for creating and configuring the FastAPI application.

It handles the initialization of all major components: settings, logging, the
object store and the control-plane services. The `create_app` function is the
factory for the application, so every dependency is wired up before the first
request is served.
"""
from typing import Optional

from fastapi import FastAPI

from .api import get_router
from .audit import audit_requests
from .config import ControlPlaneSettings
from .logging_utils import configure_logging
from .service import ControlPlane
from .validation import Resolver, resolve_host


def create_app(settings: Optional[ControlPlaneSettings] = None, resolver: Resolver = resolve_host) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Args:
        settings: Configuration to use; read from the environment when omitted.
        resolver: Hostname resolver for endpoint validation.

    Returns:
        A fully configured `FastAPI` application instance.
    """
    settings = settings or ControlPlaneSettings()
    configure_logging(settings.log_level)

    plane = ControlPlane.from_settings(settings, resolver=resolver)

    app = FastAPI(
        title="IAF Control Plane",
        description="Multi-tenant workload, data source and managed service control plane (SQLite-backed)",
        version="0.1.0",
    )

    app.state.settings = settings
    app.state.plane = plane

    app.middleware("http")(audit_requests)
    app.include_router(get_router(plane))

    return app
