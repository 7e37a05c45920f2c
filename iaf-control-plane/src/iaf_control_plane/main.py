"""
This module serves as the main entry point for running the control plane.

It starts uvicorn on the port from `ControlPlaneSettings`, loading the
application through the `create_app` factory.
"""
import uvicorn

from .config import ControlPlaneSettings
from .logging_utils import configure_logging


def main():
    """
    Main entry point for starting the control-plane API server.

    Binds to all interfaces (``0.0.0.0``) on the configured port.
    """
    settings = ControlPlaneSettings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "iaf_control_plane.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
