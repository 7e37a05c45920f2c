"""
The IAF control plane.

It assigns every caller session its own namespace and, inside it, manages
workloads, data-source attachments, managed database services and git
credentials, without ever handing credential values back to the caller.
"""
from .errors import ControlPlaneError
from .service import ControlPlane

__all__ = ["ControlPlane", "ControlPlaneError"]

__version__ = "0.1.0"
