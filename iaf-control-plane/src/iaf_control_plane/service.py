"""
This module assembles the control-plane services around one object store.

`ControlPlane` is what the HTTP layer (and the tests) hold on to: it owns the
store and wires the session registry, workload, data-source, service-binding
and git-credential services together so each sees the same settings and the
same hostname resolver.
"""
from __future__ import annotations

from .attachments import DataSourceService
from .bindings import ServiceBindingService
from .config import ControlPlaneSettings
from .database import Database
from .git_credentials import GitCredentialService
from .sessions import SessionRegistry
from .validation import Resolver, resolve_host
from .workloads import WorkloadService


class ControlPlane:
    """
    Facade over every control-plane service.

    Attributes:
        db: The object store.
        settings: The application configuration settings.
        sessions: Session registry.
        workloads: Workload deploy/status/list/delete.
        data_sources: Data-source catalog and attachment.
        bindings: Managed-service lifecycle and binding.
        git_credentials: Git credential management.
    """

    def __init__(self, db: Database, settings: ControlPlaneSettings, resolver: Resolver = resolve_host):
        self.db = db
        self.settings = settings
        self.sessions = SessionRegistry(db)
        self.bindings = ServiceBindingService(db, self.sessions, settings)
        self.workloads = WorkloadService(db, self.sessions, self.bindings, settings, resolver=resolver)
        self.data_sources = DataSourceService(db, self.sessions, settings)
        self.git_credentials = GitCredentialService(db, self.sessions, settings, resolver=resolver)

    @classmethod
    def from_settings(cls, settings: ControlPlaneSettings, resolver: Resolver = resolve_host) -> "ControlPlane":
        """Opens the configured store, creating its schema if needed."""
        db = Database(settings.database_path)
        db.init_schema()
        return cls(db, settings, resolver=resolver)
