"""
This module defines the configuration settings for the IAF control plane.

It uses Pydantic's `BaseSettings` so every parameter can be supplied through an
`IAF_`-prefixed environment variable, giving the whole service one validated
source of configuration: server port, object store location, the platform's
system namespaces and the bounds applied to retries and per-session quotas.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControlPlaneSettings(BaseSettings):
    """
    Configuration model for the control plane.

    Attributes:
        api_port: The port on which the HTTP API listens.
        database_path: The file path for the SQLite object store.
        system_namespace: Namespace holding operator-curated source credentials.
        operator_namespace: Control namespace of the database operator; it is
                            the only out-of-namespace peer allowed to reach
                            database pods.
        base_domain: Shared routing domain; every workload is served at
                     `<name>.<base_domain>`, which is why names are unique
                     cluster-wide.
        bind_retry_attempts: Attempt cap for optimistic-concurrency updates.
        max_git_credentials_per_session: Per-namespace git credential quota.
        log_level: Root log level.
    """

    model_config = SettingsConfigDict(env_prefix="IAF_")

    # Server
    api_port: int = 8080

    # SQLite object store path (relative or absolute)
    database_path: str = "./iaf.db"

    # Platform namespaces
    system_namespace: str = "iaf-system"
    operator_namespace: str = "cnpg-system"

    # Routing
    base_domain: str = "localhost"

    # Bounds
    bind_retry_attempts: int = 3
    max_git_credentials_per_session: int = 20

    log_level: str = "INFO"
