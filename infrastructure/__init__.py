"""
Infrastructure Package - Lazy Loading Implementation.

Repository classes are imported only when first accessed. function_app.py
imports this package during cold start, before the Functions host has
applied app settings and before managed identity is ready; deferring the
imports keeps config reads, singletons and Azure credentials out of module
load.

Access pattern:
    from infrastructure import RepositoryFactory
    repos = RepositoryFactory.create_repositories()
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .factory import RepositoryFactory as _RepositoryFactory
    from .base import BaseRepository as _BaseRepository
    from .memory import InMemoryStore as _InMemoryStore
    from .memory import InMemoryQueue as _InMemoryQueue
    from .postgresql import PostgreSQLRepository as _PostgreSQLRepository
    from .service_bus import ServiceBusRepository as _ServiceBusRepository
    from .vault import VaultRepository as _VaultRepository
    from .metrics_api_client import RateLimiter as _RateLimiter
    from .metrics_api_client import MetricsClientFactory as _MetricsClientFactory
    from .audit_runner_client import AuditRunnerClient as _AuditRunnerClient


_LAZY_IMPORTS = {
    "RepositoryFactory": (".factory", "RepositoryFactory"),
    "BaseRepository": (".base", "BaseRepository"),
    "InMemoryStore": (".memory", "InMemoryStore"),
    "InMemoryQueue": (".memory", "InMemoryQueue"),
    "PostgreSQLRepository": (".postgresql", "PostgreSQLRepository"),
    "ServiceBusRepository": (".service_bus", "ServiceBusRepository"),
    "VaultRepository": (".vault", "VaultRepository"),
    "TenantCredentialProvider": (".vault", "TenantCredentialProvider"),
    "RateLimiter": (".metrics_api_client", "RateLimiter"),
    "MetricsClientFactory": (".metrics_api_client", "MetricsClientFactory"),
    "AuditRunnerClient": (".audit_runner_client", "AuditRunnerClient"),
}


def __getattr__(name: str):
    """
    Lazy import mechanism - only imports when actually accessed.
    """
    if name in _LAZY_IMPORTS:
        import importlib
        module_name, attr = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_name, __name__)
        return getattr(module, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_LAZY_IMPORTS)
