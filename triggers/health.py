"""
Health Check HTTP Trigger.

System health endpoint for GET /api/health.

Components Monitored:
    - Configuration (sanitized)
    - Storage backend (round trip through the assessment repository)
    - Module registry

Exports:
    HealthCheckTrigger: Health check trigger class
    health_check_trigger: Singleton trigger instance
"""

from typing import Dict, Any, List
import sys

import azure.functions as func

from .http_base import SystemMonitoringTrigger
from config import get_config, debug_config


class HealthCheckTrigger(SystemMonitoringTrigger):
    """Health check HTTP trigger implementation."""

    def __init__(self, repositories: Dict[str, Any] = None):
        super().__init__("health_check")
        self._repositories = repositories

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> Dict[str, Any]:
        components = {
            "configuration": self.check_component_health(
                "configuration", self._check_configuration, "Application settings"
            ),
            "storage": self.check_component_health(
                "storage", self._check_storage, "Assessment and ledger storage backend"
            ),
            "modules": self.check_component_health(
                "modules", self._check_modules, "Registered assessment modules"
            ),
        }
        unhealthy = [name for name, c in components.items() if c["status"] == "unhealthy"]
        return {
            "status": "unhealthy" if unhealthy else "healthy",
            "unhealthyComponents": unhealthy,
            "components": components,
            "environment": {
                "python_version": sys.version.split()[0],
                "storage_backend": get_config().assessment.storage_backend,
            },
        }

    def _check_configuration(self) -> Dict[str, Any]:
        return debug_config()

    def _check_storage(self) -> Dict[str, Any]:
        if self._repositories is None:
            from infrastructure import RepositoryFactory
            self._repositories = RepositoryFactory.create_repositories()
        recent = self._repositories['assessment_repo'].list_jobs(limit=1)
        return {"backend": get_config().assessment.storage_backend, "reachable": True, "sampled_jobs": len(recent)}

    def _check_modules(self) -> Dict[str, Any]:
        from services import validate_module_registry
        return validate_module_registry()


health_check_trigger = HealthCheckTrigger()
