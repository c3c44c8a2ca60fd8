# ============================================================================
# AUDIT MODULES
# ============================================================================
# STATUS: Service layer - audit module contract and built-in modules
# PURPOSE: Collect findings for one module against one tenant connection
# EXPORTS: AuditModule, ModuleContext, AuditRunnerModule,
#          MonitoringAlertsModule, ALL_MODULES, get_module
# DEPENDENCIES: azure-identity (via TenantCredentialProvider), infrastructure clients
# ============================================================================
"""
Audit Modules - Explicit Registration (No Decorators)

Every module the orchestrator can run is listed in ALL_MODULES. If a code is
not in that dict it is not registered and start() rejects it.

Module contract:
    class MyModule(AuditModule):
        module_code = "MYCODE"

        def collect(self, context: ModuleContext) -> Iterable[FindingInput]:
            yield FindingInput(severity="high", finding_text="...")

collect() is a generator so that findings emitted before an error or a
timeout are kept by the executor. Modules raise ModuleExecutionError for
expected failures; anything else is normalized by the executor.

Built-in modules:
    AuditRunnerModule       posts the tenant context to the external audit
                            runner and yields the rows it returns
    MonitoringAlertsModule  MONITORING: dead or alerting devices in the
                            customer's monitoring group, read through the
                            rate-limited metrics API
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional

from core.models import AssessmentJob, FindingInput, Severity, TenantConnection
from exceptions import ConfigurationError, ModuleExecutionError, ResourceNotFoundError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "AuditModules")

ARM_SCOPE = "https://management.azure.com/.default"


@dataclass
class ModuleContext:
    """
    Everything a module may use while collecting.

    Clients are optional so that modules which do not need them can run in
    environments where they are not configured.
    """

    job: AssessmentJob
    connection: TenantConnection
    credential_provider: Any = None
    metrics_factory: Any = None
    audit_runner: Any = None

    @property
    def customer_id(self) -> str:
        return self.job.customer_id

    def get_credential(self):
        """Tenant credential, built lazily from the vault-held client secret."""
        if self.credential_provider is None:
            raise ConfigurationError("No tenant credential provider configured (KEY_VAULT_NAME unset)")
        return self.credential_provider.get_credential(self.connection)


class AuditModule(ABC):
    """
    Base class for audit modules.
    """

    module_code: str = ""
    description: str = ""

    @abstractmethod
    def collect(self, context: ModuleContext) -> Iterable[FindingInput]:
        """Yield the module's findings."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.module_code})"


# ============================================================================
# AUDIT RUNNER MODULES
# ============================================================================

_RUNNER_FIELD_ALIASES = {
    "severity": ("Severity", "severity"),
    "category": ("Category", "category"),
    "resource_type": ("ResourceType", "resourceType", "resource_type"),
    "resource_id": ("ResourceId", "resourceId", "resource_id"),
    "resource_name": ("ResourceName", "resourceName", "resource_name"),
    "finding_text": ("Detail", "FindingText", "Finding", "findingText", "finding_text"),
    "recommendation": ("Recommendation", "recommendation"),
}


def runner_row_to_finding(row: Dict[str, Any]) -> Optional[FindingInput]:
    """
    Map one audit runner row onto FindingInput.

    Rows without finding text are not findings (header or summary rows).
    """
    values = {}
    for field, aliases in _RUNNER_FIELD_ALIASES.items():
        for alias in aliases:
            value = row.get(alias)
            if value not in (None, ""):
                values[field] = str(value)
                break
    if not values.get("finding_text", "").strip():
        return None
    return FindingInput(**values)


class AuditRunnerModule(AuditModule):
    """
    Module executed by the external audit runner.

    The runner receives an ARM access token for the tenant rather than the
    client secret.
    """

    def __init__(self, module_code: str, description: str = ""):
        self.module_code = module_code.upper()
        self.description = description

    def collect(self, context: ModuleContext) -> Iterator[FindingInput]:
        if context.audit_runner is None:
            raise ConfigurationError("Audit runner client is not configured")

        credential = context.get_credential()
        token = credential.get_token(ARM_SCOPE)

        payload = {
            "customerId": context.customer_id,
            "connectionId": context.connection.connection_id,
            "tenantId": context.connection.tenant_id,
            "clientId": context.connection.client_id,
            "assessmentId": context.job.job_id,
            "accessToken": token.token,
        }
        rows = context.audit_runner.run_module(self.module_code, payload)

        skipped = 0
        for row in rows:
            if not isinstance(row, dict):
                skipped += 1
                continue
            finding = runner_row_to_finding(row)
            if finding is None:
                skipped += 1
                continue
            yield finding

        if skipped:
            logger.debug(f"📋 {self.module_code}: skipped {skipped} rows without finding text")


# ============================================================================
# MONITORING MODULE
# ============================================================================

_ALERT_SEVERITY = {
    "critical": Severity.HIGH,
    "error": Severity.MEDIUM,
    "warn": Severity.LOW,
    "warning": Severity.LOW,
}


class MonitoringAlertsModule(AuditModule):
    """
    MONITORING: devices that stopped reporting or carry open alerts.

    Dead devices are HIGH. Alert severity maps critical/error/warn to
    HIGH/MEDIUM/LOW. A device can yield both findings.
    """

    module_code = "MONITORING"
    description = "Monitoring coverage and open alerts"

    def collect(self, context: ModuleContext) -> Iterator[FindingInput]:
        group_id = context.connection.monitoring_group_id
        if group_id is None:
            logger.info(f"📋 MONITORING: customer {context.customer_id} has no monitoring group")
            return
        if context.metrics_factory is None:
            raise ConfigurationError("Metrics API client factory is not configured")

        with context.metrics_factory.create(context.customer_id) as client:
            devices = client.list_group_devices(group_id)

        for device in devices:
            yield from self._device_findings(device)

    def _device_findings(self, device: Dict[str, Any]) -> Iterator[FindingInput]:
        device_id = device.get("id")
        name = device.get("displayName") or str(device_id)
        resource_id = f"device:{device_id}"

        host_status = str(device.get("hostStatus") or "").lower()
        if "dead" in host_status:
            yield FindingInput(
                severity=Severity.HIGH,
                category="Monitoring Coverage",
                resource_type="Device",
                resource_id=resource_id,
                resource_name=name,
                finding_text="Device is not reporting data to the monitoring platform",
                recommendation="Check the collector and the device's network path",
            )

        alert_status = str(device.get("alertStatus") or "").lower()
        for label, severity in _ALERT_SEVERITY.items():
            if label in alert_status:
                yield FindingInput(
                    severity=severity,
                    category="Open Alerts",
                    resource_type="Device",
                    resource_id=resource_id,
                    resource_name=name,
                    finding_text=f"Device has an open {label} alert",
                    recommendation="Review and resolve the alert or tune its threshold",
                )
                break


# ============================================================================
# REGISTRY
# ============================================================================

ALL_MODULES: Dict[str, AuditModule] = {
    "NETWORK": AuditRunnerModule("NETWORK", "Network security groups and exposure"),
    "BACKUP": AuditRunnerModule("BACKUP", "Backup coverage and retention"),
    "COST": AuditRunnerModule("COST", "Idle and oversized resources"),
    "IDENTITY": AuditRunnerModule("IDENTITY", "Privileged roles and stale accounts"),
    "POLICY": AuditRunnerModule("POLICY", "Policy assignments and compliance state"),
    "RESOURCE": AuditRunnerModule("RESOURCE", "Resource hygiene and tagging"),
    "RESERVATION": AuditRunnerModule("RESERVATION", "Reservation utilisation"),
    "SECURITY": AuditRunnerModule("SECURITY", "Defender recommendations"),
    "PATCH": AuditRunnerModule("PATCH", "Missing operating system updates"),
    "PERFORMANCE": AuditRunnerModule("PERFORMANCE", "Sustained resource saturation"),
    "COMPLIANCE": AuditRunnerModule("COMPLIANCE", "Regulatory compliance controls"),
    "MONITORING": MonitoringAlertsModule(),
}


def get_module(module_code: str, registry: Optional[Dict[str, AuditModule]] = None) -> AuditModule:
    """
    Look up a registered module.

    Raises:
        ResourceNotFoundError: Code is not registered
    """
    modules = ALL_MODULES if registry is None else registry
    module = modules.get((module_code or "").strip().upper())
    if module is None:
        raise ResourceNotFoundError(f"Audit module '{module_code}' is not registered")
    return module


__all__ = [
    'AuditModule',
    'ModuleContext',
    'AuditRunnerModule',
    'MonitoringAlertsModule',
    'runner_row_to_finding',
    'ALL_MODULES',
    'get_module',
]
