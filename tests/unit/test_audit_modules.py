"""
Audit module tests - runner row mapping, the runner module and the
monitoring module against fake clients.
"""

from types import SimpleNamespace

import pytest

from core.models import Severity
from exceptions import ConfigurationError, ResourceNotFoundError
from services.audit_modules import (
    ALL_MODULES,
    ARM_SCOPE,
    AuditRunnerModule,
    ModuleContext,
    MonitoringAlertsModule,
    get_module,
    runner_row_to_finding,
)
from tests.factories.model_factories import make_connection, make_job


class FakeCredential:
    def __init__(self):
        self.scopes = []

    def get_token(self, scope):
        self.scopes.append(scope)
        return SimpleNamespace(token="arm-token", expires_on=0)


class FakeCredentialProvider:
    def __init__(self):
        self.credential = FakeCredential()

    def get_credential(self, connection):
        return self.credential


class FakeRunner:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def run_module(self, module_code, payload):
        self.calls.append((module_code, payload))
        return self.rows


class FakeMetricsClient:
    def __init__(self, devices):
        self.devices = devices
        self.groups = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def list_group_devices(self, group_id):
        self.groups.append(group_id)
        return self.devices


class FakeMetricsFactory:
    def __init__(self, devices):
        self.client = FakeMetricsClient(devices)
        self.customers = []

    def create(self, customer_id):
        self.customers.append(customer_id)
        return self.client


@pytest.fixture
def job():
    return make_job(module_codes=["NETWORK"])


@pytest.fixture
def tenant(job):
    return make_connection(customer_id=job.customer_id, connection_id=job.connection_id)


class TestRunnerRowToFinding:

    def test_pascal_case_row(self):
        finding = runner_row_to_finding({
            "Severity": "Critical",
            "Category": "NSG Configuration",
            "ResourceId": "/subscriptions/s/nsg-1",
            "ResourceName": "nsg-1",
            "Detail": "Port 3389 open to the internet",
            "Recommendation": "Close it",
            "Subscription": "ignored",
        })
        assert finding.severity == Severity.HIGH
        assert finding.resource_id == "/subscriptions/s/nsg-1"
        assert finding.finding_text == "Port 3389 open to the internet"

    def test_camel_case_row(self):
        finding = runner_row_to_finding({"severity": "low", "findingText": "Tag missing", "resourceType": "VM"})
        assert finding.severity == Severity.LOW
        assert finding.resource_type == "VM"

    @pytest.mark.parametrize("row", [{}, {"Detail": ""}, {"Detail": "   ", "Severity": "high"}])
    def test_rows_without_text_are_not_findings(self, row):
        assert runner_row_to_finding(row) is None


class TestAuditRunnerModule:

    def test_collect(self, job, tenant):
        runner = FakeRunner([
            {"Severity": "high", "Detail": "Backup vault has no soft delete"},
            {"Severity": "info"},
            "not a row",
            {"Severity": "medium", "Detail": "Retention below 30 days"},
        ])
        provider = FakeCredentialProvider()
        context = ModuleContext(job=job, connection=tenant, credential_provider=provider, audit_runner=runner)

        findings = list(AuditRunnerModule("backup").collect(context))

        assert [f.finding_text for f in findings] == [
            "Backup vault has no soft delete",
            "Retention below 30 days",
        ]
        code, payload = runner.calls[0]
        assert code == "BACKUP"
        assert payload["accessToken"] == "arm-token"
        assert payload["tenantId"] == tenant.tenant_id
        assert payload["assessmentId"] == job.job_id
        assert "secret" not in " ".join(payload).lower()
        assert provider.credential.scopes == [ARM_SCOPE]

    def test_requires_runner(self, job, tenant):
        context = ModuleContext(job=job, connection=tenant, credential_provider=FakeCredentialProvider())
        with pytest.raises(ConfigurationError):
            list(AuditRunnerModule("NETWORK").collect(context))

    def test_requires_credential_provider(self, job, tenant):
        context = ModuleContext(job=job, connection=tenant, audit_runner=FakeRunner([]))
        with pytest.raises(ConfigurationError, match="KEY_VAULT_NAME"):
            list(AuditRunnerModule("NETWORK").collect(context))


class TestMonitoringAlertsModule:

    def test_dead_and_alerting_devices(self, job, tenant):
        factory = FakeMetricsFactory([
            {"id": 11, "displayName": "fw-01", "hostStatus": "dead", "alertStatus": "none"},
            {"id": 12, "displayName": "sql-01", "hostStatus": "normal", "alertStatus": "unconfirmed-error"},
            {"id": 13, "displayName": "web-01", "hostStatus": "normal", "alertStatus": "confirmed-warn"},
            {"id": 14, "displayName": "app-01", "hostStatus": "normal", "alertStatus": "none"},
            {"id": 15, "hostStatus": "dead-collector", "alertStatus": "critical"},
        ])
        context = ModuleContext(job=job, connection=tenant, metrics_factory=factory)

        findings = list(MonitoringAlertsModule().collect(context))

        summary = [(f.resource_id, f.severity, f.category) for f in findings]
        assert summary == [
            ("device:11", Severity.HIGH, "Monitoring Coverage"),
            ("device:12", Severity.MEDIUM, "Open Alerts"),
            ("device:13", Severity.LOW, "Open Alerts"),
            ("device:15", Severity.HIGH, "Monitoring Coverage"),
            ("device:15", Severity.HIGH, "Open Alerts"),
        ]
        assert findings[-1].resource_name == "15"
        assert factory.customers == [job.customer_id]
        assert factory.client.groups == [tenant.monitoring_group_id]

    def test_no_monitoring_group_yields_nothing(self, job):
        connection = make_connection(customer_id=job.customer_id, monitoring_group_id=None)
        context = ModuleContext(job=job, connection=connection)
        assert list(MonitoringAlertsModule().collect(context)) == []

    def test_requires_metrics_factory(self, job, tenant):
        context = ModuleContext(job=job, connection=tenant)
        with pytest.raises(ConfigurationError):
            list(MonitoringAlertsModule().collect(context))


class TestRegistry:

    def test_get_module_normalizes_code(self):
        assert get_module(" monitoring ") is ALL_MODULES["MONITORING"]

    def test_get_module_unknown(self):
        with pytest.raises(ResourceNotFoundError):
            get_module("FIREWALL")

    def test_registered_codes_match_module_codes(self):
        assert all(code == module.module_code for code, module in ALL_MODULES.items())
