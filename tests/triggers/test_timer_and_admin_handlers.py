"""
Timer handler and admin endpoint tests.
"""

import json
from datetime import timedelta
from types import SimpleNamespace

import azure.functions as func
import pytest

from core.models import ModuleFrequency, ScheduleTarget
from services.schedule_service import ScheduleService
from services.watchdog_service import WatchdogConfig, WatchdogService
from triggers.admin import (
    schema_deploy_handler,
    scheduler_run_handler,
    watchdog_run_handler,
    watchdog_status_handler,
)
from triggers.timers.handlers import SchedulerTimerHandler, WatchdogTimerHandler

TIMER = SimpleNamespace(past_due=False)


def _request(method="POST", params=None):
    return func.HttpRequest(method=method, url="/api/admin", params=params or {}, body=b"")


def _json(response):
    return json.loads(response.get_body())


@pytest.fixture
def watchdog(orchestrator, store, clock):
    return WatchdogService(orchestrator, store, config=WatchdogConfig(), clock=clock)


@pytest.fixture
def scheduler(orchestrator, store, clock):
    return ScheduleService(orchestrator, store, clock=clock)


def _stale_job(orchestrator, store, connection, clock):
    job = orchestrator.start(connection.customer_id, connection.connection_id, ["NETWORK"])
    store.claim_job(job.job_id, "worker-dead", clock() - timedelta(minutes=10), clock())
    clock.advance(minutes=15)
    return job


class TestWatchdogTimer:

    def test_healthy_tick(self, watchdog):
        result = WatchdogTimerHandler(watchdog).handle(TIMER)

        assert result["success"] is True
        assert result["health_status"] == "HEALTHY"
        assert result["summary"]["scanned"] == 0

    def test_tick_with_recovery(self, watchdog, orchestrator, store, connection, clock):
        _stale_job(orchestrator, store, connection, clock)

        result = WatchdogTimerHandler(watchdog).handle(SimpleNamespace(past_due=True))

        assert result["health_status"] == "ISSUES_DETECTED"
        assert result["summary"]["fixed"] == 1

    def test_disabled(self, orchestrator, store, clock):
        service = WatchdogService(orchestrator, store, config=WatchdogConfig(enabled=False), clock=clock)
        result = WatchdogTimerHandler(service).handle(TIMER)
        assert result["health_status"] == "DISABLED"


class TestSchedulerTimer:

    def test_starts_due_assessments(self, scheduler, store, connection, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "true")
        store.add_schedule_target(ScheduleTarget(
            customer_id=connection.customer_id,
            connection_id=connection.connection_id,
            module_code="NETWORK",
            frequency=ModuleFrequency.WEEKLY,
        ))

        result = SchedulerTimerHandler(scheduler).handle(TIMER)

        assert result["success"] is True
        assert result["summary"]["started"] == 1
        assert result["health_status"] == "HEALTHY"

    def test_disabled_by_environment(self, scheduler, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")
        assert SchedulerTimerHandler(scheduler).handle(TIMER)["health_status"] == "DISABLED"

    def test_failure_is_contained(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "true")

        class BrokenScheduler:
            def run_due_assessments(self):
                raise RuntimeError("portal database unreachable")

        result = SchedulerTimerHandler(BrokenScheduler()).handle(TIMER)

        assert result["success"] is False
        assert result["error_type"] == "RuntimeError"


class TestAdminEndpoints:

    def test_manual_watchdog_run(self, watchdog, orchestrator, store, connection, clock):
        _stale_job(orchestrator, store, connection, clock)

        response = watchdog_run_handler(_request(), service=watchdog)

        assert response.status_code == 200
        body = _json(response)
        assert body["summary"] == {"items_scanned": 1, "items_fixed": 1}
        assert body["result"]["trigger"] == "http_manual"
        assert store.list_watchdog_runs()[0].trigger == "http_manual"

    def test_watchdog_status(self, monkeypatch):
        monkeypatch.setenv("WATCHDOG_MAX_REDRIVES", "5")

        body = _json(watchdog_status_handler(_request("GET")))

        assert body["watchdog"]["max_redrives"] == 5
        assert body["watchdog"]["stale_threshold_minutes"] == 10

    def test_manual_scheduler_run(self, scheduler):
        response = scheduler_run_handler(_request(), service=scheduler)
        assert response.status_code == 200
        assert _json(response)["result"]["summary"] == {"started": 0, "skipped": 0}


class FakeDeployer:
    schema_name = "assessment"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def deploy(self, include_portal_tables=True):
        self.calls.append(include_portal_tables)
        if self.fail:
            raise RuntimeError("permission denied for schema assessment")
        return 12


class TestSchemaDeploy:

    def test_requires_confirmation(self):
        response = schema_deploy_handler(_request(), deployer=FakeDeployer())
        assert response.status_code == 400

    def test_requires_postgres_backend(self):
        response = schema_deploy_handler(_request(params={"confirm": "yes"}))
        assert response.status_code == 400
        assert "postgres" in _json(response)["error"]

    def test_deploys(self):
        deployer = FakeDeployer()

        response = schema_deploy_handler(_request(params={"confirm": "yes", "portal": "false"}), deployer=deployer)

        assert response.status_code == 200
        body = _json(response)
        assert body["statements_executed"] == 12
        assert body["portal_tables"] is False
        assert deployer.calls == [False]

    def test_failure(self):
        response = schema_deploy_handler(_request(params={"confirm": "yes"}), deployer=FakeDeployer(fail=True))
        assert response.status_code == 500
        assert _json(response)["error_type"] == "RuntimeError"
