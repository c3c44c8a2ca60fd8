# ============================================================================
# TIMER HANDLERS
# ============================================================================
# STATUS: Trigger layer - watchdog and scheduler timer handlers
# PURPOSE: Bind WatchdogService / ScheduleService to TimerHandlerBase
# EXPORTS: WatchdogTimerHandler, SchedulerTimerHandler + singletons
# DEPENDENCIES: services.watchdog_service, services.schedule_service
# ============================================================================
"""
Timer Handlers.

Services are built on first tick so importing the blueprint does not touch
the database or Service Bus.
"""

import os
from typing import Any, Dict

from config.defaults import SchedulerDefaults
from triggers.timer_base import TimerHandlerBase


class WatchdogTimerHandler(TimerHandlerBase):
    """Every 5 minutes: flag stale jobs stuck, re-enqueue or force-complete them."""

    name = "AssessmentWatchdog"

    def __init__(self, service=None):
        super().__init__()
        self._service = service

    @property
    def service(self):
        if self._service is None:
            from services import WatchdogService
            self._service = WatchdogService.create()
        return self._service

    def is_enabled(self) -> bool:
        return self.service.config.enabled

    def execute(self) -> Dict[str, Any]:
        result = self.service.run_sweep(trigger="timer")
        response = result.to_dict()
        response["summary"] = {
            "scanned": result.items_scanned,
            "fixed": result.items_fixed,
            "duration_ms": result.duration_ms,
        }
        return response


class SchedulerTimerHandler(TimerHandlerBase):
    """Daily: start scheduled assessments for due tier modules."""

    name = "AssessmentScheduler"

    def __init__(self, service=None):
        super().__init__()
        self._service = service

    @property
    def service(self):
        if self._service is None:
            from services import ScheduleService
            self._service = ScheduleService.create()
        return self._service

    def is_enabled(self) -> bool:
        default = "true" if SchedulerDefaults.ENABLED else "false"
        return os.environ.get("SCHEDULER_ENABLED", default).lower() == "true"

    def execute(self) -> Dict[str, Any]:
        result = self.service.run_due_assessments().to_dict()
        result["health_status"] = "HEALTHY" if not result["skipped"] else "ISSUES_DETECTED"
        return result


watchdog_timer_handler = WatchdogTimerHandler()
scheduler_timer_handler = SchedulerTimerHandler()


__all__ = [
    'WatchdogTimerHandler',
    'SchedulerTimerHandler',
    'watchdog_timer_handler',
    'scheduler_timer_handler',
]
