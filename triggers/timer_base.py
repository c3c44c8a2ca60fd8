# ============================================================================
# TIMER HANDLER BASE CLASS
# ============================================================================
# STATUS: Trigger layer - Base class for timer trigger handlers
# PURPOSE: Shared flow for the watchdog and scheduler timers
# EXPORTS: TimerHandlerBase
# ============================================================================
"""
Timer Handler Base Class.

Flow of handle():
    1. Past-due warning
    2. is_enabled() check (disabled timers return success without work)
    3. execute() with timing
    4. Result logging by health_status

Usage:
    class MyTimerHandler(TimerHandlerBase):
        name = "MyHandler"

        def execute(self) -> Dict[str, Any]:
            return {"success": True, "items_fixed": 0}

    my_handler = MyTimerHandler()

    @bp.timer_trigger(schedule="0 */5 * * * *", arg_name="timer", run_on_startup=False)
    def my_timer(timer: func.TimerRequest) -> None:
        my_handler.handle(timer)

Exports:
    TimerHandlerBase: Abstract base class for timer handlers
"""

import time
import traceback
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any

import azure.functions as func

from util_logger import LoggerFactory, ComponentType


class TimerHandlerBase(ABC):
    """
    Abstract base class for timer trigger handlers.

    Subclasses must:
    - Set `name` class attribute
    - Implement `execute()` returning a dict with a 'success' key

    health_status defaults to HEALTHY when nothing was fixed and
    ISSUES_DETECTED when items_fixed > 0.
    """

    name: str = "UnnamedTimer"

    def __init__(self):
        self._logger = None

    @property
    def logger(self):
        if self._logger is None:
            self._logger = LoggerFactory.create_logger(ComponentType.TRIGGER, self.name)
        return self._logger

    def is_enabled(self) -> bool:
        return True

    def handle(self, timer: func.TimerRequest) -> Dict[str, Any]:
        """
        Run one timer tick.

        Exceptions from execute() are logged and returned as a failure dict
        so the Functions host does not retry the tick.
        """
        if timer.past_due:
            self.logger.warning(f"⏰ {self.name}: Timer is past due - running immediately")

        self.logger.info(f"⏰ {self.name}: Triggered at {datetime.now(timezone.utc).isoformat()}")

        if not self.is_enabled():
            self.logger.info(f"⏸️ {self.name}: Disabled via configuration - skipping")
            return {"success": True, "skipped": True, "health_status": "DISABLED"}

        started = time.monotonic()
        try:
            result = self.execute()
        except Exception as e:
            self.logger.error(f"❌ {self.name}: Unhandled exception: {e}")
            self.logger.error(traceback.format_exc())
            return {
                "success": False,
                "error": str(e),
                "error_type": type(e).__name__,
            }

        result.setdefault("duration_seconds", round(time.monotonic() - started, 2))
        if result.get("success") and "health_status" not in result:
            result["health_status"] = "ISSUES_DETECTED" if result.get("items_fixed") else "HEALTHY"

        self._log_result(result)
        return result

    @abstractmethod
    def execute(self) -> Dict[str, Any]:
        """
        Do the timer's work.

        Returns:
            Dict with at least 'success' (bool). Optional: 'summary' (dict),
            'items_scanned', 'items_fixed', 'error', 'health_status'.
        """
        raise NotImplementedError("Subclass must implement execute()")

    def _log_result(self, result: Dict[str, Any]) -> None:
        duration = result.get("duration_seconds", 0)

        if not result.get("success", False):
            self.logger.error(f"❌ {self.name}: Failed - {result.get('error', 'Unknown error')}")
            return

        health_status = result.get("health_status", "UNKNOWN")
        summary_str = self._format_summary(result.get("summary", {}))

        if health_status == "HEALTHY":
            self.logger.info(f"✅ {self.name}: Complete - {health_status} ({duration}s){summary_str}")
        else:
            self.logger.warning(f"⚠️ {self.name}: Complete - {health_status} ({duration}s){summary_str}")

    @staticmethod
    def _format_summary(summary: Dict[str, Any]) -> str:
        parts = [
            f"{key}={value}" for key, value in summary.items()
            if isinstance(value, (int, float, str, bool))
        ]
        return " | " + ", ".join(parts) if parts else ""


__all__ = ['TimerHandlerBase']
