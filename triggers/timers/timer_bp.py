# ============================================================================
# TIMER TRIGGERS BLUEPRINT
# ============================================================================
# STATUS: Trigger layer - Timer-based scheduled triggers
# PURPOSE: Azure Functions Blueprint with the engine's timer triggers
# ============================================================================
"""
Timer Triggers Blueprint.

Timer Schedule Overview:
    - assessment_watchdog: Every 5 minutes (stuck job recovery)
    - assessment_scheduler: Daily at 06:00 UTC (scheduled assessments)

Usage:
    from triggers.timers import timer_bp
    app.register_functions(timer_bp)
"""

import azure.functions as func

from config.defaults import SchedulerDefaults, WatchdogDefaults
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "TimerBlueprint")

bp = func.Blueprint()


# ============================================================================
# WATCHDOG
# ============================================================================
# Configuration via environment variables:
# - WATCHDOG_ENABLED: true/false (default: true)
# - WATCHDOG_STALE_THRESHOLD_MINUTES: 10
# - WATCHDOG_QUEUED_TIMEOUT_MINUTES: 15
# - WATCHDOG_MAX_REDRIVES: 3
# - WATCHDOG_AUTO_REDRIVE: true/false (default: true)
# ============================================================================

@bp.timer_trigger(
    schedule=WatchdogDefaults.TIMER_SCHEDULE,
    arg_name="timer",
    run_on_startup=False
)
def assessment_watchdog(timer: func.TimerRequest) -> None:
    """
    Recover assessments whose heartbeat stopped.

    Running jobs silent for longer than the stale threshold are flagged
    stuck and re-enqueued (completed modules are not re-run). After
    WATCHDOG_MAX_REDRIVES they are force-completed as failed. Queued jobs
    that never started are re-enqueued.
    """
    from triggers.timers.handlers import watchdog_timer_handler
    watchdog_timer_handler.handle(timer)


# ============================================================================
# SCHEDULER
# ============================================================================

@bp.timer_trigger(
    schedule=SchedulerDefaults.TIMER_SCHEDULE,
    arg_name="timer",
    run_on_startup=False
)
def assessment_scheduler(timer: func.TimerRequest) -> None:
    """
    Start one scheduled assessment per connection with due tier modules.

    Disable with SCHEDULER_ENABLED=false.
    """
    from triggers.timers.handlers import scheduler_timer_handler
    scheduler_timer_handler.handle(timer)
