# ============================================================================
# WATCHDOG / SCHEDULER HTTP TRIGGERS
# ============================================================================
# STATUS: Trigger layer - manual maintenance endpoints
# PURPOSE: Run a watchdog sweep or a scheduled-assessment pass on demand
# EXPORTS: watchdog_run_handler, watchdog_status_handler, scheduler_run_handler
# DEPENDENCIES: services.watchdog_service, services.schedule_service
# ============================================================================
"""
Watchdog HTTP Triggers.

Exports:
    watchdog_run_handler: POST /api/watchdog/run
    watchdog_status_handler: GET /api/watchdog/status
    scheduler_run_handler: POST /api/scheduler/run
"""

import azure.functions as func
import json
from dataclasses import asdict
from datetime import datetime, timezone

from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "WatchdogHTTP")


def watchdog_run_handler(req: func.HttpRequest, service=None) -> func.HttpResponse:
    """
    Manually trigger a watchdog sweep.

    POST /api/watchdog/run

    Returns:
        JSON with sweep results
    """
    logger.info("Manual watchdog sweep requested")

    try:
        if service is None:
            from services import WatchdogService
            service = WatchdogService.create()

        result = service.run_sweep(trigger="http_manual")

        response = {
            "status": "success" if result.success else "failed",
            "summary": {
                "items_scanned": result.items_scanned,
                "items_fixed": result.items_fixed,
            },
            "result": result.to_dict(),
            "triggered_at": datetime.now(timezone.utc).isoformat(),
            "triggered_by": "http_manual"
        }

        logger.info(
            f"Manual watchdog sweep complete: scanned={result.items_scanned}, fixed={result.items_fixed}"
        )

        return func.HttpResponse(
            json.dumps(response, default=str),
            status_code=200 if result.success else 500,
            mimetype="application/json"
        )

    except Exception as e:
        logger.error(f"Manual watchdog sweep failed: {e}")
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": str(e),
                "error_type": "InternalError"
            }),
            status_code=500,
            mimetype="application/json"
        )


def watchdog_status_handler(req: func.HttpRequest) -> func.HttpResponse:
    """
    Current watchdog configuration.

    GET /api/watchdog/status
    """
    from services import WatchdogConfig

    return func.HttpResponse(
        json.dumps({
            "status": "success",
            "watchdog": asdict(WatchdogConfig.from_environment()),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }),
        status_code=200,
        mimetype="application/json"
    )


def scheduler_run_handler(req: func.HttpRequest, service=None) -> func.HttpResponse:
    """
    Manually run the scheduled-assessment planner.

    POST /api/scheduler/run
    """
    logger.info("Manual scheduler run requested")

    try:
        if service is None:
            from services import ScheduleService
            service = ScheduleService.create()

        result = service.run_due_assessments()
        return func.HttpResponse(
            json.dumps({
                "status": "success",
                "result": result.to_dict(),
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "triggered_by": "http_manual"
            }, default=str),
            status_code=200,
            mimetype="application/json"
        )

    except Exception as e:
        logger.error(f"Manual scheduler run failed: {e}")
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": str(e),
                "error_type": "InternalError"
            }),
            status_code=500,
            mimetype="application/json"
        )
