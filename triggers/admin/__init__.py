"""
Admin Triggers Package.

Maintenance endpoints:
    POST /api/watchdog/run              manual watchdog sweep
    GET  /api/watchdog/status           watchdog configuration
    POST /api/scheduler/run             manual scheduled-assessment pass
    POST /api/admin/schema/deploy       assessment schema DDL

Exports:
    watchdog_run_handler, watchdog_status_handler, scheduler_run_handler,
    schema_deploy_handler
"""

from .admin_watchdog import (
    watchdog_run_handler,
    watchdog_status_handler,
    scheduler_run_handler,
)
from .admin_schema import schema_deploy_handler

__all__ = [
    'watchdog_run_handler',
    'watchdog_status_handler',
    'scheduler_run_handler',
    'schema_deploy_handler',
]
