# ============================================================================
# SERVICE BUS HANDLERS MODULE
# ============================================================================
# STATUS: Trigger layer - Service Bus message handling
# PURPOSE: Handler for the assessment-jobs queue trigger
# ============================================================================
"""
Service Bus Handlers Module.

Usage in function_app.py:
    from triggers.service_bus import handle_assessment_message

    @app.service_bus_queue_trigger(
        arg_name="msg",
        queue_name="assessment-jobs",
        connection="ServiceBusConnection"
    )
    def process_assessment_job(msg: func.ServiceBusMessage) -> None:
        handle_assessment_message(msg, get_orchestrator())

Exports:
    handle_assessment_message: Assessment queue handler
    extract_job_id_from_raw_message: Extract job_id from malformed message
    record_worker_heartbeat: Post-delivery heartbeat
"""

from .assessment_handler import handle_assessment_message
from .error_handler import (
    extract_job_id_from_raw_message,
    record_worker_heartbeat,
)

__all__ = [
    'handle_assessment_message',
    'extract_job_id_from_raw_message',
    'record_worker_heartbeat',
]
