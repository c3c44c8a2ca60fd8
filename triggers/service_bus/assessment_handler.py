# ============================================================================
# SERVICE BUS ASSESSMENT HANDLER
# ============================================================================
# STATUS: Trigger layer - assessment work queue processing
# PURPOSE: Handle messages from the assessment-jobs queue by running the job
# EXPORTS: handle_assessment_message
# DEPENDENCIES: services.assessment_orchestrator, core.schema.queue
# ============================================================================
"""
Assessment Queue Message Handler Module.

One message = one job run. The orchestrator claims the job, runs the
modules that are not yet terminal, then finalizes and reconciles.

Per-job errors are never re-raised: a Service Bus retry would re-deliver
the same job immediately, while the watchdog re-enqueues it after the
stale threshold with a bounded redrive count. The finally block records a
heartbeat for the job whatever the outcome.

Usage:
    @app.service_bus_queue_trigger(
        arg_name="msg",
        queue_name="assessment-jobs",
        connection="ServiceBusConnection"
    )
    def process_assessment_job(msg: func.ServiceBusMessage) -> None:
        handle_assessment_message(msg, get_orchestrator())
"""

import time
import traceback
import uuid
from typing import Any, Dict, Optional

import azure.functions as func

from core.schema.queue import AssessmentQueueMessage
from util_logger import LoggerFactory, ComponentType

from .error_handler import extract_job_id_from_raw_message, record_worker_heartbeat

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "AssessmentWorker")


def handle_assessment_message(
    msg: func.ServiceBusMessage,
    orchestrator: Any,
    worker_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Process an assessment work item from Service Bus.

    Args:
        msg: Service Bus message carrying an AssessmentQueueMessage
        orchestrator: AssessmentOrchestrator instance
        worker_id: Claim owner (defaults to one per delivery)

    Returns:
        Processing result dict with success status and job outcome
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    worker_id = worker_id or f"sb-{correlation_id}"
    job_id = None

    _log_message_received(msg, correlation_id)

    try:
        message_body = msg.get_body().decode('utf-8')
        job_id = extract_job_id_from_raw_message(message_body, correlation_id)

        message = AssessmentQueueMessage.model_validate_json(message_body)
        job_id = message.job_id
        correlation_id = message.correlation_id or correlation_id

        logger.info(
            f"[{correlation_id}] Running job {job_id} (reason={message.reason}, worker={worker_id})",
            extra={
                'checkpoint': 'ASSESSMENT_RUN_START',
                'correlation_id': correlation_id,
                'assessment_id': job_id,
                'customer_id': message.customer_id,
                'worker_id': worker_id,
                'reason': message.reason,
            }
        )

        job = orchestrator.run(job_id, worker_id=worker_id)

        elapsed = time.time() - start_time
        if job is None:
            logger.info(f"[{correlation_id}] Job {job_id} not claimed; delivery ignored ({elapsed:.3f}s)")
            return {
                "success": True,
                "claimed": False,
                "job_id": job_id,
                "correlation_id": correlation_id,
            }

        logger.info(
            f"[{correlation_id}] Job {job_id} processed in {elapsed:.3f}s: status={job.status.value}",
            extra={
                'checkpoint': 'ASSESSMENT_RUN_COMPLETE',
                'correlation_id': correlation_id,
                'assessment_id': job_id,
                'status': job.status.value,
                'duration_seconds': round(elapsed, 3),
            }
        )
        return {
            "success": True,
            "claimed": True,
            "job_id": job_id,
            "status": job.status.value,
            "correlation_id": correlation_id,
        }

    except Exception as e:
        return _handle_exception(e, job_id, correlation_id, start_time)

    finally:
        record_worker_heartbeat(orchestrator, job_id, correlation_id)


def _log_message_received(msg: func.ServiceBusMessage, correlation_id: str) -> None:
    """Log Service Bus message metadata immediately on receipt."""
    enqueued = getattr(msg, 'enqueued_time_utc', None)
    logger.info(
        f"[{correlation_id}] SERVICE BUS MESSAGE RECEIVED (assessment-jobs)",
        extra={
            'checkpoint': 'MESSAGE_RECEIVED',
            'correlation_id': correlation_id,
            'message_id': getattr(msg, 'message_id', None),
            'delivery_count': getattr(msg, 'delivery_count', None),
            'enqueued_time': enqueued.isoformat() if enqueued else None,
        }
    )


def _handle_exception(
    e: Exception,
    job_id: Optional[str],
    correlation_id: str,
    start_time: float
) -> Dict[str, Any]:
    """Log a failed delivery; the job is left for the watchdog."""
    elapsed = time.time() - start_time
    logger.error(f"[{correlation_id}] EXCEPTION in assessment worker after {elapsed:.3f}s")
    logger.error(f"[{correlation_id}] {type(e).__name__}: {e}")
    logger.error(f"[{correlation_id}] Full traceback:\n{traceback.format_exc()}")

    if job_id:
        logger.warning(f"[{correlation_id}] Job {job_id} left for watchdog recovery")
    else:
        logger.error(f"[{correlation_id}] No job_id available - message dropped")

    return {
        "success": False,
        "job_id": job_id,
        "error": str(e),
        "error_type": type(e).__name__,
        "correlation_id": correlation_id,
    }


__all__ = ['handle_assessment_message']
