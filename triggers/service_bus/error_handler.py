# ============================================================================
# SERVICE BUS ERROR HANDLER
# ============================================================================
# STATUS: Trigger layer - Queue error handling utilities
# PURPOSE: Identify the job behind a bad delivery and keep its heartbeat fresh
# EXPORTS: extract_job_id_from_raw_message, record_worker_heartbeat
# ============================================================================
"""
Service Bus Error Handler Module.

A failing delivery does not mark its job failed: infrastructure errors are
recovered by the watchdog, which re-enqueues the job a bounded number of
times before force-completing it.

Usage:
    job_id = extract_job_id_from_raw_message(message_body, correlation_id)
    record_worker_heartbeat(orchestrator, job_id, correlation_id)
"""

import json
import re
from datetime import datetime, timezone
from typing import Optional

from exceptions import DatabaseError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "QueueErrorHandler")

_JOB_ID_PATTERN = re.compile(r'"job_id"\s*:\s*"([^"]+)"')


def extract_job_id_from_raw_message(
    message_content: str,
    correlation_id: str = "unknown"
) -> Optional[str]:
    """
    Try to extract job_id from a potentially malformed message.

    JSON parsing first, regex as fallback.
    """
    try:
        data = json.loads(message_content)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict) and data.get('job_id'):
        job_id = str(data['job_id'])
        logger.info(f"[{correlation_id}] Extracted job_id via JSON: {job_id}")
        return job_id

    match = _JOB_ID_PATTERN.search(message_content or "")
    if match:
        job_id = match.group(1)
        logger.info(f"[{correlation_id}] Extracted job_id via regex: {job_id}")
        return job_id

    logger.warning(f"[{correlation_id}] Could not extract job_id from message")
    return None


def record_worker_heartbeat(
    orchestrator,
    job_id: Optional[str],
    correlation_id: str = "unknown"
) -> bool:
    """
    Record progress for job_id after a delivery, whatever its outcome.

    Only running jobs are touched. A database failure here is logged; the
    watchdog handles a job whose heartbeat could not be written.
    """
    if not job_id:
        return False
    try:
        touched = orchestrator.assessment_repo.record_progress(job_id, datetime.now(timezone.utc))
    except DatabaseError as e:
        logger.error(f"[{correlation_id}] Heartbeat for {job_id} failed: {e}")
        return False
    if touched:
        logger.debug(f"[{correlation_id}] Heartbeat recorded for {job_id}")
    return touched


__all__ = [
    'extract_job_id_from_raw_message',
    'record_worker_heartbeat',
]
