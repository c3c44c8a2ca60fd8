"""
Queue Message Schemas - Transport Boundary.

Message format for the Service Bus assessment work queue. A message only
references the job; the worker re-reads job and module state from the
database, so a duplicate or late delivery cannot replay stale state.

Exports:
    AssessmentQueueMessage: Work item for one job run
    QueueReason: Why the message was sent
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, Field, ConfigDict


class QueueReason(str, Enum):
    START = "start"
    REDRIVE = "redrive"
    FORCE_RESTART = "force_restart"
    REQUEUE = "requeue"


class AssessmentQueueMessage(BaseModel):
    """
    Assessment work item.

    correlation_id is a short id for filtering one delivery's log lines.
    """

    model_config = ConfigDict(use_enum_values=True)

    job_id: str = Field(..., min_length=1)
    customer_id: Optional[str] = Field(default=None)
    reason: QueueReason = Field(default=QueueReason.START)
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8], max_length=16)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ['AssessmentQueueMessage', 'QueueReason']
