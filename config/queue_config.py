"""
Azure Service Bus Queue Configuration.

Provides configuration for:
    - Service Bus connection settings
    - Assessment work queue name
    - Retry and message TTL settings

Exports:
    QueueConfig: Pydantic queue configuration model
    QueueNames: Queue name constants
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import QueueDefaults


# ============================================================================
# QUEUE NAMES
# ============================================================================

class QueueNames:
    """Queue name constants for easy access."""
    ASSESSMENT_JOBS = QueueDefaults.ASSESSMENT_JOBS_QUEUE


# ============================================================================
# QUEUE CONFIGURATION
# ============================================================================

class QueueConfig(BaseModel):
    """
    Azure Service Bus queue configuration.

    Either connection_string (ServiceBusConnection) or namespace (managed
    identity via azure-identity) must be set when the postgres backend is used.
    """

    connection_string: Optional[str] = Field(
        default=None,
        repr=False,
        description="Service Bus connection string (ServiceBusConnection env var or Functions binding)"
    )

    namespace: Optional[str] = Field(
        default=None,
        description="Fully qualified Service Bus namespace for managed identity auth"
    )

    assessment_jobs_queue: str = Field(
        default=QueueDefaults.ASSESSMENT_JOBS_QUEUE,
        description="Queue carrying assessment work items (one message per job run)"
    )

    retry_count: int = Field(
        default=QueueDefaults.RETRY_COUNT,
        ge=0,
        le=10,
        description="Number of retry attempts for Service Bus send operations"
    )

    message_ttl_hours: int = Field(
        default=QueueDefaults.MESSAGE_TTL_HOURS,
        ge=1,
        description="Time-to-live for work item messages"
    )

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            connection_string=os.environ.get("ServiceBusConnection"),
            namespace=os.environ.get("SERVICE_BUS_NAMESPACE") or os.environ.get("ServiceBusConnection__fullyQualifiedNamespace"),
            assessment_jobs_queue=os.environ.get("SERVICE_BUS_ASSESSMENT_QUEUE", QueueDefaults.ASSESSMENT_JOBS_QUEUE),
            retry_count=int(os.environ.get("SERVICE_BUS_RETRY_COUNT", str(QueueDefaults.RETRY_COUNT))),
            message_ttl_hours=int(os.environ.get("SERVICE_BUS_MESSAGE_TTL_HOURS", str(QueueDefaults.MESSAGE_TTL_HOURS))),
        )
