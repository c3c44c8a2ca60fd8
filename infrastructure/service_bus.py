# ============================================================================
# SERVICE BUS REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Azure Service Bus work queue
# PURPOSE: Send assessment work items (start, redrive, force restart)
# EXPORTS: ServiceBusRepository, get_service_bus_repository
# INTERFACES: IQueueRepository
# DEPENDENCIES: azure-servicebus, azure-identity
# ============================================================================

"""
Service Bus Repository Implementation

Sends one JSON message per assessment run to the assessment-jobs queue.
Delivery is at-least-once; the worker's claim on the job row makes a
duplicate delivery harmless.

Key Features:
- Connection string (local development) or DefaultAzureCredential
- Sender reuse per queue
- Retry with exponential backoff
- job_id copied into application properties for portal-side tracing
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
import threading
import time

from azure.servicebus import ServiceBusClient, ServiceBusMessage, ServiceBusSender
from azure.servicebus.exceptions import ServiceBusError as AzureServiceBusError
from azure.identity import DefaultAzureCredential
from pydantic import BaseModel

from config import get_config
from exceptions import ServiceBusError
from util_logger import LoggerFactory, ComponentType
from .interface_repository import IQueueRepository

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "ServiceBusRepository")


class ServiceBusRepository(IQueueRepository):
    """
    Thread-safe singleton Service Bus repository.

    Configuration (QueueConfig):
    - ServiceBusConnection: connection string (optional)
    - SERVICE_BUS_NAMESPACE: namespace for managed identity auth
    - SERVICE_BUS_RETRY_COUNT: send attempts
    - SERVICE_BUS_MESSAGE_TTL_HOURS: message time-to-live
    """

    _instance: Optional['ServiceBusRepository'] = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, '_initialized'):
            return

        queue_config = get_config().queues
        logger.info("🚌 Initializing ServiceBusRepository")

        if queue_config.connection_string:
            logger.info("🔑 Using connection string authentication")
            self.client = ServiceBusClient.from_connection_string(queue_config.connection_string)
        else:
            if not queue_config.namespace:
                raise ServiceBusError(
                    "Service Bus not configured: set ServiceBusConnection or "
                    "ServiceBusConnection__fullyQualifiedNamespace"
                )
            logger.info(f"🔐 Using DefaultAzureCredential for namespace {queue_config.namespace}")
            self.client = ServiceBusClient(
                fully_qualified_namespace=queue_config.namespace,
                credential=DefaultAzureCredential()
            )

        self.max_retries = max(1, queue_config.retry_count)
        self.retry_delay = 1
        self.message_ttl = timedelta(hours=queue_config.message_ttl_hours)
        self._senders: Dict[str, ServiceBusSender] = {}
        self._sender_lock = threading.Lock()
        self._initialized = True
        logger.info("✅ ServiceBusRepository initialized")

    @classmethod
    def instance(cls) -> 'ServiceBusRepository':
        return cls()

    def _get_sender(self, queue_name: str) -> ServiceBusSender:
        with self._sender_lock:
            if queue_name not in self._senders:
                logger.debug(f"🚌 Creating sender for queue: {queue_name}")
                self._senders[queue_name] = self.client.get_queue_sender(queue_name)
            return self._senders[queue_name]

    def send_message(self, queue_name: str, message: BaseModel) -> str:
        """
        Send a single message to Service Bus.

        Args:
            queue_name: Target queue name
            message: Pydantic model to send as JSON

        Returns:
            Message ID

        Raises:
            ServiceBusError: After all retry attempts fail
        """
        sb_message = ServiceBusMessage(
            body=message.model_dump_json(),
            content_type="application/json",
            time_to_live=self.message_ttl,
            application_properties={}
        )
        if hasattr(message, 'job_id'):
            sb_message.application_properties['job_id'] = message.job_id
        if hasattr(message, 'reason'):
            sb_message.application_properties['reason'] = str(getattr(message.reason, 'value', message.reason))

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                self._get_sender(queue_name).send_messages(sb_message)
                message_id = sb_message.message_id or f"sb_{datetime.now(timezone.utc).timestamp()}"
                logger.info(f"✅ Message sent to {queue_name}. ID: {message_id}")
                return message_id
            except AzureServiceBusError as e:
                last_error = e
                logger.warning(
                    f"⚠️ Send attempt {attempt + 1}/{self.max_retries} to {queue_name} failed: "
                    f"{type(e).__name__}: {e}"
                )
                with self._sender_lock:
                    self._senders.pop(queue_name, None)
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay * (2 ** attempt))

        logger.error(f"❌ Failed to send message to {queue_name} after {self.max_retries} attempts")
        raise ServiceBusError(f"Failed to send message to {queue_name}: {last_error}") from last_error

    def close(self) -> None:
        with self._sender_lock:
            for sender in self._senders.values():
                sender.close()
            self._senders.clear()
        self.client.close()


def get_service_bus_repository() -> ServiceBusRepository:
    """Get ServiceBusRepository singleton instance."""
    return ServiceBusRepository.instance()


__all__ = ['ServiceBusRepository', 'get_service_bus_repository']
