"""
Azure Service Bus event publishing for completed extractions.

Lets downstream systems react to processed documents:
- Bookkeeping storage can persist the record and new vendors
- Review queues can pick up records flagged for a human
- Analytics can monitor extraction quality over time
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Optional

from loguru import logger

from ...core.config import Settings


@dataclass
class ExtractionCompletedEvent:
    """
    Event published when a document has gone through the pipeline.

    Carries the record summary only; consumers that need the full record
    read it from the caller's storage.
    """

    tenant_id: str
    vendor_id: str
    vendor_name: str
    is_new_vendor: bool
    total_amount: Optional[float]
    currency: Optional[str]
    normalized_amount: Optional[float]
    needs_review: bool
    warnings: list[str] = field(default_factory=list)
    event_type: str = "ExtractionCompleted"
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class EventPublisher:
    """
    Publishes events to an Azure Service Bus queue or topic.

    Usage:
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="extraction-events")
        publisher = EventPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured)
        publisher = EventPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "extraction-events"
    ):
        """
        Args:
            service_bus_sender: Azure Service Bus sender (ServiceBusSender) or None to disable
            entity_name: Service Bus queue or topic name
        """
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish_extraction_completed(self, event: ExtractionCompletedEvent) -> None:
        """
        Publish an extraction event.

        If service_bus_sender is None, this is a no-op (disabled mode).
        """
        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(event.to_json(), content_type="application/json")
        self.service_bus_sender.send_messages(message)
        logger.debug("Published extraction event", entity=self.entity_name, tenant_id=event.tenant_id)


def create_event_publisher(settings: Settings) -> EventPublisher:
    """Publisher for SERVICE_BUS_CONNECTION_STRING, or a disabled one when it is unset"""
    if not settings.service_bus_connection_string:
        return EventPublisher(service_bus_sender=None, entity_name=settings.service_bus_entity_name)

    from azure.servicebus import ServiceBusClient

    client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
    sender = client.get_queue_sender(queue_name=settings.service_bus_entity_name)
    return EventPublisher(service_bus_sender=sender, entity_name=settings.service_bus_entity_name)
