"""
Azure Service Bus event publishing for purchase approval events.

Enables downstream systems to react to approval outcomes:
- The PDF evidence generator picks up fully approved requests
- Audit systems can track completed approvals
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, UTC
from typing import Optional

from loguru import logger

from ...core.config import Settings


@dataclass
class PurchaseRequestFullyApprovedEvent:
    """
    Event published when all three approvers have signed a purchase request.

    Carries what the PDF evidence generator needs to render the document
    without reading the store.
    """

    purchase_request_id: str
    title: str
    amount: float
    requester_email: str
    signatures: list[dict] = field(default_factory=list)
    event_type: str = "PurchaseRequestFullyApproved"
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventPublisher:
    """
    Publishes events to an Azure Service Bus queue.

    Usage:
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="purchase-approval-events")
        publisher = EventPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured)
        publisher = EventPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "purchase-approval-events"
    ):
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish_fully_approved(self, event: PurchaseRequestFullyApprovedEvent) -> None:
        """
        Publish a fully-approved event to Service Bus.

        If service_bus_sender is None, this is a no-op (disabled mode).
        """
        if self.service_bus_sender is None:
            logger.debug(
                "Event publishing disabled, skipping",
                event_type=event.event_type,
                purchase_request_id=event.purchase_request_id,
            )
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(event.to_json(), content_type="application/json")
        self.service_bus_sender.send_messages(message)
        logger.info(
            "Published event",
            event_type=event.event_type,
            purchase_request_id=event.purchase_request_id,
            entity=self.entity_name,
        )


def create_event_publisher(settings: Settings) -> EventPublisher:
    """
    Build a publisher from settings.

    Returns a disabled publisher when SERVICE_BUS_CONNECTION_STRING is unset.
    """
    if not settings.service_bus_connection_string:
        return EventPublisher(service_bus_sender=None, entity_name=settings.service_bus_queue_name)

    from azure.servicebus import ServiceBusClient

    client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
    sender = client.get_queue_sender(queue_name=settings.service_bus_queue_name)
    return EventPublisher(service_bus_sender=sender, entity_name=settings.service_bus_queue_name)
