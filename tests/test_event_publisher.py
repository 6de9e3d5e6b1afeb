"""
Tests for Service Bus event publishing.

Verifies that fully approved purchase requests are published for the
PDF evidence generator, and that publishing is a no-op when disabled.
"""

import json
import os
from unittest.mock import Mock

import pytest

from purchase_approvals.core.config import Settings
from purchase_approvals.services.events.event_publisher import (
    EventPublisher,
    PurchaseRequestFullyApprovedEvent,
    create_event_publisher,
)


@pytest.fixture
def mock_service_bus_sender():
    return Mock()


@pytest.fixture
def event_publisher(mock_service_bus_sender):
    return EventPublisher(service_bus_sender=mock_service_bus_sender)


def make_event(request_id="pr-123"):
    return PurchaseRequestFullyApprovedEvent(
        purchase_request_id=request_id,
        title="Laptops",
        amount=100.0,
        requester_email="requester@x.com",
        signatures=[{"approver_email": "a@x.com", "signature_name": "Ann A"}],
    )


def test_fully_approved_event_structure():
    event = make_event()

    assert event.purchase_request_id == "pr-123"
    assert event.event_type == "PurchaseRequestFullyApproved"
    assert event.timestamp is not None
    assert "T" in event.timestamp  # ISO 8601


def test_event_serializes_to_json():
    data = json.loads(make_event().to_json())

    assert data["purchase_request_id"] == "pr-123"
    assert data["amount"] == 100.0
    assert data["signatures"][0]["signature_name"] == "Ann A"
    assert data["event_type"] == "PurchaseRequestFullyApproved"


def test_publish_fully_approved_event(event_publisher, mock_service_bus_sender):
    event_publisher.publish_fully_approved(make_event("pr-456"))

    assert mock_service_bus_sender.send_messages.called
    message = mock_service_bus_sender.send_messages.call_args[0][0]
    assert "pr-456" in str(message)
    assert "PurchaseRequestFullyApproved" in str(message)


def test_publish_with_null_service_bus_sender():
    publisher = EventPublisher(service_bus_sender=None)

    assert publisher.enabled is False
    # Should not raise an error
    publisher.publish_fully_approved(make_event())


def test_create_event_publisher_disabled_without_connection_string():
    settings = Settings(SERVICE_BUS_CONNECTION_STRING=None, SERVICE_BUS_QUEUE_NAME="approvals-q")

    publisher = create_event_publisher(settings)

    assert publisher.enabled is False
    assert publisher.entity_name == "approvals-q"


@pytest.mark.integration
def test_publish_to_real_service_bus_queue():
    """
    Publish to a real queue:
        SERVICE_BUS_CONNECTION_STRING=... pytest tests/test_event_publisher.py --run-integration
    """
    conn_str = os.getenv("SERVICE_BUS_CONNECTION_STRING")
    if not conn_str:
        pytest.skip("SERVICE_BUS_CONNECTION_STRING not set")

    from azure.servicebus import ServiceBusClient

    queue_name = os.getenv("SERVICE_BUS_QUEUE_NAME", "purchase-approval-events")
    with ServiceBusClient.from_connection_string(conn_str) as client:
        with client.get_queue_sender(queue_name=queue_name) as sender:
            publisher = EventPublisher(service_bus_sender=sender, entity_name=queue_name)
            publisher.publish_fully_approved(make_event("integration-test-001"))
