"""
Tests for Service Bus event publishing.

Verifies that extraction events are published to Azure Service Bus for
downstream storage, review queues and quality monitoring.
"""

import json
from unittest.mock import Mock

import pytest

from ledgerscan.services.events.event_publisher import (
    EventPublisher,
    ExtractionCompletedEvent,
    create_event_publisher,
)


@pytest.fixture
def mock_service_bus_sender():
    """Create a mock Service Bus sender matching Azure SDK interface"""
    return Mock()


@pytest.fixture
def event_publisher(mock_service_bus_sender):
    """Create EventPublisher with mocked Service Bus sender"""
    return EventPublisher(service_bus_sender=mock_service_bus_sender)


def make_event(**overrides) -> ExtractionCompletedEvent:
    values = dict(
        tenant_id="tenant-1",
        vendor_id="v-1",
        vendor_name="Acme Corp",
        is_new_vendor=False,
        total_amount=123.45,
        currency="USD",
        normalized_amount=450.6,
        needs_review=False,
    )
    values.update(overrides)
    return ExtractionCompletedEvent(**values)


def test_extraction_completed_event_structure():
    """Test that ExtractionCompletedEvent has correct structure"""
    event = make_event(warnings=["Low confidence in: currency"])

    assert event.tenant_id == "tenant-1"
    assert event.vendor_name == "Acme Corp"
    assert event.total_amount == 123.45
    assert event.needs_review is False
    assert event.warnings == ["Low confidence in: currency"]
    assert event.event_type == "ExtractionCompleted"
    assert event.timestamp is not None


def test_publish_extraction_completed_event(event_publisher, mock_service_bus_sender):
    """Test publishing an extraction event"""
    event_publisher.publish_extraction_completed(make_event(tenant_id="tenant-456", vendor_name="Test Vendor"))

    assert mock_service_bus_sender.send_messages.called
    message = mock_service_bus_sender.send_messages.call_args[0][0]
    assert "tenant-456" in str(message)
    assert "Test Vendor" in str(message)
    assert "ExtractionCompleted" in str(message)


def test_publish_multiple_events(event_publisher, mock_service_bus_sender):
    """Test publishing multiple events in sequence"""
    event_publisher.publish_extraction_completed(make_event(vendor_id="v-1"))
    event_publisher.publish_extraction_completed(make_event(vendor_id="v-2", needs_review=True))

    assert mock_service_bus_sender.send_messages.call_count == 2


def test_publish_with_null_service_bus_sender():
    """Test that publisher gracefully handles None sender (disabled mode)"""
    publisher = EventPublisher(service_bus_sender=None)

    assert publisher.enabled is False
    # Should not raise an error
    publisher.publish_extraction_completed(make_event())


def test_sender_errors_propagate(mock_service_bus_sender):
    """The pipeline decides how to handle send failures"""
    mock_service_bus_sender.send_messages.side_effect = RuntimeError("link detached")
    publisher = EventPublisher(service_bus_sender=mock_service_bus_sender)

    with pytest.raises(RuntimeError):
        publisher.publish_extraction_completed(make_event())


def test_event_serializes_to_json():
    """Test that event can be serialized to JSON for Service Bus"""
    event = make_event(vendor_name="סופר פארם", total_amount=None, normalized_amount=None)

    data = json.loads(event.to_json())

    assert data["vendor_name"] == "סופר פארם"
    assert data["total_amount"] is None
    assert data["is_new_vendor"] is False
    assert data["event_type"] == "ExtractionCompleted"
    assert "סופר פארם" in event.to_json()


def test_event_includes_metadata():
    """Test that event includes useful metadata for consumers"""
    data = make_event().to_dict()

    # Should include metadata for routing/filtering
    assert "event_type" in data
    assert "timestamp" in data
    assert "tenant_id" in data

    # Timestamp should be ISO format
    assert "T" in data["timestamp"]


def test_explicit_timestamp_kept():
    assert make_event(timestamp="2024-01-15T10:00:00+00:00").timestamp == "2024-01-15T10:00:00+00:00"


def test_publisher_can_use_entity_name():
    """Test that publisher can be configured with entity name (queue or topic)"""
    publisher = EventPublisher(service_bus_sender=Mock(), entity_name="receipt-events")

    assert publisher.entity_name == "receipt-events"
    assert publisher.enabled is True


def test_create_event_publisher_disabled_without_connection_string(test_settings):
    publisher = create_event_publisher(test_settings)

    assert publisher.enabled is False
    assert publisher.entity_name == "extraction-events"
