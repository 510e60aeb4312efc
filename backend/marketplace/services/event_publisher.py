"""
Notification collaborator.

The reservation workflow emits events after a transition is flushed. Delivery
is best effort: a failing publisher is logged and never undoes the transition.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from marketplace.models.base import utcnow

logger = logging.getLogger(__name__)


class ReservationEventType(str, enum.Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_ACCEPTED = "reservation_accepted"
    RESERVATION_REJECTED = "reservation_rejected"
    RESERVATION_CANCELLED = "reservation_cancelled"
    DELIVERY_MARKED = "delivery_marked"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    PAYMENT_RECORDED = "payment_recorded"
    RESERVATION_COMPLETED = "reservation_completed"


@dataclass(frozen=True)
class ReservationEvent:
    event_type: ReservationEventType
    reservation_id: str
    listing_id: str
    recipient_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class EventPublisher(Protocol):
    def publish(self, event: ReservationEvent) -> None: ...


class LoggingEventPublisher:
    """Default sink: writes each event to the log for a downstream shipper."""

    def publish(self, event: ReservationEvent) -> None:
        logger.info(
            "Reservation event",
            extra={
                "event_type": event.event_type.value,
                "reservation_id": event.reservation_id,
                "listing_id": event.listing_id,
                "recipient_id": event.recipient_id,
                "payload": dict(event.payload),
            },
        )


class RecordingEventPublisher:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: List[ReservationEvent] = []

    def publish(self, event: ReservationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: ReservationEventType) -> List[ReservationEvent]:
        return [e for e in self.events if e.event_type == event_type]


def publish_safely(publisher: Optional[EventPublisher], event: ReservationEvent) -> bool:
    """
    Deliver an event, logging and absorbing any publisher failure.

    Returns:
        True if the publisher accepted the event
    """
    if publisher is None:
        return False
    try:
        publisher.publish(event)
        return True
    except Exception:
        logger.exception(
            "Failed to publish reservation event",
            extra={
                "event_type": event.event_type.value,
                "reservation_id": event.reservation_id,
            },
        )
        return False
