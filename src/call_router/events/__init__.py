"""Call lifecycle events"""

from .publisher import Event, EventPublisher, EventType

__all__ = ["Event", "EventPublisher", "EventType"]
