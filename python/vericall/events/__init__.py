"""Monitoring event stream."""
from .auth import EventStreamAuth
from .publisher import CallEvent, EventPublisher

__all__ = ["CallEvent", "EventPublisher", "EventStreamAuth"]
