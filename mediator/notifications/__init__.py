"""Bucket notification listeners and event handlers."""

from .dispatcher import ListenerRegistry, NotificationDispatcher, NotificationEvent, parse_notification
from .handlers import CallbackHandler, IngestionHandler, build_event_handler

__all__ = [
    "ListenerRegistry",
    "NotificationDispatcher",
    "NotificationEvent",
    "parse_notification",
    "CallbackHandler",
    "IngestionHandler",
    "build_event_handler",
]
