"""
Event bus module for the CloudWatch log viewer.

This module provides a small publish/subscribe system that carries session
notifications (warnings, newly appended or prepended events, tail state
changes) from the browse and tail layers to the UI and the CLI.
"""

import threading
from typing import Any, Callable, Dict, List, Union
from dataclasses import dataclass
from datetime import datetime
import logging


class SessionEvent:
    """Event types published by sessions and pollers."""
    WARNING = 'warning'
    EVENTS_APPENDED = 'events_appended'
    EVENTS_PREPENDED = 'events_prepended'
    SCOPE_CHANGED = 'scope_changed'
    TAIL_STATE = 'tail_state'


@dataclass
class Event:
    """
    Base event class for the event bus system.
    """
    type: str
    data: Any = None
    timestamp: datetime = None
    source: str = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class EventBus:
    """
    Thread-safe event bus for session notifications.

    Handlers run on the publishing thread; UI subscribers are expected to
    hand work over to their own thread.
    """

    def __init__(self):
        """Initialize the event bus."""
        self._handlers: Dict[str, List[Callable]] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: str, handler: Callable):
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to
            handler: Function to call when event is published
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed to event type: {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable):
        """
        Unsubscribe from an event type.

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler function to remove
        """
        with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                    self.logger.debug(f"Unsubscribed from event type: {event_type}")
                except ValueError:
                    pass  # Handler was not subscribed

    def publish(self, event: Union[Event, str], data: Any = None, source: str = None):
        """
        Publish an event to all subscribed handlers.

        A failing handler is logged and does not prevent the others from
        running.

        Args:
            event: Event object or event type string
            data: Data to include with the event (if event is a string)
            source: Source identifier for the event
        """
        if isinstance(event, str):
            event = Event(type=event, data=data, source=source)

        self.logger.debug(f"Publishing event: {event.type} from {event.source or 'unknown'}")

        with self._lock:
            handlers = list(self._handlers.get(event.type, []))

        # Execute handlers outside the lock to prevent deadlocks
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler for {event.type}: {str(e)}")

    def clear_subscribers(self, event_type: str = None):
        """
        Clear subscribers for a specific event type or all types.

        Args:
            event_type: Event type to clear, or None to clear all
        """
        with self._lock:
            if event_type:
                self._handlers.pop(event_type, None)
                self.logger.debug(f"Cleared subscribers for event type: {event_type}")
            else:
                self._handlers.clear()
                self.logger.debug("Cleared all subscribers")
