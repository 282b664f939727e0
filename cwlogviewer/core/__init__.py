"""Core functionality module for the CloudWatch log viewer."""

from .browse_session import BrowseSession
from .event_bus import EventBus, SessionEvent
from .event_fetcher import EventFetcher
from .exporter import Exporter
from .stream_merger import StreamMerger
from .tail_poller import TailPoller

__all__ = ['BrowseSession', 'EventBus', 'SessionEvent', 'EventFetcher', 'Exporter', 'StreamMerger', 'TailPoller']
