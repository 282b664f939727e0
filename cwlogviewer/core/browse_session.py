"""
Browse session module for the CloudWatch log viewer.

A BrowseSession owns the view state of one scope: the resolved streams, the
materialised window of events (oldest first), the per-stream cursors for
reading older and newer pages, and the newest position seen in each stream.
All state changes go through one re-entrant lock, so the UI thread and
background loaders can share a session.
"""

import logging
import threading
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from ..config.config import FetchConfig, RetryConfig
from .errors import GroupNotFound, RetryBudgetExceeded, ScopeError
from .event_bus import EventBus, SessionEvent
from .event_fetcher import EventFetcher
from .models import Direction, FetchCursor, LogEvent, LogStream, ScopeEntry
from .rate_limiter import BackoffPolicy, Cancelled, call_with_retry
from .stream_merger import StreamMerger, iter_merge, merge_batches
from .tail_poller import TailWatermark


class BrowseSession:
    """
    Interactive browsing state over a set of log streams.

    The first ``load_older()`` returns the most recent events; each further
    call walks back one step, fetching only streams whose buffered events
    have all been shown.
    """

    def __init__(self, fetcher: EventFetcher, scope: Sequence[ScopeEntry],
                 fetch_config: Optional[FetchConfig] = None,
                 retry_config: Optional[RetryConfig] = None,
                 event_bus: Optional[EventBus] = None):
        """
        Initialize the browse session.

        Args:
            fetcher: Event fetcher bound to the session client and limiter
            scope: Log groups (and optional stream prefixes) to browse
            fetch_config: Page size and stream limits
            retry_config: Retry budget for transient failures
            event_bus: Optional bus for warnings and window updates
        """
        self.fetcher = fetcher
        self.fetch_config = fetch_config or FetchConfig()
        self.retry_config = retry_config or RetryConfig()
        self.policy = BackoffPolicy(base_delay=self.retry_config.base_delay,
                                    max_delay=self.retry_config.max_delay,
                                    max_attempts=self.retry_config.max_attempts)
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()

        self.scope: List[ScopeEntry] = list(scope)
        self._reset()

    def _reset(self) -> None:
        self.window: List[LogEvent] = []
        self.streams: List[LogStream] = []
        self.warnings: List[str] = []
        self.resolved = False
        self._streams_by_id: Dict[str, LogStream] = {}
        self._emitted: Set[Tuple[str, str]] = set()
        self._backward = StreamMerger(reverse=True, emitted=self._emitted)
        self._older_cursors: Dict[str, FetchCursor] = {}
        self._newer_cursors: Dict[str, FetchCursor] = {}
        self._newest: Dict[str, TailWatermark] = {}

    def _warn(self, message: str) -> None:
        self.logger.warning(message)
        self.warnings.append(message)
        if self.event_bus:
            self.event_bus.publish(SessionEvent.WARNING, message, source='browse')

    @property
    def at_beginning(self) -> bool:
        """True once every stream's history has been fully shown."""
        # Read without the lock so the UI thread never waits on a running load.
        return self.resolved and self._backward.finished

    def resolve(self, cancel_event: Optional[threading.Event] = None) -> List[LogStream]:
        """
        Resolve the scope into the streams to browse.

        Missing log groups are dropped with a warning.

        Raises:
            ScopeError: If no stream can be resolved at all
            AccessDenied: On authorization failures
        """
        with self._lock:
            streams: List[LogStream] = []
            for entry in self.scope:
                try:
                    streams.extend(call_with_retry(
                        lambda: self.fetcher.list_streams(entry, self.fetch_config.max_streams, cancel_event),
                        self.fetcher.limiter, self.policy, cancel_event))
                except GroupNotFound:
                    self._warn(f"Log group not found: {entry.log_group_name}")
                except RetryBudgetExceeded as e:
                    self._warn(f"Could not list streams of {entry.log_group_name}: {e}")

            if not streams:
                groups = ', '.join(entry.log_group_name for entry in self.scope) or '(empty scope)'
                raise ScopeError(f"No readable log streams in {groups}")

            self.streams = streams
            self._streams_by_id = {stream.stream_id: stream for stream in streams}
            for stream in streams:
                self._backward.add_stream(stream.stream_id)
            self.resolved = True
            self.logger.info(f"Browsing {len(streams)} streams across {len(self.scope)} log groups")
            return streams

    def open(self, cancel_event: Optional[threading.Event] = None) -> List[LogEvent]:
        """Resolve the scope and load the most recent events."""
        with self._lock:
            if not self.resolved:
                self.resolve(cancel_event)
            return self.load_older(cancel_event)

    def _fetch(self, stream: LogStream, cursor: Optional[FetchCursor], direction: Direction,
               cancel_event: Optional[threading.Event], **kwargs):
        return call_with_retry(
            lambda: self.fetcher.fetch(stream, cursor, direction, self.fetch_config.page_size,
                                       cancel_event=cancel_event, **kwargs),
            self.fetcher.limiter, self.policy, cancel_event)

    def _note_newest(self, stream_id: str, events: List[LogEvent]) -> None:
        if not events:
            return
        watermark = self._newest.get(stream_id)
        if watermark is None:
            watermark = self._newest[stream_id] = TailWatermark(events[-1].timestamp)
        for event in events:
            if event.timestamp >= watermark.timestamp:
                watermark.record(event)

    def load_older(self, cancel_event: Optional[threading.Event] = None) -> List[LogEvent]:
        """
        Load the next older chunk of merged events and prepend it to the window.

        Returns:
            The prepended events in ascending order; empty when history is
            exhausted, when cancelled, or when fetching failed past the retry
            budget (a warning is recorded in that case)
        """
        with self._lock:
            if not self.resolved:
                self.resolve(cancel_event)

            collected: List[LogEvent] = []
            pages = 0
            while True:
                drained = self._backward.drain()
                if drained:
                    collected.extend(drained)
                    break

                blocked = self._backward.needs_fetch()
                if not blocked or pages >= self.fetch_config.max_pages_per_load:
                    break

                if not self._fetch_older(blocked, cancel_event):
                    break
                pages += len(blocked)

            chunk = list(reversed(collected))
            if chunk:
                self.window[:0] = chunk
                self.logger.debug(f"Prepended {len(chunk)} events")
                if self.event_bus:
                    self.event_bus.publish(SessionEvent.EVENTS_PREPENDED, chunk, source='browse')
            return chunk

    def _fetch_older(self, stream_ids: List[str], cancel_event: Optional[threading.Event]) -> bool:
        """Fetch one older page for each blocked stream. Returns False to stop loading."""
        for stream_id in stream_ids:
            if cancel_event is not None and cancel_event.is_set():
                return False
            stream = self._streams_by_id[stream_id]
            cursor = self._older_cursors.get(stream_id)
            try:
                page = self._fetch(stream, cursor, Direction.OLDER, cancel_event)
            except GroupNotFound:
                self._warn(f"Stream no longer available: {stream_id}")
                self._backward.mark_exhausted(stream_id)
                continue
            except RetryBudgetExceeded as e:
                self._warn(f"Could not load older events from {stream_id}: {e}")
                return False
            except Cancelled:
                return False

            if cursor is None:
                # First page of the stream: remember where "newer" continues.
                if page.reverse_cursor is not None:
                    self._newer_cursors[stream_id] = page.reverse_cursor
                self._note_newest(stream_id, page.events)
            if page.next_cursor is not None:
                self._older_cursors[stream_id] = page.next_cursor
            self._backward.feed(stream_id, page.events, exhausted=page.next_cursor is None)
        return True

    def load_newest(self, cancel_event: Optional[threading.Event] = None) -> List[LogEvent]:
        """
        Load events that arrived after the newest page of each stream and
        append them to the window.

        Returns:
            The appended events in ascending order
        """
        with self._lock:
            if not self.resolved:
                return self.open(cancel_event)

            batches: Dict[str, List[LogEvent]] = {}
            for stream in self.streams:
                if cancel_event is not None and cancel_event.is_set():
                    break
                events = self._read_newer(stream, cancel_event)
                if events:
                    batches[stream.stream_id] = events

            appended = merge_batches(batches, emitted=self._emitted)
            if appended:
                self.window.extend(appended)
                self.logger.debug(f"Appended {len(appended)} events")
                if self.event_bus:
                    self.event_bus.publish(SessionEvent.EVENTS_APPENDED, appended, source='browse')
            return appended

    def _read_newer(self, stream: LogStream, cancel_event: Optional[threading.Event]) -> List[LogEvent]:
        stream_id = stream.stream_id
        cursor = self._newer_cursors.get(stream_id)
        start_time = None
        if cursor is None:
            if stream_id not in self._newest:
                # Never loaded; load_older will pick it up.
                return []
            start_time = self._newest[stream_id].timestamp

        events: List[LogEvent] = []
        for _ in range(self.fetch_config.max_pages_per_load):
            if cancel_event is not None and cancel_event.is_set():
                break
            try:
                page = self._fetch(stream, cursor, Direction.NEWER, cancel_event,
                                   start_time=start_time if cursor is None else None)
            except GroupNotFound:
                self._warn(f"Stream no longer available: {stream_id}")
                break
            except RetryBudgetExceeded as e:
                self._warn(f"Could not load newer events from {stream_id}: {e}")
                break
            except Cancelled:
                break
            events.extend(page.events)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
            self._newer_cursors[stream_id] = cursor

        self._note_newest(stream_id, events)
        return events

    def absorb(self, events: Sequence[LogEvent], blocking: bool = True) -> Optional[List[LogEvent]]:
        """
        Append events delivered by a TailPoller to the window.

        Events the session already holds are skipped, and the newest position
        of each stream moves forward so a later ``load_newest()`` does not
        repeat them.

        Args:
            events: Merged tail delta
            blocking: When False, give up instead of waiting for a running load

        Returns:
            The events actually appended, or None if the session was busy
        """
        if not self._lock.acquire(blocking=blocking):
            return None
        try:
            fresh = [event for event in events if event.key not in self._emitted]
            if not fresh:
                return []
            by_stream: Dict[str, List[LogEvent]] = {}
            for event in fresh:
                self._emitted.add(event.key)
                by_stream.setdefault(event.stream_id, []).append(event)
            for stream_id, stream_events in by_stream.items():
                self._note_newest(stream_id, stream_events)
            self.window.extend(fresh)
            if self.event_bus:
                self.event_bus.publish(SessionEvent.EVENTS_APPENDED, fresh, source='tail')
            return fresh
        finally:
            self._lock.release()

    def load_recent(self, count: int, cancel_event: Optional[threading.Event] = None) -> List[LogEvent]:
        """
        Load until the window holds ``count`` events or history runs out.

        Returns:
            The newest ``count`` events of the window, oldest first
        """
        with self._lock:
            if not self.resolved:
                self.resolve(cancel_event)
            while len(self.window) < count and not self._backward.finished:
                if cancel_event is not None and cancel_event.is_set():
                    break
                if not self.load_older(cancel_event):
                    break
            return self.window[-count:] if count > 0 else []

    def iter_range(self, start_time: int, end_time: int,
                   cancel_event: Optional[threading.Event] = None) -> Iterator[LogEvent]:
        """
        Stream every event in ``[start_time, end_time)`` in merge order.

        The scope is resolved up front, so scope errors are raised before the
        first event is produced. Pages are read lazily with retries; a stream
        that disappears or keeps failing is dropped with a warning and the
        other streams are still read to the end. The window is not touched.

        Raises:
            ScopeError: If no stream can be resolved at all
            AccessDenied: On authorization failures
        """
        with self._lock:
            streams = self.streams if self.resolved else self.resolve(cancel_event)
        sources = {stream.stream_id: self._range_pages(stream, start_time, end_time, cancel_event)
                   for stream in streams}
        return iter_merge(sources)

    def _range_pages(self, stream: LogStream, start_time: int, end_time: int,
                     cancel_event: Optional[threading.Event]) -> Iterator[List[LogEvent]]:
        try:
            yield from self.fetcher.iter_pages(stream, start_time, end_time,
                                               self.fetch_config.page_size,
                                               cancel_event=cancel_event, policy=self.policy)
        except GroupNotFound:
            self._warn(f"Stream no longer available: {stream.stream_id}")
        except RetryBudgetExceeded as e:
            self._warn(f"Could not read {stream.stream_id}: {e}")
        except Cancelled:
            return

    def switch_scope(self, scope: Sequence[ScopeEntry],
                     cancel_event: Optional[threading.Event] = None) -> List[LogEvent]:
        """
        Replace the scope, discarding every cursor and watermark, and load
        the most recent events of the new scope.
        """
        with self._lock:
            self.scope = list(scope)
            self._reset()
            self.logger.info(f"Switched scope to {', '.join(e.log_group_name for e in self.scope)}")
            if self.event_bus:
                self.event_bus.publish(SessionEvent.SCOPE_CHANGED, self.scope, source='browse')
            return self.open(cancel_event)

    def tail_watermarks(self) -> Dict[str, TailWatermark]:
        """
        Per-stream positions from which a TailPoller can resume without
        repeating events this session already fetched.
        """
        with self._lock:
            return {stream_id: TailWatermark(watermark.timestamp, dict(watermark.recent_ids))
                    for stream_id, watermark in self._newest.items()}

    def tail_start_time(self) -> Optional[int]:
        """Newest timestamp fetched across all streams, if any."""
        with self._lock:
            if not self._newest:
                return None
            return max(watermark.timestamp for watermark in self._newest.values())
