"""
Real-time tailing of CloudWatch log streams.

The TailPoller runs in a background thread. On every tick it reads each
stream forward from that stream's watermark, merges the new events across
streams and puts the merged delta on a bounded queue for the foreground
consumer (the UI or the export writer).

Design Decisions:
    - Polling, since CloudWatch Logs has no push API for GetLogEvents
    - One watermark per stream, only ever touched by the poller thread
    - A bounded window of recently emitted event ids per stream catches
      events sharing the watermark millisecond; ids older than
      poll_interval x dedup_window_multiplier are forgotten to bound memory,
      accepting a theoretical re-delivery risk
    - Stopping never aborts an in-flight request; the loop simply does not
      make another one
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config.config import TailConfig, RetryConfig
from .errors import (
    ExpiredCursor,
    FatalError,
    GroupNotFound,
    RateLimited,
    TransientError,
)
from .event_bus import EventBus, SessionEvent
from .event_fetcher import EventFetcher
from .models import Direction, FetchCursor, LogEvent, LogStream, ScopeEntry
from .rate_limiter import Cancelled
from .stream_merger import merge_batches


class TailState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass
class TailWatermark:
    """
    Delivery position of one stream.

    Attributes:
        timestamp: Timestamp of the newest event delivered downstream
        recent_ids: Event id -> timestamp of recently delivered events
    """
    timestamp: int
    recent_ids: Dict[str, int] = field(default_factory=dict)

    def admits(self, event: LogEvent) -> bool:
        """True when the event is new relative to this watermark."""
        if event.timestamp < self.timestamp:
            return False
        return event.event_id not in self.recent_ids

    def record(self, event: LogEvent) -> None:
        self.recent_ids[event.event_id] = event.timestamp
        if event.timestamp > self.timestamp:
            self.timestamp = event.timestamp

    def prune(self, horizon_ms: int) -> None:
        """Drop ids of events older than the watermark minus the horizon."""
        cutoff = self.timestamp - horizon_ms
        self.recent_ids = {event_id: ts for event_id, ts in self.recent_ids.items() if ts >= cutoff}


@dataclass
class _StreamState:
    stream: LogStream
    watermark: TailWatermark
    cursor: Optional[FetchCursor] = None
    next_poll: float = 0.0
    backoff_level: int = 0
    failures: int = 0


_STOP = object()


class TailPoller:
    """
    Polls a set of streams for new events and delivers merged deltas.

    Example:
        >>> poller = TailPoller(fetcher, scope, config.tail)
        >>> poller.start()
        >>> for event in poller.events():
        ...     print(event.message)
    """

    max_pages_per_tick = 20

    def __init__(self, fetcher: EventFetcher, scope: Sequence[ScopeEntry],
                 tail_config: Optional[TailConfig] = None,
                 retry_config: Optional[RetryConfig] = None,
                 streams: Optional[Sequence[LogStream]] = None,
                 start_time: Optional[int] = None,
                 max_streams: int = 50,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time,
                 watermarks: Optional[Dict[str, TailWatermark]] = None):
        """
        Initialize the tail poller.

        Args:
            fetcher: Event fetcher bound to the session client and limiter
            scope: Log groups (and prefixes) being tailed
            tail_config: Poll interval, dedup window and stream refresh settings
            retry_config: Retry budget and maximum backoff
            streams: Streams already resolved by the caller; resolved from the
                scope on the first tick when omitted
            start_time: Initial watermark in epoch milliseconds; defaults to
                now minus the configured lookback
            max_streams: Maximum streams listed per log group
            event_bus: Optional bus for warnings and state changes
            clock: Wall clock in seconds, replaceable in tests
            watermarks: Per-stream positions to resume from, e.g. taken from
                a browse session; they take precedence over start_time
        """
        self.fetcher = fetcher
        self.scope = list(scope)
        self.config = tail_config or TailConfig()
        self.retry_config = retry_config or RetryConfig()
        self.max_streams = max_streams
        self.event_bus = event_bus
        self._clock = clock
        self.logger = logging.getLogger(__name__)

        self.state = TailState.IDLE
        self.warnings: List[str] = []
        self.error: Optional[FatalError] = None
        self.queue: "queue.Queue" = queue.Queue(maxsize=self.config.queue_size)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._streams: Dict[str, _StreamState] = {}
        self._last_refresh: Optional[float] = None
        self._start_time = start_time if start_time is not None else self._lookback_time()
        self._resume = dict(watermarks or {})

        for stream in streams or []:
            self._admit(stream, self._start_time)
        if streams:
            self._last_refresh = self._clock()

    @property
    def horizon_ms(self) -> int:
        return int(self.config.dedup_window * 1000)

    @property
    def streams(self) -> List[LogStream]:
        return [state.stream for state in self._streams.values()]

    def watermark(self, stream_id: str) -> Optional[TailWatermark]:
        state = self._streams.get(stream_id)
        return state.watermark if state else None

    def _lookback_time(self) -> int:
        return int((self._clock() - self.config.lookback) * 1000)

    def _admit(self, stream: LogStream, start_time: int) -> None:
        if stream.stream_id not in self._streams:
            watermark = self._resume.pop(stream.stream_id, None) or TailWatermark(start_time)
            self._streams[stream.stream_id] = _StreamState(stream, watermark)
            self.logger.info(f"Tailing stream {stream.stream_id} from {watermark.timestamp}")

    def _warn(self, message: str) -> None:
        self.logger.warning(message)
        self.warnings.append(message)
        if self.event_bus:
            self.event_bus.publish(SessionEvent.WARNING, message, source='tail')

    def _set_state(self, state: TailState) -> None:
        if self.state is not state:
            self.state = state
            if self.event_bus:
                self.event_bus.publish(SessionEvent.TAIL_STATE, state, source='tail')

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None:
            self.logger.warning("Tail poller already running")
            return
        if self.stopped:
            raise RuntimeError("A stopped tail poller cannot be restarted")

        self._set_state(TailState.POLLING)
        self._thread = threading.Thread(target=self._run, name="tail-poller", daemon=True)
        self._thread.start()
        self.logger.info("Tail polling started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop polling. Takes effect before the next network call.

        Args:
            timeout: Seconds to wait for the polling thread to finish
        """
        self._stop_event.set()
        self._set_state(TailState.STOPPED)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self.logger.info("Tail polling stopped")

    def _run(self) -> None:
        try:
            while not self.stopped:
                try:
                    self.tick()
                except FatalError as e:
                    self.error = e
                    self.logger.error(f"Tail polling aborted: {e}")
                    self._stop_event.set()
                    self._set_state(TailState.STOPPED)
                    break
                self._stop_event.wait(self.config.poll_interval)
        finally:
            self._put(_STOP, force=True)

    def _put(self, item, force: bool = False) -> None:
        # Blocking put gives backpressure; re-check the stop flag while waiting.
        while True:
            try:
                self.queue.put(item, timeout=0.2)
                return
            except queue.Full:
                if self.stopped and not force:
                    return
                if force:
                    try:
                        self.queue.get_nowait()
                    except queue.Empty:
                        pass

    def refresh_streams(self) -> None:
        """Re-list streams of every scope entry and admit new ones."""
        admitted_at = self._lookback_time()
        found_any = False
        for entry in self.scope:
            if self.stopped:
                return
            try:
                streams = self.fetcher.list_streams(entry, self.max_streams, self._stop_event)
            except GroupNotFound:
                self._warn(f"Log group not found: {entry.log_group_name}")
                continue
            except TransientError as e:
                self.logger.warning(f"Could not list streams of {entry.log_group_name}: {e}")
                found_any = True
                continue
            except Cancelled:
                return
            found_any = found_any or bool(streams)
            for stream in streams:
                first_listing = self._last_refresh is None
                self._admit(stream, self._start_time if first_listing else admitted_at)
        self._last_refresh = self._clock()
        if not found_any and not self._streams:
            self._warn("No log streams to tail yet")

    def tick(self) -> List[LogEvent]:
        """
        Run one polling round.

        Returns:
            The merged delta delivered downstream (possibly empty)

        Raises:
            FatalError: On authorization failures; the caller stops polling
        """
        if self.stopped:
            return []

        now = self._clock()
        if self._last_refresh is None or now - self._last_refresh >= self.config.stream_refresh_interval:
            self.refresh_streams()

        batches: Dict[str, List[LogEvent]] = {}
        for stream_id, state in list(self._streams.items()):
            if self.stopped:
                break
            if state.next_poll > now:
                continue
            try:
                fresh, cursor, failure = self._read_new(state)
            except Cancelled:
                break
            except RateLimited as e:
                self._back_off(state, e)
                continue
            except GroupNotFound:
                self._warn(f"Stream no longer available, dropping: {stream_id}")
                del self._streams[stream_id]
                continue
            except TransientError as e:
                self._record_failure(state, e)
                continue

            # The cursor only moves together with the events read up to it.
            state.cursor = cursor
            if fresh:
                batches[stream_id] = fresh
            if isinstance(failure, RateLimited):
                self._back_off(state, failure)
            elif failure is not None:
                self._record_failure(state, failure)
            else:
                state.failures = 0
                state.backoff_level = 0
                state.next_poll = 0.0

        delta = merge_batches(batches) if batches else []
        for event in delta:
            self._streams[event.stream_id].watermark.record(event)
        for state in self._streams.values():
            state.watermark.prune(self.horizon_ms)

        if delta and not self.stopped:
            self.logger.debug(f"Delivering {len(delta)} new events")
            self._put(delta)
            if self.event_bus:
                self.event_bus.publish(SessionEvent.EVENTS_APPENDED, delta, source='tail')
        return delta

    def _read_new(self, state: _StreamState
                  ) -> Tuple[List[LogEvent], Optional[FetchCursor], Optional[TransientError]]:
        """
        Read every page newer than the stream's position.

        A failure on the first page is raised. A failure on a later page ends
        the read early so the pages already read are still delivered.

        Returns:
            Tuple of (admitted events, cursor just past them, error that cut
            the read short or None)
        """
        stream = state.stream
        watermark = state.watermark
        cursor = state.cursor
        fresh: List[LogEvent] = []
        pages = 0

        while not self.stopped:
            try:
                page = self.fetcher.fetch(
                    stream, cursor, Direction.NEWER,
                    start_time=watermark.timestamp if cursor is None else None,
                    cancel_event=self._stop_event)
            except ExpiredCursor:
                self.logger.info(f"Cursor expired for {stream.stream_id}; resuming from watermark")
                cursor = None
                continue
            except TransientError as e:
                if not pages:
                    raise
                return fresh, cursor, e
            pages += 1
            fresh.extend(event for event in page.events if watermark.admits(event))
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
            if pages >= self.max_pages_per_tick:
                break
        return fresh, cursor, None

    def _record_failure(self, state: _StreamState, error: TransientError) -> None:
        state.failures += 1
        self.logger.warning(f"Fetch failed for {state.stream.stream_id}: {error}")
        if state.failures == self.retry_config.max_attempts:
            self._warn(f"Repeated failures tailing {state.stream.stream_id}: {error}")

    def _back_off(self, state: _StreamState, error: RateLimited) -> None:
        state.backoff_level += 1
        delay = min(self.retry_config.max_delay,
                    self.config.poll_interval * (2 ** state.backoff_level))
        state.next_poll = self._clock() + delay
        if self.fetcher.limiter is not None:
            self.fetcher.limiter.penalize(min(delay, self.config.poll_interval))
        self.logger.info(f"Throttled on {state.stream.stream_id}; next poll in {delay:.1f}s")
        if state.backoff_level == self.retry_config.max_attempts:
            self._warn(f"Persistent throttling on {state.stream.stream_id}: {error}")

    def drain_ready(self) -> List[LogEvent]:
        """
        Return every event delivered so far without blocking.

        Meant for consumers that poll on a timer, such as the UI.
        """
        events: List[LogEvent] = []
        while True:
            try:
                item = self.queue.get_nowait()
            except queue.Empty:
                return events
            if item is _STOP:
                return events
            events.extend(item)

    def events(self, timeout: Optional[float] = None) -> Iterator[LogEvent]:
        """
        Yield delivered events until the poller stops.

        Args:
            timeout: Give up after this many seconds without a delta

        Raises:
            FatalError: If polling was aborted by a fatal error
        """
        while True:
            try:
                item = self.queue.get(timeout=timeout)
            except queue.Empty:
                return
            if item is _STOP:
                if self.error is not None:
                    raise self.error
                return
            yield from item
