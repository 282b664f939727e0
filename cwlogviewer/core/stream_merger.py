"""
Stream merging for time-ordered log display.

This module merges events from several log streams into one globally
ordered sequence. Each stream's events arrive in batches that are ordered on
their own; the merger holds them in per-stream buffers and uses a heap to
emit them in ``(timestamp, event_id, stream_id)`` order.

An event can only be emitted once every live stream has something buffered,
otherwise a not-yet-fetched event from an empty stream could sort before it.
Streams whose buffer runs dry are reported by ``needs_fetch()`` so the caller
can fetch exactly those, and no others.

With ``reverse=True`` the same rules produce a newest-first sequence, which is
what backward browsing needs.
"""

import heapq
import logging
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .models import LogEvent


EventKey = Tuple[str, str]


class _HeapItem:
    """Heap entry ordering events by their sort key, optionally inverted."""

    __slots__ = ('key', 'event', 'reverse')

    def __init__(self, event: LogEvent, reverse: bool):
        self.key = event.sort_key
        self.event = event
        self.reverse = reverse

    def __lt__(self, other: '_HeapItem') -> bool:
        if self.reverse:
            return self.key > other.key
        return self.key < other.key


class StreamMerger:
    """
    K-way merger over per-stream event buffers.

    Attributes:
        reverse: Emit newest first instead of oldest first
        emitted: Keys of every event emitted so far; can be shared between
            mergers of the same session
        duplicates: Number of events dropped because they were already emitted

    Example:
        >>> merger = StreamMerger()
        >>> merger.feed("a", batch_a, exhausted=True)
        >>> merger.feed("b", batch_b, exhausted=True)
        >>> ordered = merger.drain()
    """

    def __init__(self, reverse: bool = False, emitted: Optional[Set[EventKey]] = None):
        self.reverse = reverse
        self.emitted: Set[EventKey] = emitted if emitted is not None else set()
        self.duplicates = 0
        self._buffers: Dict[str, Deque[LogEvent]] = {}
        self._exhausted: Set[str] = set()
        # Streams with their head element currently in the heap
        self._in_heap: Set[str] = set()
        self._heap: List[_HeapItem] = []
        self.logger = logging.getLogger(__name__)

    @property
    def streams(self) -> List[str]:
        return list(self._buffers)

    def add_stream(self, stream_id: str) -> None:
        """Register a stream that will contribute events."""
        if stream_id not in self._buffers:
            self._buffers[stream_id] = deque()

    def feed(self, stream_id: str, events: Iterable[LogEvent], exhausted: bool = False) -> None:
        """
        Append a fetched batch to a stream's buffer.

        Batches may be given in ascending order; for a reverse merger they are
        consumed newest first regardless of how they were passed in.

        Args:
            stream_id: Stream the batch belongs to
            events: Events of one page
            exhausted: True when the stream has no more data in this direction
        """
        self.add_stream(stream_id)
        batch = sorted(events, key=lambda event: event.sort_key, reverse=self.reverse)
        buffer = self._buffers[stream_id]
        for event in batch:
            if buffer and self._out_of_order(buffer[-1], event):
                self.logger.debug(f"Out-of-order event in {stream_id} at {event.timestamp}")
            buffer.append(event)
        if exhausted:
            self._exhausted.add(stream_id)
        self._refill(stream_id)

    def _out_of_order(self, previous: LogEvent, event: LogEvent) -> bool:
        if self.reverse:
            return event.sort_key > previous.sort_key
        return event.sort_key < previous.sort_key

    def mark_exhausted(self, stream_id: str) -> None:
        """Mark a stream as having no further data; its buffer still drains."""
        self.add_stream(stream_id)
        self._exhausted.add(stream_id)

    def remove_stream(self, stream_id: str) -> None:
        """Forget a stream and discard whatever it had buffered."""
        self._buffers.pop(stream_id, None)
        self._exhausted.discard(stream_id)
        if stream_id in self._in_heap:
            self._in_heap.discard(stream_id)
            self._heap = [item for item in self._heap if item.event.stream_id != stream_id]
            heapq.heapify(self._heap)

    def _refill(self, stream_id: str) -> None:
        if stream_id in self._in_heap:
            return
        buffer = self._buffers.get(stream_id)
        if buffer:
            heapq.heappush(self._heap, _HeapItem(buffer.popleft(), self.reverse))
            self._in_heap.add(stream_id)

    def needs_fetch(self) -> List[str]:
        """
        Streams that block the merge: not exhausted and with nothing buffered.
        """
        return [stream_id for stream_id, buffer in self._buffers.items()
                if stream_id not in self._exhausted
                and stream_id not in self._in_heap
                and not buffer]

    def is_exhausted(self, stream_id: str) -> bool:
        return stream_id in self._exhausted

    @property
    def finished(self) -> bool:
        """True when every stream is exhausted and nothing is left buffered."""
        return not self._heap and all(stream_id in self._exhausted for stream_id in self._buffers)

    def pending(self) -> int:
        """Number of buffered events not yet emitted."""
        return len(self._heap) + sum(len(buffer) for buffer in self._buffers.values())

    def _pop(self) -> Optional[LogEvent]:
        item = heapq.heappop(self._heap)
        event = item.event
        self._in_heap.discard(event.stream_id)
        self._refill(event.stream_id)
        if event.key in self.emitted:
            self.duplicates += 1
            return None
        self.emitted.add(event.key)
        return event

    def drain(self) -> List[LogEvent]:
        """
        Emit every event whose position in the merged order is settled.

        Returns:
            Events in merge order (ascending, or descending when reversed)
        """
        out = []
        while self._heap and not self.needs_fetch():
            event = self._pop()
            if event is not None:
                out.append(event)
        return out

    def flush(self) -> List[LogEvent]:
        """
        Emit everything buffered, ignoring streams that are still live.

        Used when the caller will not fetch any further (a bounded export
        that reached its end, or a tail tick whose reads are complete).
        """
        out = []
        while self._heap:
            event = self._pop()
            if event is not None:
                out.append(event)
        return out


def merge_batches(batches: Mapping[str, Iterable[LogEvent]],
                  emitted: Optional[Set[EventKey]] = None) -> List[LogEvent]:
    """
    Merge complete per-stream batches into one ascending sequence.

    Args:
        batches: Mapping of stream id to that stream's events
        emitted: Optional set of already emitted keys, updated in place

    Returns:
        Ordered, deduplicated events
    """
    merger = StreamMerger(emitted=emitted)
    for stream_id, events in batches.items():
        merger.feed(stream_id, events, exhausted=True)
    return merger.drain()


def iter_merge(page_sources: Mapping[str, Iterator[List[LogEvent]]],
               emitted: Optional[Set[EventKey]] = None) -> Iterator[LogEvent]:
    """
    Lazily merge streams whose pages come from iterators.

    A stream's iterator is advanced only when its buffer runs dry, so at most
    one page per stream is held in memory.

    Args:
        page_sources: Mapping of stream id to an iterator of ascending pages
        emitted: Optional set of already emitted keys

    Yields:
        Events in ascending merge order
    """
    merger = StreamMerger(emitted=emitted)
    for stream_id in page_sources:
        merger.add_stream(stream_id)

    while True:
        for stream_id in merger.needs_fetch():
            page = next(page_sources[stream_id], None)
            if page is None:
                merger.mark_exhausted(stream_id)
            else:
                merger.feed(stream_id, page)
        yield from merger.drain()
        if merger.finished:
            return
