"""
Event fetching module for the CloudWatch log viewer.

This module issues paginated reads against CloudWatch Logs streams and
converts the provider's responses into LogEvent batches and FetchCursors.
"""

import hashlib
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config.settings import Settings
from .errors import DataAnomaly, ExpiredCursor, classify_client_error
from .models import Direction, FetchCursor, FetchPage, LogEvent, LogStream, ScopeEntry
from .rate_limiter import BackoffPolicy, RateLimiter, call_with_retry


class EventFetcher:
    """
    Reads pages of events from individual log streams.

    The fetcher owns no session state besides an anomaly counter: cursors are
    handed back to the caller, so a failed call can be repeated with the same
    cursor and will return the same batch.
    """

    def __init__(self, client, limiter: Optional[RateLimiter] = None,
                 page_size: int = Settings.DEFAULT_PAGE_SIZE):
        """
        Initialize the event fetcher.

        Args:
            client: Authenticated boto3 CloudWatch Logs client
            limiter: Rate limiter shared by every call of the session
            page_size: Default number of events per request
        """
        self.client = client
        self.limiter = limiter
        self.page_size = self.clamp_page_size(page_size)
        self.anomalies = 0
        self._anomaly_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, client, config) -> 'EventFetcher':
        """
        Build a fetcher with its own session rate limiter.

        Args:
            client: Authenticated boto3 CloudWatch Logs client
            config: Application Config (fetch and retry sections are used)
        """
        limiter = RateLimiter(requests_per_second=config.retry.requests_per_second,
                              burst=config.retry.burst)
        return cls(client, limiter=limiter, page_size=config.fetch.page_size)

    @staticmethod
    def clamp_page_size(page_size: Optional[int]) -> int:
        """Bound a page size to what GetLogEvents accepts."""
        if not page_size or page_size < 1:
            return 1
        return min(int(page_size), Settings.MAX_PAGE_SIZE)

    def _call(self, operation: str, stream_id: Optional[str],
              cancel_event: Optional[threading.Event] = None, **kwargs) -> Dict[str, Any]:
        if self.limiter is not None:
            self.limiter.acquire(cancel_event)
        try:
            return getattr(self.client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            code = e.response.get('Error', {}).get('Code') if isinstance(e, ClientError) else None
            if code == 'InvalidParameterException' and 'nextToken' in kwargs:
                raise ExpiredCursor(f"Continuation token rejected: {e}", stream_id) from e
            raise classify_client_error(e, stream_id) from e

    def fetch(self, stream: LogStream, cursor: Optional[FetchCursor] = None,
              direction: Direction = Direction.OLDER, page_size: Optional[int] = None,
              start_time: Optional[int] = None, end_time: Optional[int] = None,
              cancel_event: Optional[threading.Event] = None) -> FetchPage:
        """
        Fetch one page of events from a stream.

        With no cursor and direction OLDER the newest page of the stream is
        returned. With no cursor and direction NEWER the read starts at
        ``start_time`` (inclusive) or at the head of the stream.

        Args:
            stream: Stream to read
            cursor: Continuation cursor from a previous page, or None
            direction: Direction of the read
            page_size: Maximum events to request
            start_time: Lower time bound in epoch milliseconds
            end_time: Upper time bound (exclusive) in epoch milliseconds
            cancel_event: Cancellation signal for the rate limiter wait

        Returns:
            FetchPage with events in ascending order

        Raises:
            RateLimited, TransientError, GroupNotFound, AccessDenied
        """
        stream_id = stream.stream_id
        if cursor is not None:
            if cursor.stream_id != stream_id:
                raise ValueError(f"Cursor for {cursor.stream_id} used with stream {stream_id}")
            direction = cursor.direction

        request = {
            'logGroupName': stream.group_name,
            'logStreamName': stream.name,
            'limit': self.clamp_page_size(page_size or self.page_size),
            # Forward tokens must be replayed with startFromHead=True.
            'startFromHead': direction is Direction.NEWER,
        }
        if cursor is not None:
            request['nextToken'] = cursor.token
        if start_time is not None:
            request['startTime'] = int(start_time)
        if end_time is not None:
            request['endTime'] = int(end_time)

        response = self._call('get_log_events', stream_id, cancel_event, **request)
        events = self.convert_events(stream_id, response.get('events', []))

        forward_token = response.get('nextForwardToken')
        backward_token = response.get('nextBackwardToken')
        if direction is Direction.OLDER:
            next_token, reverse_token = backward_token, forward_token
        else:
            next_token, reverse_token = forward_token, backward_token

        # GetLogEvents hands back the token it was given once the end is reached.
        next_cursor = None
        if next_token and (cursor is None or next_token != cursor.token):
            next_cursor = FetchCursor(next_token, direction, stream_id)
        reverse_cursor = None
        if reverse_token:
            reverse_cursor = FetchCursor(reverse_token, direction.opposite, stream_id)

        self.logger.debug(f"Fetched {len(events)} events from {stream_id} "
                          f"({direction.value}, exhausted={next_cursor is None})")
        return FetchPage(events=events, next_cursor=next_cursor, reverse_cursor=reverse_cursor)

    def iter_pages(self, stream: LogStream, start_time: Optional[int] = None,
                   end_time: Optional[int] = None, page_size: Optional[int] = None,
                   cancel_event: Optional[threading.Event] = None,
                   policy: Optional[BackoffPolicy] = None) -> Iterator[List[LogEvent]]:
        """
        Yield forward pages of a stream between two times until exhausted.

        The time bounds are sent with the first request only; later pages are
        positioned by their token, so the end bound is also enforced here.

        With a backoff policy each page request is retried on transient
        failures, and RetryBudgetExceeded is raised once the budget is spent.
        """
        cursor = None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return

            def read(cursor=cursor):
                return self.fetch(stream, cursor, Direction.NEWER, page_size,
                                  start_time=start_time if cursor is None else None,
                                  end_time=end_time if cursor is None else None,
                                  cancel_event=cancel_event)

            if policy is None:
                page = read()
            else:
                page = call_with_retry(read, self.limiter, policy, cancel_event)
            events = page.events
            if end_time is not None:
                events = [event for event in events if event.timestamp < end_time]
            if events:
                yield events
            if page.next_cursor is None or len(events) < len(page.events):
                return
            cursor = page.next_cursor

    def list_streams(self, entry: ScopeEntry, limit: int = Settings.DEFAULT_MAX_STREAMS,
                     cancel_event: Optional[threading.Event] = None) -> List[LogStream]:
        """
        List the streams of a log group, most recently active first.

        When a prefix is given the provider only supports name ordering, so the
        streams come back by name.

        Args:
            entry: Log group and optional stream name prefix
            limit: Maximum number of streams to return
            cancel_event: Cancellation signal

        Returns:
            List of LogStream

        Raises:
            GroupNotFound: If the log group does not exist
        """
        request: Dict[str, Any] = {'logGroupName': entry.log_group_name}
        if entry.stream_name_prefix:
            request['logStreamNamePrefix'] = entry.stream_name_prefix
        else:
            request['orderBy'] = 'LastEventTime'
            request['descending'] = True

        streams: List[LogStream] = []
        next_token = None
        while len(streams) < limit:
            if next_token:
                request['nextToken'] = next_token
            request['limit'] = min(Settings.MAX_DESCRIBE_STREAMS, limit - len(streams))
            response = self._call('describe_log_streams', entry.log_group_name,
                                  cancel_event, **request)
            for item in response.get('logStreams', []):
                name = item.get('logStreamName')
                if name:
                    streams.append(LogStream(entry.log_group_name, name))
            next_token = response.get('nextToken')
            if not next_token:
                break

        self.logger.info(f"Resolved {len(streams)} streams in {entry.log_group_name}")
        return streams[:limit]

    def convert_events(self, stream_id: str, raw_events: List[Dict[str, Any]]) -> List[LogEvent]:
        """
        Convert raw provider events, skipping malformed ones.

        Events without a provider id that are identical in timestamp,
        ingestion time and message are numbered in page order, so repeated
        log lines stay distinct events.

        Returns:
            Events sorted by ``(timestamp, event_id)``
        """
        events = []
        occurrences: Dict[str, int] = {}
        for raw in raw_events:
            try:
                event = self.convert_event(stream_id, raw)
            except DataAnomaly as e:
                with self._anomaly_lock:
                    self.anomalies += 1
                self.logger.warning(f"Skipping malformed event in {stream_id}: {e}")
                continue
            if not raw.get('eventId'):
                seen = occurrences.get(event.event_id, 0)
                occurrences[event.event_id] = seen + 1
                if seen:
                    event = replace(event, event_id=f"{event.event_id}-{seen}")
            events.append(event)
        events.sort(key=lambda event: (event.timestamp, event.event_id))
        return events

    @staticmethod
    def convert_event(stream_id: str, raw: Dict[str, Any]) -> LogEvent:
        """
        Build a LogEvent from a provider event dictionary.

        GetLogEvents does not return event ids, so one is derived from the
        event's timestamps and message. The zero-padded timestamp prefix keeps
        derived ids ordered like the stream itself.

        Raises:
            DataAnomaly: If the payload lacks a usable timestamp or message
        """
        if not isinstance(raw, dict):
            raise DataAnomaly(f"event is not an object: {raw!r}", stream_id)

        timestamp = raw.get('timestamp')
        message = raw.get('message')
        if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp < 0:
            raise DataAnomaly(f"invalid timestamp {timestamp!r}", stream_id)
        if not isinstance(message, str):
            raise DataAnomaly(f"invalid message {message!r}", stream_id)

        ingestion_time = raw.get('ingestionTime', timestamp)
        if not isinstance(ingestion_time, int) or isinstance(ingestion_time, bool):
            raise DataAnomaly(f"invalid ingestion time {ingestion_time!r}", stream_id)

        event_id = raw.get('eventId')
        if not event_id:
            digest = hashlib.sha1(message.encode('utf-8', errors='replace')).hexdigest()[:16]
            event_id = f"{timestamp:013d}-{ingestion_time:013d}-{digest}"

        return LogEvent(
            stream_id=stream_id,
            timestamp=timestamp,
            ingestion_time=ingestion_time,
            event_id=str(event_id),
            message=message,
        )
