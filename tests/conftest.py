"""
Pytest configuration for the CloudWatch log viewer tests.

This file contains fixtures and an in-memory CloudWatch Logs client used by
the test suite.
"""

import bisect
from typing import Dict, List, Optional, Tuple

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError

from cwlogviewer.config.config import Config
from cwlogviewer.core.event_fetcher import EventFetcher
from cwlogviewer.core.models import LogEvent, LogStream
from cwlogviewer.core.rate_limiter import RateLimiter


def client_error(code: str, operation: str = 'GetLogEvents', message: str = 'test error') -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


def raw_event(timestamp: int, message: str, ingestion_time: Optional[int] = None) -> Dict:
    """Build an event dictionary as returned by GetLogEvents."""
    return {
        'timestamp': timestamp,
        'message': message,
        'ingestionTime': timestamp + 1 if ingestion_time is None else ingestion_time,
    }


class FakeLogsClient:
    """
    In-memory stand-in for a boto3 CloudWatch Logs client.

    Tokens mimic GetLogEvents: "f/<i>" continues forward from index i, "b/<i>"
    continues backward from index i, and a read past either end returns the
    token it was given.

    ``failures`` is consumed one entry per call, where None lets that call
    through; ``stream_failures`` does the same for GetLogEvents on one stream.
    """

    def __init__(self):
        self.groups: Dict[str, Dict[str, List[Dict]]] = {}
        self.calls: List[Tuple[str, Dict]] = []
        self.failures: List[Optional[Exception]] = []
        self.stream_failures: Dict[str, List[Optional[Exception]]] = {}

    def add_stream(self, group: str, stream: str, events: Optional[List[Dict]] = None) -> None:
        self.groups.setdefault(group, {})[stream] = sorted(events or [], key=lambda e: e['timestamp'])

    def append(self, group: str, stream: str, event: Dict) -> None:
        self.groups[group][stream].append(event)
        self.groups[group][stream].sort(key=lambda e: e['timestamp'])

    def calls_for(self, operation: str, stream: Optional[str] = None) -> List[Dict]:
        return [kwargs for name, kwargs in self.calls
                if name == operation and (stream is None or kwargs.get('logStreamName') == stream)]

    def _maybe_fail(self, stream: Optional[str] = None) -> None:
        pending = self.stream_failures.get(stream) if stream else None
        if pending:
            failure = pending.pop(0)
            if failure is not None:
                raise failure
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure

    def describe_log_streams(self, logGroupName, logStreamNamePrefix=None, orderBy=None,
                             descending=None, limit=50, nextToken=None):
        self.calls.append(('describe_log_streams', {
            'logGroupName': logGroupName, 'logStreamNamePrefix': logStreamNamePrefix,
            'orderBy': orderBy, 'descending': descending, 'limit': limit, 'nextToken': nextToken,
        }))
        self._maybe_fail()
        if logGroupName not in self.groups:
            raise client_error('ResourceNotFoundException', 'DescribeLogStreams',
                               'The specified log group does not exist.')

        streams = self.groups[logGroupName]
        names = [name for name in streams if not logStreamNamePrefix or name.startswith(logStreamNamePrefix)]
        if orderBy == 'LastEventTime':
            names.sort(key=lambda name: streams[name][-1]['timestamp'] if streams[name] else 0,
                       reverse=bool(descending))
        else:
            names.sort()

        offset = int(nextToken) if nextToken else 0
        page = names[offset:offset + limit]
        response = {'logStreams': [{'logStreamName': name} for name in page]}
        if offset + limit < len(names):
            response['nextToken'] = str(offset + limit)
        return response

    def get_log_events(self, logGroupName, logStreamName, limit=10000, startFromHead=False,
                       nextToken=None, startTime=None, endTime=None):
        self.calls.append(('get_log_events', {
            'logGroupName': logGroupName, 'logStreamName': logStreamName, 'limit': limit,
            'startFromHead': startFromHead, 'nextToken': nextToken,
            'startTime': startTime, 'endTime': endTime,
        }))
        self._maybe_fail(logStreamName)
        try:
            events = self.groups[logGroupName][logStreamName]
        except KeyError:
            raise client_error('ResourceNotFoundException', 'GetLogEvents',
                               'The specified log stream does not exist.')

        timestamps = [event['timestamp'] for event in events]
        if nextToken:
            kind, index = nextToken.split('/')
            index = int(index)
            if kind == 'f':
                lo, hi = index, min(len(events), index + limit)
            else:
                lo, hi = max(0, index - limit), index
        else:
            lo_bound = bisect.bisect_left(timestamps, startTime) if startTime is not None else 0
            hi_bound = bisect.bisect_left(timestamps, endTime) if endTime is not None else len(events)
            if startFromHead:
                lo, hi = lo_bound, min(hi_bound, lo_bound + limit)
            else:
                lo, hi = max(lo_bound, hi_bound - limit), hi_bound

        return {
            'events': [dict(event) for event in events[lo:hi]],
            'nextForwardToken': f"f/{hi}",
            'nextBackwardToken': f"b/{lo}",
        }


@pytest.fixture
def sample_config():
    """Create a sample configuration for testing."""
    config = Config()
    config.fetch.page_size = 2
    config.retry.base_delay = 0.001  # Faster for tests
    config.retry.max_delay = 0.002
    config.tail.poll_interval = 0.01
    return config


@pytest.fixture
def fake_client():
    """Create an empty in-memory CloudWatch Logs client."""
    return FakeLogsClient()


@pytest.fixture
def two_stream_client(fake_client):
    """Client with one log group holding two interleaved streams."""
    fake_client.add_stream('/aws/lambda/fn', 'a', [raw_event(ts, f"a{ts}") for ts in (10, 30, 50, 70)])
    fake_client.add_stream('/aws/lambda/fn', 'b', [raw_event(ts, f"b{ts}") for ts in (20, 40, 60, 80)])
    return fake_client


@pytest.fixture
def fetcher(fake_client):
    """Create a fetcher without rate limiting."""
    return EventFetcher(fake_client, page_size=2)


@pytest.fixture
def mock_limiter():
    """Create a mock rate limiter for testing."""
    mock = Mock(spec=RateLimiter)
    mock.acquire = Mock()
    mock.penalize = Mock()
    return mock


@pytest.fixture
def make_event():
    """Factory for LogEvent instances."""
    def _make(stream_id: str, timestamp: int, event_id: Optional[str] = None,
              message: Optional[str] = None) -> LogEvent:
        return LogEvent(
            stream_id=stream_id,
            timestamp=timestamp,
            ingestion_time=timestamp,
            event_id=event_id or f"{timestamp:013d}-{stream_id}",
            message=message if message is not None else f"{stream_id}@{timestamp}",
        )
    return _make


@pytest.fixture
def stream_a():
    return LogStream('/aws/lambda/fn', 'a')


@pytest.fixture
def stream_b():
    return LogStream('/aws/lambda/fn', 'b')
