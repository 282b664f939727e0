"""
Core data models for the CloudWatch log viewer.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Direction(Enum):
    """Direction of a paginated read within a log stream."""
    OLDER = "older"
    NEWER = "newer"

    @property
    def opposite(self) -> 'Direction':
        return Direction.NEWER if self is Direction.OLDER else Direction.OLDER


@dataclass(frozen=True)
class ScopeEntry:
    """
    One entry of a resolved scope: a log group and an optional stream prefix.
    """
    log_group_name: str
    stream_name_prefix: Optional[str] = None


@dataclass(frozen=True)
class LogGroup:
    """
    Represents a CloudWatch log group and the resource that owns it.
    """
    name: str
    resource: Optional[str] = None


@dataclass(frozen=True)
class LogStream:
    """
    Represents a log stream within a log group.
    """
    group_name: str
    name: str

    @property
    def stream_id(self) -> str:
        return f"{self.group_name}/{self.name}"


@dataclass(frozen=True)
class LogEvent:
    """
    Represents a single log event fetched from a stream.

    Two events are the same event iff their ``(stream_id, event_id)`` match.
    """
    stream_id: str
    timestamp: int
    ingestion_time: int
    event_id: str
    message: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.stream_id, self.event_id)

    @property
    def sort_key(self) -> Tuple[int, str, str]:
        return (self.timestamp, self.event_id, self.stream_id)


@dataclass(frozen=True)
class FetchCursor:
    """
    Continuation token for one stream and one read direction.
    """
    token: str
    direction: Direction
    stream_id: str


@dataclass
class FetchPage:
    """
    Result of a single fetch against one stream.

    Attributes:
        events: Events in ascending ``(timestamp, event_id)`` order
        next_cursor: Cursor continuing in the requested direction, or None
            when the stream is exhausted in that direction
        reverse_cursor: Cursor pointing the other way, when the provider
            returned one
    """
    events: List[LogEvent] = field(default_factory=list)
    next_cursor: Optional[FetchCursor] = None
    reverse_cursor: Optional[FetchCursor] = None

    @property
    def exhausted(self) -> bool:
        return self.next_cursor is None
