"""
Export of merged log events to a text sink.

Two formats are supported:

- ``json-lines``: one JSON object per event with exactly the fields
  ``stream_id``, ``timestamp``, ``ingestion_time``, ``event_id`` and
  ``message``. Reading the lines back with ``Exporter.parse_json_line``
  reproduces the exported sequence.
- ``logfile``: ``<ISO-8601 UTC timestamp> [<stream_id>] <message>``; the
  message is written as is and a newline is added only if it lacks one.

Events are written one at a time as they come from the source iterable, so a
live tail can be exported without buffering.
"""

import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional, TextIO

from ..config.settings import Settings
from ..utils.time_utils import TimeUtils
from .errors import DataAnomaly
from .models import LogEvent


JSON_FIELDS = ('stream_id', 'timestamp', 'ingestion_time', 'event_id', 'message')


class Exporter:
    """
    Writes log events to a text sink in one of the export formats.

    Attributes:
        sink: Writable text stream (a file or stdout)
        format: One of ``Settings.EXPORT_FORMATS``
        written: Number of events written so far
    """

    def __init__(self, sink: TextIO, fmt: str = Settings.DEFAULT_EXPORT_FORMAT):
        if fmt not in Settings.EXPORT_FORMATS:
            raise ValueError(f"Unknown export format: {fmt}. "
                             f"Valid values: {', '.join(Settings.EXPORT_FORMATS)}")
        self.sink = sink
        self.format = fmt
        self.written = 0
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def format_json_line(event: LogEvent) -> str:
        record = {name: getattr(event, name) for name in JSON_FIELDS}
        return json.dumps(record, ensure_ascii=False) + '\n'

    @staticmethod
    def format_logfile_line(event: LogEvent) -> str:
        line = f"{TimeUtils.format_iso(event.timestamp)} [{event.stream_id}] {event.message}"
        if not line.endswith('\n'):
            line += '\n'
        return line

    def format_event(self, event: LogEvent) -> str:
        if self.format == 'json-lines':
            return self.format_json_line(event)
        return self.format_logfile_line(event)

    def write_event(self, event: LogEvent) -> None:
        self.sink.write(self.format_event(event))
        self.written += 1

    def export(self, events: Iterable[LogEvent], cancel_event: Optional[threading.Event] = None,
               live: bool = False) -> int:
        """
        Write every event of the sequence to the sink.

        Args:
            events: Ordered events; a finite range or a live tail iterator
            cancel_event: Stops the export before the next event when set
            live: Flush after each event so followers see lines immediately

        Returns:
            Number of events written by this call
        """
        count = 0
        try:
            for event in events:
                if cancel_event is not None and cancel_event.is_set():
                    break
                self.write_event(event)
                count += 1
                if live:
                    self.sink.flush()
        finally:
            self.sink.flush()
            self.logger.info(f"Exported {count} events as {self.format}")
        return count

    @staticmethod
    def parse_json_line(line: str) -> LogEvent:
        """
        Parse one json-lines record back into a LogEvent.

        Raises:
            DataAnomaly: If the line is not a complete record
        """
        try:
            record: Dict[str, Any] = json.loads(line)
        except json.JSONDecodeError as e:
            raise DataAnomaly(f"Invalid JSON line: {e}")
        if not isinstance(record, dict):
            raise DataAnomaly("JSON line is not an object")
        missing = [name for name in JSON_FIELDS if name not in record]
        if missing:
            raise DataAnomaly(f"JSON line is missing fields: {', '.join(missing)}")
        for name in ('timestamp', 'ingestion_time'):
            value = record[name]
            if not isinstance(value, int) or isinstance(value, bool):
                raise DataAnomaly(f"JSON line has a non-integer {name}: {value!r}")
        for name in ('stream_id', 'event_id', 'message'):
            if not isinstance(record[name], str):
                raise DataAnomaly(f"JSON line has a non-string {name}: {record[name]!r}")
        return LogEvent(stream_id=record['stream_id'],
                        timestamp=record['timestamp'],
                        ingestion_time=record['ingestion_time'],
                        event_id=record['event_id'],
                        message=record['message'])
