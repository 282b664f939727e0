"""
Log viewer widget module for the CloudWatch log viewer Textual UI.

This module provides a widget that shows a merged, time-ordered window of log
events and accepts both older events (prepended) and live ones (appended).
"""

from typing import List, Optional
import logging

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import DataTable, Label, Static

from ...config.config import Config
from ...core.models import LogEvent
from ...utils.time_utils import TimeUtils
from ..themes.default import STREAM_STYLE, TIME_STYLE, style_message


def _row_key(event: LogEvent) -> str:
    return f"{event.stream_id}\x00{event.event_id}"


class LogViewer(Vertical):
    """
    Widget for displaying log events in the UI with real-time updates.
    """

    def __init__(self, config: Optional[Config] = None, id: Optional[str] = None):
        """
        Initialize the log viewer widget.

        Args:
            config: Application configuration
            id: Widget id
        """
        super().__init__(id=id)

        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.max_lines = config.display.max_log_lines if config else 5000
        self.auto_scroll = True
        self.events: List[LogEvent] = []

        self.log_table = DataTable(id="log-table", cursor_type="row", zebra_stripes=True)
        self.log_details = Static(id="log-details", classes="log-details")
        self.status_label = Label("", id="status-label")

    def compose(self) -> ComposeResult:
        """Create child widgets for the log viewer."""
        yield Horizontal(
            Static("Log Events", classes="section-title"),
            self.status_label,
            id="log-header"
        )
        yield self.log_table
        yield self.log_details

    def on_mount(self) -> None:
        """Set up the table columns once the widget is attached to the app."""
        self.log_table.add_column("Time (UTC)", key="timestamp", width=23)
        self.log_table.add_column("Stream", key="stream", width=28)
        self.log_table.add_column("Message", key="message")

    def _cells(self, event: LogEvent):
        stream = event.stream_id.rsplit('/', 1)[-1]
        return (
            Text(TimeUtils.format_short(event.timestamp), style=TIME_STYLE),
            Text(stream, style=STREAM_STYLE),
            style_message(event.message),
        )

    def _rebuild(self) -> None:
        self.log_table.clear()
        for event in self.events:
            self.log_table.add_row(*self._cells(event), key=_row_key(event))

    def set_events(self, events: List[LogEvent]) -> None:
        """Replace the displayed events, keeping the newest when over the limit."""
        self.events = list(events)[-self.max_lines:]
        self._rebuild()
        if self.auto_scroll:
            self.scroll_to_end()

    def prepend_events(self, events: List[LogEvent]) -> None:
        """
        Show older events above the current ones.

        When the limit is exceeded the newest rows are dropped, since the user
        is paging back in time.
        """
        if not events:
            return
        row = self.log_table.cursor_row
        self.events = (list(events) + self.events)[:self.max_lines]
        self._rebuild()
        # Keep the cursor on the row that was selected before.
        self.log_table.move_cursor(row=min(row + len(events), max(0, len(self.events) - 1)))

    def append_events(self, events: List[LogEvent]) -> None:
        """Add newer events at the bottom, trimming the oldest over the limit."""
        if not events:
            return
        for event in events:
            self.events.append(event)
            self.log_table.add_row(*self._cells(event), key=_row_key(event))

        overflow = len(self.events) - self.max_lines
        if overflow > 0:
            for event in self.events[:overflow]:
                self.log_table.remove_row(_row_key(event))
            self.events = self.events[overflow:]

        if self.auto_scroll:
            self.scroll_to_end()

    def scroll_to_end(self) -> None:
        if self.events:
            self.log_table.move_cursor(row=len(self.events) - 1)

    def set_status(self, text: str) -> None:
        self.status_label.update(text)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        """Show the full message of the highlighted row."""
        if 0 <= event.cursor_row < len(self.events):
            self._update_log_details(self.events[event.cursor_row])

    def _update_log_details(self, log_event: LogEvent) -> None:
        header = (f"{TimeUtils.format_iso(log_event.timestamp)}  {log_event.stream_id}  "
                  f"(ingested {TimeUtils.format_iso(log_event.ingestion_time)})\n")
        self.log_details.update(Text(header, style=TIME_STYLE) + Text(log_event.message.rstrip('\n')))

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Handle row selection in the log table."""
        if 0 <= event.cursor_row < len(self.events):
            self.post_message(self.LogEventSelected(self.events[event.cursor_row]))

    class LogEventSelected(Message):
        """Message sent when a log event is selected."""

        def __init__(self, log_event: LogEvent) -> None:
            super().__init__()
            self.log_event = log_event
