"""
Log screen module for the CloudWatch log viewer Textual UI.

The screen owns one BrowseSession for its scope. Loads run in worker threads
and report back through messages; follow mode runs a TailPoller whose deltas
are drained on a timer.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence
import logging
import re
import threading

from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.screen import Screen
from textual.timer import Timer
from textual.widgets import Footer, Header, Static

from ...config.config import Config
from ...core.browse_session import BrowseSession
from ...core.errors import FatalError, LogViewerError
from ...core.event_bus import Event, EventBus, SessionEvent
from ...core.event_fetcher import EventFetcher
from ...core.exporter import Exporter
from ...core.models import LogEvent, ScopeEntry
from ...core.rate_limiter import Cancelled
from ...core.tail_poller import TailPoller
from ..widgets.log_viewer import LogViewer


EXPORT_EXTENSIONS = {'json-lines': 'jsonl', 'logfile': 'log'}


class LogScreen(Screen):
    """
    Merged view over the log streams of one scope.
    """

    BINDINGS = [
        Binding("o", "load_older", "Older"),
        Binding("n", "load_newest", "Newest"),
        Binding("f", "toggle_follow", "Follow"),
        Binding("e", "export", "Export"),
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("g", "cursor_top", "Top", show=False),
        Binding("G", "cursor_bottom", "Bottom", show=False),
        Binding("q", "close", "Back"),
        Binding("escape", "close", "Back", show=False),
    ]

    def __init__(self, config: Config, fetcher: EventFetcher, scope: Sequence[ScopeEntry], title: str):
        """
        Initialize the log screen.

        Args:
            config: Application configuration
            fetcher: Event fetcher shared by the application
            scope: Log groups (and prefixes) shown on this screen
            title: Heading, usually the function name
        """
        super().__init__()
        self.config = config
        self.fetcher = fetcher
        self.scope = list(scope)
        self.title_text = title
        self.logger = logging.getLogger(self.__class__.__name__)

        self.event_bus = EventBus()
        self.event_bus.subscribe(SessionEvent.WARNING, self._on_session_warning)
        for event_type in (SessionEvent.EVENTS_APPENDED, SessionEvent.EVENTS_PREPENDED,
                           SessionEvent.SCOPE_CHANGED, SessionEvent.TAIL_STATE):
            self.event_bus.subscribe(event_type, self._on_session_changed)
        self.session = BrowseSession(fetcher, self.scope, config.fetch, config.retry, self.event_bus)

        self.poller: Optional[TailPoller] = None
        self._tail_timer: Optional[Timer] = None
        self._pending_tail: List[LogEvent] = []
        self._cancel = threading.Event()
        self._busy = False

        self.log_viewer = LogViewer(config, id="log-viewer")

    def compose(self) -> ComposeResult:
        """Create child widgets for the log screen."""
        yield Header()
        yield Static(self.title_text, classes="screen-title")
        yield self.log_viewer
        yield Footer()

    def on_mount(self) -> None:
        """Called when the screen is mounted."""
        self.log_viewer.log_table.focus()
        self._start_load("Loading most recent events...")
        self.open_session()

    def on_unmount(self) -> None:
        self._cancel.set()
        self._stop_follow()

    def _on_session_warning(self, event: Event) -> None:
        # Published from worker and poller threads; post_message is thread-safe.
        self.post_message(self.SessionWarning(str(event.data)))

    def _on_session_changed(self, event: Event) -> None:
        self.post_message(self.SessionChanged(event.type))

    def _start_load(self, text: str) -> None:
        self._busy = True
        self.log_viewer.set_status(text)

    def update_status(self) -> None:
        parts = [f"{len(self.session.window)} events", f"{len(self.session.streams)} streams"]
        if self.session.at_beginning:
            parts.append("beginning reached")
        parts.append("following" if self.poller is not None else "paused")
        if self._busy:
            parts.append("loading...")
        self.log_viewer.set_status(" | ".join(parts))

    def _run_load(self, load, mode: str) -> None:
        try:
            events = load(self._cancel)
        except Cancelled:
            return
        except FatalError as e:
            self.post_message(self.LoadFailed(e, fatal=True))
            return
        except LogViewerError as e:
            self.post_message(self.LoadFailed(e, fatal=False))
            return
        self.post_message(self.EventsLoaded(events, mode))

    @work(thread=True, exclusive=True, group="load")
    def open_session(self) -> None:
        self._run_load(self.session.open, "replace")

    @work(thread=True, exclusive=True, group="load")
    def load_older(self) -> None:
        self._run_load(self.session.load_older, "prepend")

    @work(thread=True, exclusive=True, group="load")
    def load_newest(self) -> None:
        self._run_load(self.session.load_newest, "append")

    @work(thread=True, group="export")
    def export_window(self, path: Path) -> None:
        """Write the current window to a file."""
        events = list(self.session.window)
        try:
            with open(path, 'w', encoding='utf-8') as sink:
                count = Exporter(sink, self.config.export.format).export(events)
        except OSError as e:
            self.post_message(self.SessionWarning(f"Export failed: {e}"))
            return
        self.post_message(self.ExportFinished(path, count))

    def on_log_screen_events_loaded(self, message: 'LogScreen.EventsLoaded') -> None:
        self._busy = False
        if message.mode == "replace":
            self.log_viewer.set_events(self.session.window)
        elif message.mode == "prepend":
            if message.events:
                self.log_viewer.prepend_events(message.events)
            elif self.session.at_beginning:
                self.notify("Beginning of the log reached")
        else:
            self.log_viewer.append_events(message.events)
            if not message.events:
                self.notify("No newer events")
        self.update_status()

    def on_log_screen_load_failed(self, message: 'LogScreen.LoadFailed') -> None:
        self._busy = False
        self.logger.error(f"Load failed: {message.error}")
        if message.fatal:
            self.app.fail(message.error)
            return
        self.notify(str(message.error), severity="error")
        self.update_status()

    def on_log_screen_session_warning(self, message: 'LogScreen.SessionWarning') -> None:
        self.notify(message.text, severity="warning")

    def on_log_screen_session_changed(self, message: 'LogScreen.SessionChanged') -> None:
        self.update_status()

    def on_log_screen_export_finished(self, message: 'LogScreen.ExportFinished') -> None:
        self.notify(f"Exported {message.count} events to {message.path}")

    def action_load_older(self) -> None:
        if self._busy:
            return
        if self.session.at_beginning:
            self.notify("Beginning of the log reached")
            return
        self._start_load("Loading older events...")
        self.load_older()

    def action_load_newest(self) -> None:
        if self._busy:
            return
        self._start_load("Loading newer events...")
        self.load_newest()

    def action_toggle_follow(self) -> None:
        if self.poller is not None:
            self._stop_follow()
            self.notify("Follow stopped")
        else:
            self._start_follow()
            self.notify("Following new events")
        self.update_status()

    def _start_follow(self) -> None:
        self.poller = TailPoller(
            self.fetcher, self.scope, self.config.tail, self.config.retry,
            streams=self.session.streams or None,
            start_time=self.session.tail_start_time(),
            max_streams=self.config.fetch.max_streams,
            event_bus=self.event_bus,
            watermarks=self.session.tail_watermarks(),
        )
        self.poller.start()
        self.log_viewer.auto_scroll = True
        self._tail_timer = self.set_interval(self.config.display.refresh_interval, self._drain_tail)

    def _stop_follow(self) -> None:
        if self._tail_timer is not None:
            self._tail_timer.stop()
            self._tail_timer = None
        if self.poller is not None:
            self.poller.stop(timeout=0)
            self.poller = None
        self._pending_tail = []

    def _drain_tail(self) -> None:
        """Move delivered tail events into the session and the view."""
        poller = self.poller
        if poller is None:
            return
        self._pending_tail.extend(poller.drain_ready())
        if self._pending_tail:
            # A running load holds the session lock; try again on the next tick.
            fresh = self.session.absorb(self._pending_tail, blocking=False)
            if fresh is not None:
                self._pending_tail = []
                self.log_viewer.append_events(fresh)
                self.update_status()

        if poller.stopped:
            error = poller.error
            self._stop_follow()
            self.update_status()
            if error is not None:
                self.app.fail(error)

    def action_export(self) -> None:
        fmt = self.config.export.format
        name = re.sub(r'[^A-Za-z0-9._-]+', '-', self.title_text).strip('-') or "logs"
        stamp = datetime.now().strftime('%Y%m%d-%H%M%S')
        path = Path.cwd() / f"{name}-{stamp}.{EXPORT_EXTENSIONS.get(fmt, 'log')}"
        self.export_window(path)

    def action_cursor_down(self) -> None:
        self.log_viewer.log_table.action_cursor_down()

    def action_cursor_up(self) -> None:
        self.log_viewer.log_table.action_cursor_up()

    def action_cursor_top(self) -> None:
        self.log_viewer.auto_scroll = False
        self.log_viewer.log_table.move_cursor(row=0)

    def action_cursor_bottom(self) -> None:
        self.log_viewer.auto_scroll = True
        self.log_viewer.scroll_to_end()

    def action_close(self) -> None:
        self._cancel.set()
        self._stop_follow()
        self.app.pop_screen()

    class EventsLoaded(Message):
        """Message sent when a load finished; mode is replace, prepend or append."""

        def __init__(self, events: List[LogEvent], mode: str) -> None:
            super().__init__()
            self.events = events
            self.mode = mode

    class LoadFailed(Message):
        """Message sent when a load failed."""

        def __init__(self, error: LogViewerError, fatal: bool) -> None:
            super().__init__()
            self.error = error
            self.fatal = fatal

    class SessionChanged(Message):
        """Message sent when the window, the scope or the follow state changed."""

        def __init__(self, change: str) -> None:
            super().__init__()
            self.change = change

    class SessionWarning(Message):
        """Message sent for non-fatal problems such as a missing log group."""

        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    class ExportFinished(Message):
        """Message sent when the window has been written to a file."""

        def __init__(self, path: Path, count: int) -> None:
            super().__init__()
            self.path = path
            self.count = count
