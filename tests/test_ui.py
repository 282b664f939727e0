"""
Tests for the UI components of the CloudWatch log viewer.
"""

import asyncio
from unittest.mock import Mock, patch

from rich.text import Text
from textual.app import App, ComposeResult

from cwlogviewer.config.config import Config
from cwlogviewer.core.browse_session import BrowseSession
from cwlogviewer.core.event_bus import SessionEvent
from cwlogviewer.core.event_fetcher import EventFetcher
from cwlogviewer.core.models import LogEvent, ScopeEntry
from cwlogviewer.core.rate_limiter import RateLimiter
from cwlogviewer.ui.app import LogViewerApp
from cwlogviewer.ui.screens.function_list_screen import FunctionListScreen
from cwlogviewer.ui.screens.log_screen import EXPORT_EXTENSIONS, LogScreen
from cwlogviewer.ui.themes.default import (
    LEVEL_STYLES,
    RUNTIME_STYLE,
    THEME_NAME,
    DefaultTheme,
    level_of,
    resolve_theme_name,
    style_message,
)
from cwlogviewer.ui.widgets.log_viewer import LogViewer

from conftest import FakeLogsClient


class LogViewerHarness(App):
    """Minimal app hosting a single log viewer."""

    def compose(self) -> ComposeResult:
        yield LogViewer(id="log-viewer")


def test_ui_imports():
    """Test that UI modules can be imported without errors."""
    from cwlogviewer.ui import FunctionListScreen, LogScreen, LogViewer, LogViewerApp  # noqa: F401
    from cwlogviewer.ui.themes import DefaultTheme  # noqa: F401


class TestLogViewerApp:
    """Test cases for the main application."""

    def test_app_creation(self):
        """Test that the application wires one fetcher with a shared limiter."""
        config = Config()
        logs_client = FakeLogsClient()
        app = LogViewerApp(config, logs_client, Mock(), initial_function='orders')

        assert app.config is config
        assert isinstance(app.fetcher, EventFetcher)
        assert app.fetcher.client is logs_client
        assert isinstance(app.fetcher.limiter, RateLimiter)
        assert app.initial_function == 'orders'
        assert app.fatal_error is None

    def test_app_bindings(self):
        keys = [binding.key for binding in LogViewerApp.BINDINGS]
        assert 'ctrl+d' in keys


class TestScreens:
    """Test cases for the screens."""

    def test_function_list_screen_creation(self):
        lambda_client = Mock()
        screen = FunctionListScreen(lambda_client)

        assert screen.lambda_client is lambda_client
        assert screen.functions == []
        assert screen.selected_function is None

    def test_function_list_navigation_bindings(self):
        keys = {binding.key for binding in FunctionListScreen.BINDINGS}
        assert {'j', 'k', 'g', 'G', 'q'} <= keys

    def test_log_screen_creation(self):
        """Test that a log screen owns a browse session for its scope."""
        config = Config()
        fetcher = EventFetcher(FakeLogsClient())
        scope = [ScopeEntry('/aws/lambda/orders')]

        screen = LogScreen(config, fetcher, scope, 'orders')

        assert isinstance(screen.session, BrowseSession)
        assert screen.session.fetcher is fetcher
        assert screen.session.scope == scope
        assert screen.poller is None
        assert isinstance(screen.log_viewer, LogViewer)

    def test_log_screen_follows_session_changes(self):
        """Test that window, scope and follow changes all refresh the screen."""
        screen = LogScreen(Config(), EventFetcher(FakeLogsClient()),
                           [ScopeEntry('/aws/lambda/orders')], 'orders')
        changes = [SessionEvent.EVENTS_APPENDED, SessionEvent.EVENTS_PREPENDED,
                   SessionEvent.SCOPE_CHANGED, SessionEvent.TAIL_STATE]

        with patch.object(screen, 'post_message') as post_message:
            for change in changes:
                screen.event_bus.publish(change, [], source='test')

        messages = [call.args[0] for call in post_message.call_args_list]
        assert all(isinstance(message, LogScreen.SessionChanged) for message in messages)
        assert [message.change for message in messages] == changes

    def test_log_screen_bindings(self):
        keys = {binding.key for binding in LogScreen.BINDINGS}
        assert {'o', 'n', 'f', 'e', 'q'} <= keys

    def test_export_extensions(self):
        assert EXPORT_EXTENSIONS == {'json-lines': 'jsonl', 'logfile': 'log'}


class TestLogViewerWidget:
    """Test cases for the log viewer widget."""

    def test_widget_creation(self):
        config = Config()
        config.display.max_log_lines = 250

        viewer = LogViewer(config, id="log-viewer")

        assert viewer.max_lines == 250
        assert viewer.auto_scroll is True
        assert viewer.events == []

    def test_widget_without_config(self):
        assert LogViewer().max_lines == 5000

    def test_mounted_widget_shows_newest_events(self):
        """Test that a mounted viewer has its columns and trims the oldest rows."""
        events = [LogEvent('/aws/lambda/orders/s', ts, ts, f"id{ts}", f"m{ts}") for ts in (10, 20, 30)]

        async def scenario():
            app = LogViewerHarness()
            async with app.run_test() as pilot:
                viewer = app.query_one(LogViewer)
                viewer.max_lines = 2
                viewer.append_events(events)
                await pilot.pause()
                labels = [str(column.label) for column in viewer.log_table.columns.values()]
                return labels, viewer.log_table.row_count, [e.timestamp for e in viewer.events]

        labels, rows, shown = asyncio.run(scenario())

        assert labels == ['Time (UTC)', 'Stream', 'Message']
        assert rows == 2
        assert shown == [20, 30]

    def test_cells(self):
        """Test that rows show the stream name and styled message."""
        viewer = LogViewer()
        event = LogEvent('/aws/lambda/orders/2024/05/01/[$LATEST]abc', 0, 0, 'id', 'ERROR boom\n')

        time_cell, stream_cell, message_cell = viewer._cells(event)

        assert time_cell.plain == '1970-01-01 00:00:00.000'
        assert stream_cell.plain == '[$LATEST]abc'
        assert message_cell.plain == 'ERROR boom'


class TestTheme:
    """Test cases for the default theme and message styling."""

    def test_theme_definition(self):
        assert DefaultTheme.name == THEME_NAME
        assert DefaultTheme.dark is True

    def test_resolve_theme_name(self):
        assert resolve_theme_name(None) == THEME_NAME
        assert resolve_theme_name('default') == THEME_NAME
        assert resolve_theme_name('textual-light') == 'textual-light'

    def test_level_detection(self):
        assert level_of('[ERROR] 2024-05-01 failed') == 'ERROR'
        assert level_of('level=warn') is None
        assert level_of('just text') is None

    def test_style_message(self):
        """Test that messages are styled by severity and never parsed as markup."""
        runtime = style_message('START RequestId: 1234 Version: $LATEST\n')
        error = style_message('ERROR something failed')
        plain = style_message('[bold]not markup[/bold]')

        assert isinstance(plain, Text)
        assert runtime.style == RUNTIME_STYLE
        assert error.style == LEVEL_STYLES['ERROR']
        assert plain.plain == '[bold]not markup[/bold]'
