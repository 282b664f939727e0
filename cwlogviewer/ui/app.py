"""
Main Textual application UI for the CloudWatch log viewer.

This module provides the main UI application using Textual for terminal UI.
"""

from typing import Optional
import logging

from textual.app import App
from textual.binding import Binding

from ..aws.lambda_functions import scope_for_function
from ..config.config import Config
from ..config.settings import Settings
from ..core.errors import LogViewerError
from ..core.event_fetcher import EventFetcher
from .screens.function_list_screen import FunctionListScreen
from .screens.log_screen import LogScreen
from .themes.default import DefaultTheme, THEME_NAME, resolve_theme_name


class LogViewerApp(App):
    """
    Main Textual application for the CloudWatch log viewer.
    """

    TITLE = Settings.APP_NAME
    SUB_TITLE = "Lambda functions and their CloudWatch Logs"

    CSS = """
    .screen-title {
        text-style: bold;
        background: $panel;
        color: $primary;
        padding: 0 1;
    }
    #function-list-container, #log-viewer {
        height: 1fr;
    }
    #function-table, #log-table {
        height: 1fr;
    }
    #function-status, #log-header {
        height: 1;
    }
    #status-label {
        width: 1fr;
        content-align: right middle;
        color: $secondary;
    }
    .section-title {
        width: auto;
        text-style: bold;
    }
    .log-details {
        height: 6;
        border: round $secondary;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+d", "quit", "Quit"),
    ]

    def __init__(self, config: Config, logs_client, lambda_client,
                 initial_function: Optional[str] = None):
        """
        Initialize the application.

        Args:
            config: Application configuration
            logs_client: boto3 CloudWatch Logs client
            lambda_client: boto3 Lambda client
            initial_function: Function whose logs are opened on start
        """
        super().__init__()
        self.config = config
        self.lambda_client = lambda_client
        self.initial_function = initial_function
        self.logger = logging.getLogger(__name__)

        # One fetcher, and so one rate limiter, for every screen of the session
        self.fetcher = EventFetcher.from_config(logs_client, config)
        self.fatal_error: Optional[LogViewerError] = None

    def on_mount(self) -> None:
        """Called when app is mounted."""
        self.register_theme(DefaultTheme)
        theme = resolve_theme_name(self.config.display.theme)
        if theme not in self.available_themes:
            self.logger.warning(f"Unknown theme {theme}, using {THEME_NAME}")
            theme = THEME_NAME
        self.theme = theme

        self.push_screen(FunctionListScreen(self.lambda_client))
        if self.initial_function:
            self.open_function(self.initial_function)

    def open_function(self, name: str) -> None:
        """Open the log screen for a Lambda function."""
        self.logger.info(f"Opening logs of {name}")
        self.push_screen(LogScreen(self.config, self.fetcher, [scope_for_function(name)], name))

    def on_function_list_screen_function_selected(self, message: FunctionListScreen.FunctionSelected) -> None:
        self.open_function(message.function.name)

    def fail(self, error: LogViewerError) -> None:
        """Leave the application because of a fatal error."""
        self.logger.error(f"Fatal error: {error}")
        self.fatal_error = error
        self.exit(return_code=1)
