"""
Function list screen for the CloudWatch log viewer Textual UI.

Lists the account's Lambda functions sorted by name; selecting one opens its
log group in a LogScreen.
"""

from typing import List, Optional
import logging

from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.message import Message
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Static

from ...aws.lambda_functions import LambdaFunction, list_functions
from ...core.errors import FatalError, LogViewerError


class FunctionListScreen(Screen):
    """
    Screen listing Lambda functions.
    """

    BINDINGS = [
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("g", "cursor_top", "Top", show=False),
        Binding("G", "cursor_bottom", "Bottom", show=False),
        Binding("o", "open_function", "Open"),
        Binding("r", "reload", "Reload"),
        Binding("q", "app.quit", "Quit"),
    ]

    def __init__(self, lambda_client):
        """
        Initialize the function list screen.

        Args:
            lambda_client: boto3 Lambda client
        """
        super().__init__()
        self.lambda_client = lambda_client
        self.functions: List[LambdaFunction] = []
        self.logger = logging.getLogger(self.__class__.__name__)

        self.function_table = DataTable(id="function-table", cursor_type="row")
        self.status = Static("Loading functions...", id="function-status")

    def compose(self) -> ComposeResult:
        """Create child widgets for the function list screen."""
        yield Header()
        yield Vertical(
            Static("Lambda Functions", classes="screen-title"),
            self.function_table,
            self.status,
            id="function-list-container"
        )
        yield Footer()

    def on_mount(self) -> None:
        """Called when the screen is mounted."""
        self.function_table.add_column("Function", key="name")
        self.function_table.add_column("Runtime", key="runtime", width=14)
        self.function_table.add_column("Last Modified", key="last_modified", width=30)
        self.function_table.focus()
        self.load_functions()

    @work(thread=True, exclusive=True, group="functions")
    def load_functions(self) -> None:
        """Fetch the function list in a worker thread."""
        try:
            functions = list_functions(self.lambda_client)
        except FatalError as e:
            self.post_message(self.LoadFailed(e, fatal=True))
            return
        except LogViewerError as e:
            self.post_message(self.LoadFailed(e, fatal=False))
            return
        self.post_message(self.FunctionsLoaded(functions))

    def on_function_list_screen_functions_loaded(self, message: 'FunctionListScreen.FunctionsLoaded') -> None:
        self.populate_table(message.functions)

    def on_function_list_screen_load_failed(self, message: 'FunctionListScreen.LoadFailed') -> None:
        self.logger.error(f"Could not list functions: {message.error}")
        if message.fatal:
            self.app.fail(message.error)
            return
        self.status.update(f"Could not list functions: {message.error} (press r to retry)")

    def populate_table(self, functions: List[LambdaFunction]) -> None:
        """Populate the table with function data."""
        self.functions = functions
        self.function_table.clear()
        for function in functions:
            self.function_table.add_row(
                function.name,
                function.runtime or "-",
                function.last_modified or "-",
                key=function.name,
            )
        self.status.update(f"{len(functions)} functions - enter to open, q to quit")

    @property
    def selected_function(self) -> Optional[LambdaFunction]:
        row = self.function_table.cursor_row
        if 0 <= row < len(self.functions):
            return self.functions[row]
        return None

    def action_cursor_down(self) -> None:
        self.function_table.action_cursor_down()

    def action_cursor_up(self) -> None:
        self.function_table.action_cursor_up()

    def action_cursor_top(self) -> None:
        self.function_table.move_cursor(row=0)

    def action_cursor_bottom(self) -> None:
        if self.functions:
            self.function_table.move_cursor(row=len(self.functions) - 1)

    def action_reload(self) -> None:
        self.status.update("Loading functions...")
        self.load_functions()

    def action_open_function(self) -> None:
        function = self.selected_function
        if function is not None:
            self.post_message(self.FunctionSelected(function))

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Enter on a row opens the function."""
        self.action_open_function()

    class FunctionsLoaded(Message):
        """Message sent when the function list has been fetched."""

        def __init__(self, functions: List[LambdaFunction]) -> None:
            super().__init__()
            self.functions = functions

    class LoadFailed(Message):
        """Message sent when the function list could not be fetched."""

        def __init__(self, error: LogViewerError, fatal: bool) -> None:
            super().__init__()
            self.error = error
            self.fatal = fatal

    class FunctionSelected(Message):
        """Message sent when a function is chosen."""

        def __init__(self, function: LambdaFunction) -> None:
            super().__init__()
            self.function = function
