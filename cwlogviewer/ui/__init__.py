"""
UI module for the CloudWatch log viewer.

This module provides the user interface components for the application.
"""

from .app import LogViewerApp
from .screens.function_list_screen import FunctionListScreen
from .screens.log_screen import LogScreen
from .widgets.log_viewer import LogViewer
from .themes.default import DefaultTheme

__all__ = [
    'LogViewerApp',
    'FunctionListScreen',
    'LogScreen',
    'LogViewer',
    'DefaultTheme'
]
