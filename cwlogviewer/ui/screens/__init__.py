"""
Screens module for the CloudWatch log viewer UI.

This module provides the screen components for the application.
"""

from .function_list_screen import FunctionListScreen
from .log_screen import LogScreen

__all__ = [
    'FunctionListScreen',
    'LogScreen'
]
