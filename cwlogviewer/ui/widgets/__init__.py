"""
Widgets module for the CloudWatch log viewer UI.

This module provides the widget components for the application.
"""

from .log_viewer import LogViewer

__all__ = [
    'LogViewer'
]
