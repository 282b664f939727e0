"""
Themes module for the CloudWatch log viewer UI.

This module provides the theme components for the application.
"""

from .default import DefaultTheme, resolve_theme_name, style_message

__all__ = [
    'DefaultTheme',
    'resolve_theme_name',
    'style_message'
]
