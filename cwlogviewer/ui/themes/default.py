"""
Default theme module for the CloudWatch log viewer Textual UI.

This module defines the application theme and the styles used to highlight
log lines by severity.
"""

import re
from typing import Optional

from rich.style import Style
from rich.text import Text
from textual.theme import Theme


THEME_NAME = "cwlogviewer-default"

DefaultTheme = Theme(
    name=THEME_NAME,
    primary="#007BFF",
    secondary="#6C757D",
    warning="#FFC107",
    error="#DC3545",
    success="#28A745",
    accent="#17A2B8",
    dark=True,
    background="#1E1E1E",
    surface="#2D2D2D",
    panel="#3E3E3E",
)

# Severity markers found in typical Lambda and application output
LEVEL_STYLES = {
    'CRITICAL': Style(color="#FF5555", bold=True),
    'FATAL': Style(color="#FF5555", bold=True),
    'ERROR': Style(color="#DC3545"),
    'WARNING': Style(color="#FFC107"),
    'WARN': Style(color="#FFC107"),
    'INFO': Style(color="#8AB4F8"),
    'DEBUG': Style(color="#888888"),
    'TRACE': Style(color="#666666"),
}

# START/END/REPORT lines written by the Lambda runtime
RUNTIME_STYLE = Style(color="#6C757D", italic=True)

_LEVEL_RE = re.compile(r'\b(' + '|'.join(LEVEL_STYLES) + r')\b')
_RUNTIME_PREFIXES = ('START RequestId:', 'END RequestId:', 'REPORT RequestId:', 'INIT_START')

STREAM_STYLE = Style(color="#17A2B8")
TIME_STYLE = Style(color="#AAAAAA")


def resolve_theme_name(configured: Optional[str]) -> str:
    """Map the configured theme to a registered Textual theme name."""
    if not configured or configured == "default":
        return THEME_NAME
    return configured


def level_of(message: str) -> Optional[str]:
    """First severity marker in a message, if any."""
    match = _LEVEL_RE.search(message[:200])
    return match.group(1) if match else None


def style_message(message: str) -> Text:
    """
    Build a styled cell for a log message.

    The message is never interpreted as markup, so brackets in log output
    are shown as they are.
    """
    text = message.rstrip('\n')
    if text.startswith(_RUNTIME_PREFIXES):
        return Text(text, style=RUNTIME_STYLE)
    level = level_of(text)
    if level is None:
        return Text(text)
    return Text(text, style=LEVEL_STYLES[level])
