"""
CloudWatch Log Viewer - a terminal browser for AWS CloudWatch Logs.

This package lists Lambda functions, browses their log streams backward in
time as one merged, time-ordered view, follows new events live and exports
log ranges as JSON lines or plain log files.
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import config
from . import core
from . import aws
from . import utils

# Import CLI module for entry point
from . import cli

__all__ = [
    "config",
    "core",
    "aws",
    "utils",
    "cli",
    "__version__"
]


def main():
    """Main entry point for the CLI."""
    from .cli import main as cli_main
    return cli_main()
