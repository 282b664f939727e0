"""
Main application entry point for the CloudWatch log viewer.

This module provides the command runners behind the CLI: the interactive UI,
function listing, range export, live follow and configuration management.
Every runner returns a process exit code.
"""

import sys
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO

from .aws.lambda_functions import list_functions
from .aws.session import create_client, create_logs_client
from .config.config import Config
from .config.settings import Settings
from .core.browse_session import BrowseSession
from .core.errors import FatalError, LogViewerError
from .core.event_fetcher import EventFetcher
from .core.exporter import Exporter
from .core.models import ScopeEntry
from .core.tail_poller import TailPoller
from .utils.log_setup import resolve_log_level, setup_logging
from .utils.time_utils import TimeUtils


logger = logging.getLogger(__name__)


def load_config(config_path: Optional[Path] = None,
                cli_options: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration, apply CLI overrides and set up logging."""
    config = Config.load(config_path)
    if cli_options:
        config.apply_cli_overrides(cli_options)

    setup_logging(resolve_log_level(config.logging.level),
                  Path(config.logging.file) if config.logging.file else None)

    errors = config.validate()
    if errors:
        raise FatalError("Invalid configuration: " + "; ".join(errors))
    return config


def _report_fatal(error: LogViewerError) -> int:
    logger.error(str(error))
    print(f"Error: {error}", file=sys.stderr)
    return 1


@contextmanager
def _open_sink(output_path: Optional[Path]) -> Iterator[TextIO]:
    if output_path is None:
        yield sys.stdout
        return
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as sink:
        yield sink


def run_app(config_path: Optional[Path] = None, function: Optional[str] = None,
            cli_options: Optional[Dict[str, Any]] = None) -> int:
    """
    Run the interactive application.

    Args:
        config_path: Path to configuration file
        function: Lambda function whose logs are opened directly
        cli_options: Global CLI overrides (profile, region, theme, ...)

    Returns:
        Exit code
    """
    try:
        config = load_config(config_path, cli_options)
        logs_client = create_logs_client(config.aws)
        lambda_client = create_client('lambda', config.aws)

        # Imported here so the non-interactive commands do not load Textual.
        from .ui.app import LogViewerApp

        app = LogViewerApp(config, logs_client, lambda_client, initial_function=function)
        app.run()
        if app.fatal_error is not None:
            return _report_fatal(app.fatal_error)
        return 0

    except FatalError as e:
        return _report_fatal(e)
    except KeyboardInterrupt:
        return 0


def run_functions(config_path: Optional[Path] = None, output_format: str = 'text',
                  cli_options: Optional[Dict[str, Any]] = None) -> int:
    """
    Print the Lambda functions visible to the configured credentials.

    Args:
        config_path: Path to configuration file
        output_format: 'text' (one name per line) or 'json'
        cli_options: Global CLI overrides

    Returns:
        Exit code
    """
    try:
        config = load_config(config_path, cli_options)
        functions = list_functions(create_client('lambda', config.aws))

        if output_format == 'json':
            print(json.dumps([
                {
                    'name': function.name,
                    'runtime': function.runtime,
                    'last_modified': function.last_modified,
                    'log_group': function.log_group_name,
                }
                for function in functions
            ], indent=2))
        else:
            for function in functions:
                print(function.name)
        return 0

    except LogViewerError as e:
        return _report_fatal(e)
    except KeyboardInterrupt:
        return 0


def run_export(scope: List[ScopeEntry], config_path: Optional[Path] = None,
               count: Optional[int] = None, since: Optional[str] = None,
               until: Optional[str] = None, output_format: Optional[str] = None,
               output_path: Optional[Path] = None,
               cli_options: Optional[Dict[str, Any]] = None) -> int:
    """
    Export the most recent events, or a time range, of a scope.

    With ``since`` the range ``[since, until)`` is read forward and streamed
    to the sink as it is merged. Otherwise the newest ``count`` events are
    loaded backward and written oldest first.

    Args:
        scope: Log groups (and prefixes) to export
        config_path: Path to configuration file
        count: Number of most recent events to export
        since: Range start, a duration ("1h") or ISO-8601 timestamp
        until: Range end, same forms; defaults to now
        output_format: 'json-lines' or 'logfile'
        output_path: Output file; stdout when omitted
        cli_options: Global CLI overrides

    Returns:
        Exit code
    """
    cancel_event = threading.Event()
    try:
        config = load_config(config_path, cli_options)
        fmt = output_format or config.export.format
        fetcher = EventFetcher.from_config(create_logs_client(config.aws), config)
        session = BrowseSession(fetcher, scope, config.fetch, config.retry)

        if since is not None:
            start_time = TimeUtils.parse_since(since)
            end_time = TimeUtils.parse_since(until) if until else TimeUtils.now_ms()
            if end_time <= start_time:
                raise FatalError(f"Empty time range: {since} .. {until or 'now'}")
            events = session.iter_range(start_time, end_time, cancel_event)
        else:
            events = session.load_recent(count or config.fetch.recent_count, cancel_event)

        with _open_sink(output_path) as sink:
            exported = Exporter(sink, fmt).export(events, cancel_event)

        for warning in session.warnings:
            print(f"Warning: {warning}", file=sys.stderr)
        logger.info(f"Export finished: {exported} events")
        return 0

    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except LogViewerError as e:
        return _report_fatal(e)
    except KeyboardInterrupt:
        cancel_event.set()
        return 0


def run_follow(scope: List[ScopeEntry], config_path: Optional[Path] = None,
               output_format: Optional[str] = None, output_path: Optional[Path] = None,
               since: Optional[str] = None,
               cli_options: Optional[Dict[str, Any]] = None) -> int:
    """
    Follow a scope live, writing new events until interrupted.

    Args:
        scope: Log groups (and prefixes) to follow
        config_path: Path to configuration file
        output_format: 'json-lines' or 'logfile'
        output_path: Output file; stdout when omitted
        since: Start position, a duration or ISO-8601 timestamp; defaults to
            the configured lookback
        cli_options: Global CLI overrides

    Returns:
        Exit code
    """
    poller = None
    try:
        config = load_config(config_path, cli_options)
        fmt = output_format or config.export.format
        fetcher = EventFetcher.from_config(create_logs_client(config.aws), config)
        session = BrowseSession(fetcher, scope, config.fetch, config.retry)
        streams = session.resolve()

        start_time = TimeUtils.parse_since(since) if since else None
        poller = TailPoller(fetcher, scope, config.tail, config.retry,
                            streams=streams, start_time=start_time,
                            max_streams=config.fetch.max_streams)
        poller.start()

        with _open_sink(output_path) as sink:
            Exporter(sink, fmt).export(poller.events(), live=True)

        # The poller only stops on its own after a fatal error.
        if poller.error is not None:
            return _report_fatal(poller.error)
        return 0

    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except FatalError as e:
        return _report_fatal(e)
    except KeyboardInterrupt:
        return 0
    finally:
        if poller is not None:
            poller.stop(timeout=1.0)


def run_config_commands(config_path: Optional[Path] = None, set_options: Optional[List[tuple]] = None,
                        get_option: Optional[str] = None, list_config: bool = False,
                        validate_config: bool = False, reset_config: bool = False) -> int:
    """
    Run configuration management commands.

    Args:
        config_path: Path to configuration file
        set_options: List of (key, value) tuples to set
        get_option: Option to get
        list_config: Whether to list all configuration options
        validate_config: Whether to validate the configuration
        reset_config: Whether to reset to default configuration

    Returns:
        Exit code
    """
    try:
        # Determine config path (use default if not provided)
        if not config_path:
            config_path = Path(Settings.DEFAULT_CONFIG_PATH)
            if not config_path.exists():
                config_path = Path(Settings.DEFAULT_USER_CONFIG).expanduser()

        setup_logging(resolve_log_level(Settings.DEFAULT_LOG_LEVEL))

        if reset_config:
            Config().save(config_path)
            print(f"Configuration reset to defaults: {config_path}")
            return 0

        config = Config.load(config_path)

        if validate_config:
            errors = config.validate()
            if errors:
                print("Configuration validation failed:", file=sys.stderr)
                for error in errors:
                    print(f"  - {error}", file=sys.stderr)
                return 1
            print("Configuration is valid")
            return 0

        if set_options:
            for key, value in set_options:
                config.set_option(key, value)
            errors = config.validate()
            if errors:
                print(f"Refusing to save invalid configuration: {'; '.join(errors)}", file=sys.stderr)
                return 1
            config.save(config_path)
            print(f"Configuration updated: {config_path}")

        if get_option:
            print(f"{get_option} = {config.get_option(get_option)}")

        if list_config:
            print("Configuration:")
            for section, options in config.to_dict().items():
                print(f"  [{section}]")
                for key, value in options.items():
                    print(f"    {key} = {value}")
                print()

        return 0

    except KeyError as e:
        print(e.args[0] if e.args else str(e), file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        logger.error(f"Config command error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Main entry point for the application."""
    sys.exit(run_app())


if __name__ == "__main__":
    main()
