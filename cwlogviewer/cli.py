"""
Command Line Interface for the CloudWatch log viewer.

This module provides a CLI for launching the interactive viewer, listing
Lambda functions, exporting log ranges and following logs live.
"""

import click
import sys
import yaml
from pathlib import Path
from typing import List, Optional
import os

from .main import run_app, run_config_commands, run_export, run_follow, run_functions
from . import __version__
from .aws.lambda_functions import scope_for_function
from .config.config import Config
from .config.settings import Settings
from .core.models import ScopeEntry
from .utils.log_setup import LOG_LEVEL_ENV


def _set_verbosity(verbose: int) -> None:
    if verbose == 1:
        os.environ[LOG_LEVEL_ENV] = 'INFO'
    elif verbose >= 2:
        os.environ[LOG_LEVEL_ENV] = 'DEBUG'


def _build_scope(function: Optional[str], groups: List[str], prefix: Optional[str]) -> List[ScopeEntry]:
    if function and groups:
        raise click.UsageError("Give either a FUNCTION or --group, not both")
    if function:
        entry = scope_for_function(function)
        return [ScopeEntry(entry.log_group_name, prefix)]
    if groups:
        return [ScopeEntry(group, prefix) for group in groups]
    raise click.UsageError("A FUNCTION or at least one --group is required")


scope_options = [
    click.argument('function', required=False),
    click.option('--group', '-g', 'groups', multiple=True,
                 help='Log group to read (repeatable); instead of FUNCTION'),
    click.option('--prefix', '-p', type=str, default=None,
                 help='Only read streams whose name starts with this prefix'),
]

output_options = [
    click.option('--format', 'output_format', type=click.Choice(list(Settings.EXPORT_FORMATS)),
                 default=None, help='Output format (default: from configuration, logfile)'),
    click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path),
                 help='Output file (default: stdout)'),
]


def add_options(options):
    def decorator(func):
        for option in reversed(options):
            func = option(func)
        return func
    return decorator


@click.group(invoke_without_command=True,
             help="CloudWatch Log Viewer - browse, follow and export AWS CloudWatch Logs.")
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path),
              help='Path to configuration file')
@click.option('--profile', type=str, default=None, help='AWS profile name')
@click.option('--region', type=str, default=None, help='AWS region')
@click.option('--version', '-v', is_flag=True, help='Show version and exit')
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.option('--theme', type=str, default=None, help='UI theme to use')
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], profile: Optional[str], region: Optional[str],
        version: bool, verbose: int, theme: Optional[str]) -> None:
    """
    CloudWatch Log Viewer - browse, follow and export AWS CloudWatch Logs.

    Without a command the interactive viewer starts on the list of Lambda
    functions.

    Usage Examples:
      cwlogviewer                                   # Launch interactive UI
      cwlogviewer browse my-function                # Open a function's logs
      cwlogviewer functions                         # List Lambda functions
      cwlogviewer export my-function -n 500         # Newest 500 events
      cwlogviewer export -g /app/api --since 1h     # Last hour of a log group
      cwlogviewer follow my-function                # Tail until Ctrl-C
      cwlogviewer config --list                     # List configuration
    """
    if version:
        click.echo(f"{Settings.APP_NAME} v{__version__}")
        return

    _set_verbosity(verbose)

    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['cli_options'] = {'profile': profile, 'region': region, 'theme': theme}

    if ctx.invoked_subcommand is None:
        exit_code = run_app(config_path=config, cli_options=ctx.obj['cli_options'])
        sys.exit(exit_code)


@cli.command(help="Browse a function's logs in the interactive viewer.")
@click.argument('function', required=False)
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.pass_context
def browse(ctx: click.Context, function: Optional[str], verbose: int) -> None:
    """
    Browse a function's logs in the interactive viewer.

    Without FUNCTION the viewer starts on the function list.

    Examples:
      cwlogviewer browse                    # Pick a function from the list
      cwlogviewer browse my-function        # Open its logs directly
    """
    _set_verbosity(verbose)
    exit_code = run_app(config_path=ctx.obj.get('config_path'), function=function,
                        cli_options=ctx.obj.get('cli_options'))
    sys.exit(exit_code)


@cli.command(help="List Lambda functions, sorted by name.")
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.pass_context
def functions(ctx: click.Context, as_json: bool, verbose: int) -> None:
    """
    List Lambda functions, sorted by name.

    Examples:
      cwlogviewer functions                 # One name per line
      cwlogviewer functions --json          # With runtime and log group
    """
    _set_verbosity(verbose)
    exit_code = run_functions(config_path=ctx.obj.get('config_path'),
                              output_format='json' if as_json else 'text',
                              cli_options=ctx.obj.get('cli_options'))
    sys.exit(exit_code)


@cli.command(help="Export recent events or a time range.")
@add_options(scope_options)
@click.option('--count', '-n', type=click.IntRange(min=1), default=None,
              help='Number of most recent events (default: fetch.recent_count)')
@click.option('--since', '-s', type=str, default=None,
              help='Range start: duration (30m, 2h, 1d) or ISO-8601 timestamp')
@click.option('--until', '-u', type=str, default=None,
              help='Range end (exclusive); same forms as --since, default now')
@add_options(output_options)
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.pass_context
def export(ctx: click.Context, function: Optional[str], groups: List[str], prefix: Optional[str],
           count: Optional[int], since: Optional[str], until: Optional[str],
           output_format: Optional[str], output: Optional[Path], verbose: int) -> None:
    """
    Export recent events or a time range.

    Events of every stream in the scope are merged into one time-ordered
    sequence before they are written.

    Examples:
      cwlogviewer export my-function -n 1000 -o out.log
      cwlogviewer export my-function --since 2h --format json-lines
      cwlogviewer export -g /app/api -g /app/worker --since 2024-05-01T00:00:00Z --until 1h
    """
    if count is not None and since is not None:
        raise click.UsageError("--count and --since are mutually exclusive")
    if until is not None and since is None:
        raise click.UsageError("--until requires --since")
    _set_verbosity(verbose)

    scope = _build_scope(function, list(groups), prefix)
    exit_code = run_export(scope, config_path=ctx.obj.get('config_path'), count=count,
                           since=since, until=until, output_format=output_format,
                           output_path=output, cli_options=ctx.obj.get('cli_options'))
    sys.exit(exit_code)


@cli.command(help="Follow new events live until interrupted.")
@add_options(scope_options)
@click.option('--since', '-s', type=str, default=None,
              help='Start from this time instead of the configured lookback')
@click.option('--interval', '-i', 'poll_interval', type=click.FloatRange(min=0.5), default=None,
              help='Polling interval in seconds (default: tail.poll_interval)')
@add_options(output_options)
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.pass_context
def follow(ctx: click.Context, function: Optional[str], groups: List[str], prefix: Optional[str],
           since: Optional[str], poll_interval: Optional[float], output_format: Optional[str],
           output: Optional[Path], verbose: int) -> None:
    """
    Follow new events live until interrupted.

    Examples:
      cwlogviewer follow my-function
      cwlogviewer follow -g /app/api --format json-lines -o live.jsonl
      cwlogviewer follow my-function -i 2
    """
    _set_verbosity(verbose)
    scope = _build_scope(function, list(groups), prefix)
    cli_options = dict(ctx.obj.get('cli_options') or {})
    cli_options['poll_interval'] = poll_interval
    exit_code = run_follow(scope, config_path=ctx.obj.get('config_path'),
                           output_format=output_format, output_path=output, since=since,
                           cli_options=cli_options)
    sys.exit(exit_code)


@cli.command('config', help="Manage configuration settings.")
@click.option('--config', '-c', type=click.Path(path_type=Path),
              help=f'Path to configuration file (default: {Settings.DEFAULT_CONFIG_PATH})')
@click.option('--set', 'set_options', multiple=True, nargs=2, metavar='KEY VALUE',
              help='Set configuration option (e.g., --set tail.poll_interval 2)')
@click.option('--get', 'get_option', type=str,
              help='Get specific configuration option')
@click.option('--list', 'list_config', is_flag=True,
              help='List all configuration options')
@click.option('--validate', 'validate_config', is_flag=True,
              help='Validate configuration file')
@click.option('--reset', 'reset_config', is_flag=True,
              help='Reset to default configuration')
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.pass_context
def config_cmd(ctx: click.Context, config: Optional[Path], set_options: List[tuple],
               get_option: str, list_config: bool, validate_config: bool,
               reset_config: bool, verbose: int) -> None:
    """
    Manage configuration settings.

    Configuration options follow the format 'section.option', such as:
    - aws.profile
    - fetch.page_size
    - tail.poll_interval
    - export.format
    - logging.level

    Examples:
      cwlogviewer config --list                           # List all config options
      cwlogviewer config --get tail.poll_interval         # Get specific option
      cwlogviewer config --set aws.region eu-west-1       # Set an option
      cwlogviewer config --validate                       # Validate config
      cwlogviewer config --reset                          # Reset to defaults
    """
    _set_verbosity(verbose)
    exit_code = run_config_commands(config_path=config or ctx.obj.get('config_path'),
                                    set_options=list(set_options),
                                    get_option=get_option, list_config=list_config,
                                    validate_config=validate_config,
                                    reset_config=reset_config)
    sys.exit(exit_code)


@cli.command(help="Initialize a new configuration file.")
def init() -> None:
    """
    Initialize a new configuration file.

    Creates a default cwlogviewer.yaml file in the current directory.

    Example:
      cwlogviewer init    # Create default configuration
    """
    config_path = Path(Settings.DEFAULT_CONFIG_PATH)
    if config_path.exists():
        click.echo(f"Configuration file already exists: {config_path}", err=True)
        sys.exit(1)

    default_config = Config.get_default_config_dict()

    with open(config_path, 'w') as f:
        yaml.dump(default_config, f, default_flow_style=False)

    click.echo(f"Created default configuration file: {config_path}")


def main() -> None:
    """Main CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
