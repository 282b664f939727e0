"""
Configuration management for the CloudWatch log viewer.

This module provides classes and methods for loading, validating,
and managing application configuration with CLI integration support.
"""

import yaml
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, field, fields
from .settings import Settings


@dataclass
class AwsConfig:
    """AWS profile and region used to build the client handle."""
    profile: Optional[str] = None
    region: Optional[str] = None


@dataclass
class FetchConfig:
    """Configuration for paginated reads."""
    page_size: int = Settings.DEFAULT_PAGE_SIZE
    max_streams: int = Settings.DEFAULT_MAX_STREAMS
    max_pages_per_load: int = Settings.DEFAULT_MAX_PAGES_PER_LOAD
    recent_count: int = Settings.DEFAULT_RECENT_COUNT


@dataclass
class TailConfig:
    """Configuration for live tailing."""
    poll_interval: float = Settings.DEFAULT_POLL_INTERVAL  # seconds
    dedup_window_multiplier: int = Settings.DEFAULT_DEDUP_WINDOW_MULTIPLIER
    stream_refresh_interval: float = Settings.DEFAULT_STREAM_REFRESH_INTERVAL  # seconds
    lookback: float = Settings.DEFAULT_LOOKBACK  # seconds
    queue_size: int = Settings.DEFAULT_QUEUE_SIZE

    @property
    def dedup_window(self) -> float:
        """Retention horizon of the tail dedup window, in seconds."""
        return self.poll_interval * self.dedup_window_multiplier


@dataclass
class RetryConfig:
    """Configuration for retries and the shared rate limiter."""
    max_attempts: int = Settings.DEFAULT_MAX_ATTEMPTS
    base_delay: float = Settings.DEFAULT_BASE_DELAY  # seconds
    max_delay: float = Settings.DEFAULT_MAX_DELAY  # seconds
    requests_per_second: float = Settings.DEFAULT_REQUESTS_PER_SECOND
    burst: int = Settings.DEFAULT_BURST


@dataclass
class DisplayConfig:
    """Configuration for display settings."""
    theme: str = Settings.DEFAULT_THEME
    refresh_interval: float = Settings.DEFAULT_REFRESH_INTERVAL  # seconds
    max_log_lines: int = Settings.DEFAULT_MAX_LOG_LINES


@dataclass
class ExportConfig:
    """Configuration for exports."""
    format: str = Settings.DEFAULT_EXPORT_FORMAT


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = Settings.DEFAULT_LOG_LEVEL
    file: Optional[str] = None


SECTIONS = {
    'aws': AwsConfig,
    'fetch': FetchConfig,
    'tail': TailConfig,
    'retry': RetryConfig,
    'display': DisplayConfig,
    'export': ExportConfig,
    'logging': LoggingConfig,
}

# Environment variable -> (section, option)
ENV_OVERRIDES = {
    'CWLOGVIEWER_PROFILE': ('aws', 'profile'),
    'CWLOGVIEWER_REGION': ('aws', 'region'),
    'CWLOGVIEWER_PAGE_SIZE': ('fetch', 'page_size'),
    'CWLOGVIEWER_POLL_INTERVAL': ('tail', 'poll_interval'),
    'CWLOGVIEWER_EXPORT_FORMAT': ('export', 'format'),
    'CWLOGVIEWER_THEME': ('display', 'theme'),
    'CWLOGVIEWER_LOG_LEVEL': ('logging', 'level'),
}


def convert_value(current: Any, value: Any) -> Any:
    """Convert a string value to the type of the current option value."""
    if not isinstance(value, str):
        return value
    if isinstance(current, bool):
        return value.lower() in ['true', '1', 'yes', 'on']
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


@dataclass
class Config:
    """Main configuration class for the CloudWatch log viewer."""
    aws: AwsConfig = field(default_factory=AwsConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    tail: TailConfig = field(default_factory=TailConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        # Environment variable overrides
        for env_name, (section, option) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                section_obj = getattr(self, section)
                setattr(section_obj, option, convert_value(getattr(section_obj, option), value))

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from a YAML file or return default configuration.

        Args:
            config_path: Path to configuration file

        Returns:
            Config instance
        """
        # Check for config path in environment if not provided
        if not config_path:
            env_config_path = os.getenv('CWLOGVIEWER_CONFIG')
            if env_config_path:
                config_path = Path(env_config_path)
            else:
                for candidate in (Path(Settings.DEFAULT_CONFIG_PATH),
                                  Path(Settings.DEFAULT_USER_CONFIG).expanduser()):
                    if candidate.exists():
                        config_path = candidate
                        break

        if config_path and config_path.exists():
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)
                if data is None:
                    data = {}
                return cls.from_dict(data)
        else:
            # Return default configuration
            return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """
        Create Config instance from dictionary.

        Unknown sections and options are ignored.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance
        """
        config_data = {}
        for name, section_cls in SECTIONS.items():
            section_data = data.get(name)
            if isinstance(section_data, dict):
                known = {f.name for f in fields(section_cls)}
                config_data[name] = section_cls(**{k: v for k, v in section_data.items() if k in known})
            else:
                config_data[name] = section_cls()

        return cls(**config_data)

    @classmethod
    def get_default_config_dict(cls) -> Dict[str, Any]:
        """Return the default configuration as a dictionary."""
        return {name: asdict(section_cls()) for name, section_cls in SECTIONS.items()}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert Config instance to dictionary.

        Returns:
            Configuration dictionary
        """
        return asdict(self)

    def save(self, config_path: Path) -> None:
        """
        Save configuration to a YAML file.

        Args:
            config_path: Path to save configuration file
        """
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def get_option(self, key: str) -> Any:
        """
        Get an option by its 'section.option' key.

        Raises:
            KeyError: If the key does not name a known option
        """
        section, option = self._split_key(key)
        return getattr(getattr(self, section), option)

    def set_option(self, key: str, value: Any) -> None:
        """
        Set an option by its 'section.option' key, converting string values.

        Raises:
            KeyError: If the key does not name a known option
            ValueError: If the value cannot be converted
        """
        section, option = self._split_key(key)
        section_obj = getattr(self, section)
        setattr(section_obj, option, convert_value(getattr(section_obj, option), value))

    def _split_key(self, key: str):
        parts = key.split('.')
        if len(parts) != 2:
            raise KeyError(f"Invalid option format: {key}. Use 'section.option' format")
        section, option = parts
        if section not in SECTIONS:
            raise KeyError(f"Unknown section: {section}")
        if option not in {f.name for f in fields(SECTIONS[section])}:
            raise KeyError(f"Unknown option: {option} in section {section}")
        return section, option

    def validate(self) -> List[str]:
        """
        Validate the configuration and return a list of errors.

        Returns:
            List of validation errors, empty if valid
        """
        errors = []

        # Validate fetch settings
        if not 1 <= self.fetch.page_size <= Settings.MAX_PAGE_SIZE:
            errors.append(f"Fetch page size must be between 1 and {Settings.MAX_PAGE_SIZE}")
        if self.fetch.max_streams <= 0:
            errors.append("Fetch max streams must be positive")
        if self.fetch.max_pages_per_load <= 0:
            errors.append("Fetch max pages per load must be positive")
        if self.fetch.recent_count <= 0:
            errors.append("Fetch recent count must be positive")

        # Validate tail settings
        if self.tail.poll_interval <= 0:
            errors.append("Tail poll interval must be positive")
        if self.tail.dedup_window_multiplier < 1:
            errors.append("Tail dedup window multiplier must be at least 1")
        if self.tail.stream_refresh_interval <= 0:
            errors.append("Tail stream refresh interval must be positive")
        if self.tail.lookback < 0:
            errors.append("Tail lookback must not be negative")
        if self.tail.queue_size <= 0:
            errors.append("Tail queue size must be positive")

        # Validate retry settings
        if self.retry.max_attempts < 1:
            errors.append("Retry max attempts must be at least 1")
        if self.retry.base_delay <= 0 or self.retry.max_delay < self.retry.base_delay:
            errors.append("Retry delays must be positive and max_delay >= base_delay")
        if self.retry.requests_per_second <= 0:
            errors.append("Retry requests per second must be positive")

        # Validate display settings
        if self.display.refresh_interval <= 0:
            errors.append("Display refresh interval must be positive")
        if self.display.max_log_lines <= 0:
            errors.append("Display max log lines must be positive")

        if self.export.format not in Settings.EXPORT_FORMATS:
            errors.append(f"Invalid export format: {self.export.format}. "
                          f"Valid values: {', '.join(Settings.EXPORT_FORMATS)}")

        # Validate logging level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.logging.level.upper() not in valid_log_levels:
            errors.append(f"Invalid logging level: {self.logging.level}. Valid values: {', '.join(valid_log_levels)}")

        return errors

    def get_env_overrides(self) -> Dict[str, Any]:
        """
        Get configuration values that are overridden by environment variables.

        Returns:
            Dictionary of environment variable overrides
        """
        overrides = {}
        for env_name, (section, option) in ENV_OVERRIDES.items():
            if os.getenv(env_name):
                overrides[f"{section}.{option}"] = os.getenv(env_name)
        return overrides

    def apply_cli_overrides(self, cli_options: Dict[str, Any]) -> None:
        """
        Apply command-line interface options as overrides to the configuration.

        Args:
            cli_options: Dictionary of CLI options to apply
        """
        if cli_options.get('profile'):
            self.aws.profile = cli_options['profile']
        if cli_options.get('region'):
            self.aws.region = cli_options['region']
        if cli_options.get('theme'):
            self.display.theme = cli_options['theme']
        if cli_options.get('log_level'):
            self.logging.level = cli_options['log_level']
        if cli_options.get('poll_interval'):
            self.tail.poll_interval = cli_options['poll_interval']
        if cli_options.get('page_size'):
            self.fetch.page_size = cli_options['page_size']
        if cli_options.get('format'):
            self.export.format = cli_options['format']
