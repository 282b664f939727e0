"""
Settings management for the CloudWatch log viewer.

This module provides application-wide settings and constants.
"""

from dataclasses import dataclass


@dataclass
class Settings:
    """Application settings and constants."""

    # Application settings
    APP_NAME: str = "CloudWatch Log Viewer"
    APP_VERSION: str = "0.1.0"
    ENV_PREFIX: str = "CWLOGVIEWER_"

    # Default paths
    DEFAULT_CONFIG_PATH: str = "./cwlogviewer.yaml"
    DEFAULT_USER_CONFIG: str = "~/.cwlogviewer/config.yaml"

    # Provider limits
    MAX_PAGE_SIZE: int = 10000  # GetLogEvents limit
    MAX_DESCRIBE_STREAMS: int = 50  # DescribeLogStreams limit
    LAMBDA_PAGINATION_SIZE: int = 50  # ListFunctions returns at most 50
    LAMBDA_LOG_GROUP_PREFIX: str = "/aws/lambda/"

    # Fetch settings
    DEFAULT_PAGE_SIZE: int = 100
    DEFAULT_MAX_STREAMS: int = 50
    DEFAULT_MAX_PAGES_PER_LOAD: int = 20
    DEFAULT_RECENT_COUNT: int = 100

    # Tail settings
    DEFAULT_POLL_INTERVAL: float = 5.0  # seconds
    DEFAULT_DEDUP_WINDOW_MULTIPLIER: int = 3
    DEFAULT_STREAM_REFRESH_INTERVAL: float = 30.0  # seconds
    DEFAULT_LOOKBACK: float = 10.0  # seconds
    DEFAULT_QUEUE_SIZE: int = 1000

    # Retry settings
    DEFAULT_MAX_ATTEMPTS: int = 5
    DEFAULT_BASE_DELAY: float = 0.5  # seconds
    DEFAULT_MAX_DELAY: float = 30.0  # seconds
    DEFAULT_REQUESTS_PER_SECOND: float = 5.0
    DEFAULT_BURST: int = 5

    # UI settings
    DEFAULT_THEME: str = "default"
    DEFAULT_REFRESH_INTERVAL: float = 0.5  # seconds
    DEFAULT_MAX_LOG_LINES: int = 5000

    # Export settings
    EXPORT_FORMATS: tuple = ('json-lines', 'logfile')
    DEFAULT_EXPORT_FORMAT: str = 'logfile'

    # Logging settings
    DEFAULT_LOG_LEVEL: str = "WARNING"
