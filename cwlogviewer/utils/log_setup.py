import logging
import os
import sys
from pathlib import Path
from typing import Optional


LOG_LEVEL_ENV = "CWLOGVIEWER_LOG_LEVEL"


def resolve_log_level(configured: str = "WARNING") -> str:
    """Log level from the environment (set by -V/-VV) or the configuration."""
    return os.environ.get(LOG_LEVEL_ENV) or configured


def setup_logging(log_level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """
    Setup logging for the application.

    Console logs go to stderr so that exported events on stdout stay clean.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.WARNING)
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
        force=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # botocore is chatty at INFO
    if numeric_level > logging.DEBUG:
        logging.getLogger('botocore').setLevel(logging.WARNING)
        logging.getLogger('boto3').setLevel(logging.WARNING)
