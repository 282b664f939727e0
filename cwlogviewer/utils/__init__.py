"""Utilities module for the CloudWatch log viewer."""

from .time_utils import TimeUtils
from .log_setup import setup_logging

__all__ = ['TimeUtils', 'setup_logging']
