"""Configuration module for the CloudWatch log viewer."""

from .config import Config
from .settings import Settings

__all__ = ['Config', 'Settings']
