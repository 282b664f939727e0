"""
Construction of boto3 clients from the configured profile and region.

The core never builds clients itself; the command runners create them here
and pass them in.
"""

import logging
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ProfileNotFound

from ..config.config import AwsConfig
from ..core.errors import AccessDenied, FatalError


logger = logging.getLogger(__name__)

# Retries are handled by the session rate limiter and backoff policy.
_CLIENT_CONFIG = BotoConfig(retries={'max_attempts': 1, 'mode': 'standard'})


def create_session(aws_config: Optional[AwsConfig] = None) -> boto3.Session:
    """
    Build a boto3 session for the configured profile and region.

    Falls back to the standard credential chain when no profile is set.

    Raises:
        AccessDenied: If the named profile does not exist
    """
    aws_config = aws_config or AwsConfig()
    session_kwargs = {}
    if aws_config.profile:
        session_kwargs['profile_name'] = aws_config.profile
    if aws_config.region:
        session_kwargs['region_name'] = aws_config.region

    try:
        session = boto3.Session(**session_kwargs)
    except ProfileNotFound as e:
        raise AccessDenied(f"AWS profile not found: {aws_config.profile}") from e

    logger.debug(f"Created AWS session (profile={aws_config.profile or 'default'}, "
                 f"region={session.region_name or 'unset'})")
    return session


def create_client(service: str, aws_config: Optional[AwsConfig] = None):
    """
    Create a boto3 client for a service.

    Raises:
        FatalError: If no region is configured
    """
    session = create_session(aws_config)
    try:
        return session.client(service, config=_CLIENT_CONFIG)
    except BotoCoreError as e:
        raise FatalError(f"Could not create {service} client: {e}") from e


def create_logs_client(aws_config: Optional[AwsConfig] = None):
    """Create a CloudWatch Logs client."""
    return create_client('logs', aws_config)
