"""
Lambda function discovery.

Lambda functions are the log sources the viewer lists by default: each one
writes to the log group ``/aws/lambda/<function name>``.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config.settings import Settings
from ..core.errors import classify_client_error
from ..core.models import LogGroup, ScopeEntry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LambdaFunction:
    """A Lambda function and the metadata shown in the function list."""
    name: str
    runtime: Optional[str] = None
    last_modified: Optional[str] = None
    description: Optional[str] = None

    @property
    def log_group(self) -> LogGroup:
        return LogGroup(f"{Settings.LAMBDA_LOG_GROUP_PREFIX}{self.name}", resource=self.name)

    @property
    def log_group_name(self) -> str:
        return self.log_group.name


def list_functions(client) -> List[LambdaFunction]:
    """
    List every Lambda function visible to the client, sorted by name.

    Args:
        client: boto3 Lambda client

    Returns:
        Functions sorted by name

    Raises:
        AccessDenied: On authorization failures
        TransientError: On throttling or network failures
    """
    functions = []
    try:
        paginator = client.get_paginator('list_functions')
        pages = paginator.paginate(PaginationConfig={'PageSize': Settings.LAMBDA_PAGINATION_SIZE})
        for page in pages:
            for item in page.get('Functions', []):
                name = item.get('FunctionName')
                if not name:
                    continue
                functions.append(LambdaFunction(
                    name=name,
                    runtime=item.get('Runtime'),
                    last_modified=item.get('LastModified'),
                    description=item.get('Description') or None,
                ))
    except (ClientError, BotoCoreError) as e:
        raise classify_client_error(e) from e

    functions.sort(key=lambda function: function.name)
    logger.info(f"Found {len(functions)} Lambda functions")
    return functions


def scope_for_function(name: str) -> ScopeEntry:
    """
    Scope entry for a function's log group.

    Accepts a plain function name or a function ARN.
    """
    if name.startswith('arn:'):
        # arn:aws:lambda:<region>:<account>:function:<name>[:<qualifier>]
        parts = name.split(':')
        if len(parts) >= 7:
            name = parts[6]
    return ScopeEntry(f"{Settings.LAMBDA_LOG_GROUP_PREFIX}{name}")
