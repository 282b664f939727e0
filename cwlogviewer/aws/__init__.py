"""AWS client construction and resource discovery for the CloudWatch log viewer."""

from .session import create_client, create_logs_client
from .lambda_functions import LambdaFunction, list_functions, scope_for_function

__all__ = ['create_client', 'create_logs_client', 'LambdaFunction', 'list_functions', 'scope_for_function']
