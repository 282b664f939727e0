"""
Error taxonomy for the CloudWatch log viewer.

Provider failures are classified once, here, into the exception types that
the fetch, browse and tail layers know how to handle:

- TransientError (and RateLimited): retried with backoff
- PartialScopeError (and GroupNotFound): the stream is dropped, the session goes on
- FatalError (AccessDenied, ScopeError): the command aborts
- DataAnomaly: a malformed event, skipped and counted
"""

from typing import Optional

from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)


class LogViewerError(Exception):
    """Base exception for log viewer errors."""

    def __init__(self, message: str, stream_id: Optional[str] = None):
        super().__init__(message)
        self.stream_id = stream_id


class TransientError(LogViewerError):
    """Raised for failures that are expected to succeed on retry."""
    pass


class RateLimited(TransientError):
    """Raised when the provider throttles a request."""
    pass


class RetryBudgetExceeded(TransientError):
    """Raised when a transient failure persists past the retry budget."""
    pass


class ExpiredCursor(TransientError):
    """Raised when the provider rejects a continuation token."""
    pass


class PartialScopeError(LogViewerError):
    """Raised when one stream or group of a scope is unavailable."""
    pass


class GroupNotFound(PartialScopeError):
    """Raised when a log group or stream no longer exists."""
    pass


class FatalError(LogViewerError):
    """Raised for failures that must abort the session or command."""
    pass


class AccessDenied(FatalError):
    """Raised for authentication or authorization failures."""
    pass


class ScopeError(FatalError):
    """Raised when a scope resolves to zero readable streams."""
    pass


class DataAnomaly(LogViewerError):
    """Raised when an event payload is malformed."""
    pass


THROTTLING_CODES = {
    'ThrottlingException',
    'Throttling',
    'TooManyRequestsException',
    'RequestLimitExceeded',
    'LimitExceededException',
}

ACCESS_DENIED_CODES = {
    'AccessDeniedException',
    'AccessDenied',
    'UnauthorizedOperation',
    'UnrecognizedClientException',
    'InvalidClientTokenId',
    'ExpiredTokenException',
    'ExpiredToken',
    'InvalidSignatureException',
}

NOT_FOUND_CODES = {
    'ResourceNotFoundException',
}

TRANSIENT_CODES = {
    'ServiceUnavailableException',
    'InternalFailure',
    'InternalServerError',
    'RequestTimeout',
    'RequestTimeoutException',
}


def classify_client_error(error: Exception, stream_id: Optional[str] = None) -> LogViewerError:
    """
    Map a botocore exception to the log viewer error taxonomy.

    Args:
        error: Exception raised by a boto3 client call
        stream_id: Stream the call was made for, if any

    Returns:
        The classified error (not raised)
    """
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AccessDenied(f"AWS credentials unavailable: {error}", stream_id)

    if isinstance(error, (BotoConnectionError, ReadTimeoutError)):
        return TransientError(f"Network error: {error}", stream_id)

    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        message = error.response.get('Error', {}).get('Message', str(error))

        if code in THROTTLING_CODES:
            return RateLimited(f"Request throttled ({code}): {message}", stream_id)
        if code in ACCESS_DENIED_CODES:
            return AccessDenied(f"Access denied ({code}): {message}", stream_id)
        if code in NOT_FOUND_CODES:
            return GroupNotFound(f"Not found: {message}", stream_id)
        if code in TRANSIENT_CODES:
            return TransientError(f"Service error ({code}): {message}", stream_id)

        return FatalError(f"AWS request failed ({code}): {message}", stream_id)

    return FatalError(f"Unexpected error: {error}", stream_id)
