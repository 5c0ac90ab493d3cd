"""Utility modules for logging, errors, retries and AWS client management."""

from stackwright.utils.aws_client import AWSClientManager
from stackwright.utils.retry import RetryPolicy
from stackwright.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    OrchestratorError,
    ValidationError,
    ConfigValidationError,
    CycleError,
    DanglingReferenceError,
    PlanningError,
    APIError,
    TransientAPIError,
    PermanentAPIError,
    StateError,
    StateLockError,
    ErrorHandler,
    error_handler
)
from stackwright.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',

    # Retry
    'RetryPolicy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'OrchestratorError',
    'ValidationError',
    'ConfigValidationError',
    'CycleError',
    'DanglingReferenceError',
    'PlanningError',
    'APIError',
    'TransientAPIError',
    'PermanentAPIError',
    'StateError',
    'StateLockError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
