"""Error handling framework for provisioning runs."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, asdict
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a run."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    PLANNING = "planning"
    AWS = "aws"
    NETWORK = "network"
    THROTTLING = "throttling"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    STATE = "state"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot start or continue
    ERROR = "error"  # Resource failed, independent branches continue
    WARNING = "warning"
    INFO = "info"


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize orchestrator error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.cause:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ValidationError(OrchestratorError):
    """Invalid declarations. Raised before any external call is made."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.VALIDATION)
        super().__init__(message, severity=ErrorSeverity.CRITICAL, **kwargs)


class ConfigValidationError(ValidationError):
    """Declaration file could not be parsed or failed schema validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class CycleError(ValidationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: List[str], **kwargs):
        self.cycle = cycle
        super().__init__(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            category=ErrorCategory.DEPENDENCY,
            context=ErrorContext(resource_id=cycle[0] if cycle else None),
            **kwargs
        )


class DanglingReferenceError(ValidationError):
    """A resource depends on an id that is not declared."""

    def __init__(self, resource_id: str, missing_id: str, **kwargs):
        self.resource_id = resource_id
        self.missing_id = missing_id
        super().__init__(
            f"Resource '{resource_id}' depends on '{missing_id}' which is not declared",
            category=ErrorCategory.DEPENDENCY,
            context=ErrorContext(resource_id=resource_id),
            **kwargs
        )


class PlanningError(OrchestratorError):
    """Internal invariant violated while building a plan."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PLANNING,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class APIError(OrchestratorError):
    """Error returned by a cloud adapter call."""

    retryable = False

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.AWS)
        super().__init__(message, severity=ErrorSeverity.ERROR, **kwargs)


class TransientAPIError(APIError):
    """Retryable adapter error: throttling, timeouts, service unavailability."""

    retryable = True


class PermanentAPIError(APIError):
    """Non-retryable adapter error: bad request, permission denied."""


class StateError(OrchestratorError):
    """Error related to state persistence."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class StateLockError(StateError):
    """Another run holds the run lock."""


class ErrorHandler:
    """Classifies raw exceptions from adapters into transient or permanent errors."""

    # AWS error codes that are worth retrying
    TRANSIENT_ERROR_CODES = {
        'RequestTimeout',
        'RequestTimeoutException',
        'ServiceUnavailable',
        'ServiceUnavailableException',
        'ThrottlingException',
        'Throttling',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'RequestThrottled',
        'PriorRequestNotComplete',
        'InternalError',
        'InternalFailure',
        'ServerException',
        'ServiceException',
        'DependencyViolation',
        'IncorrectState',
        'InvalidDBInstanceState',
        'ResourceInUseException',
    }

    # Known permanent AWS error codes and their suggestions
    AWS_ERROR_MAPPING = {
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'Verify you have the required permissions for this operation',
            ]
        },
        'AccessDeniedException': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
            ]
        },
        'UnauthorizedOperation': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Operation not authorized',
            'suggestions': [
                'Add the required IAM permission for this operation',
                'Verify you are operating in the correct AWS region'
            ]
        },
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
            ]
        },
        'ValidationException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter or configuration',
            'suggestions': [
                'Check the resource attributes against the AWS API reference',
            ]
        },
        'InvalidParameterValue': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter value',
            'suggestions': [
                'Check the resource attributes against the AWS API reference',
            ]
        },
        'InvalidParameterCombination': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter combination',
            'suggestions': [
                'Check the resource attributes against the AWS API reference',
            ]
        },
        'LimitExceeded': {
            'category': ErrorCategory.AWS,
            'message': 'AWS service limit exceeded',
            'suggestions': [
                'Request a service limit increase through AWS Support',
                'Review and clean up unused resources',
            ]
        },
    }

    NETWORK_EXCEPTIONS = (
        ConnectionError,
        TimeoutError,
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
    )

    def classify(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None
    ) -> APIError:
        """Convert an exception raised by an adapter into an APIError.

        Args:
            error: The exception to classify
            context: Additional context about where the error occurred

        Returns:
            TransientAPIError or PermanentAPIError
        """
        if isinstance(error, APIError):
            if context is not None and error.context.resource_id is None:
                error.context = context
            return error

        context = context or ErrorContext()

        if isinstance(error, ClientError):
            return self._classify_client_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return PermanentAPIError(
                f"AWS credentials unavailable: {error}",
                category=ErrorCategory.CREDENTIAL,
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile with --profile',
                ]
            )

        if isinstance(error, self.NETWORK_EXCEPTIONS):
            return TransientAPIError(
                f"Network error: {error}",
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=['Check your network connectivity']
            )

        if isinstance(error, BotoCoreError):
            return PermanentAPIError(
                f"AWS client error: {error}",
                context=context,
                cause=error
            )

        return PermanentAPIError(
            f"Unexpected error: {error}",
            category=ErrorCategory.UNKNOWN,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _classify_client_error(self, error: ClientError, context: ErrorContext) -> APIError:
        """Map a botocore ClientError onto the transient/permanent taxonomy."""
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        status_code = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')

        context.error_code = error_code
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_service = error.operation_name

        if error_code in self.TRANSIENT_ERROR_CODES or (status_code is not None and status_code >= 500):
            category = ErrorCategory.THROTTLING if 'Throttl' in error_code or 'TooMany' in error_code else ErrorCategory.AWS
            return TransientAPIError(
                f"AWS Error ({error_code}): {error_message}",
                category=category,
                context=context,
                cause=error
            )

        error_info = self.AWS_ERROR_MAPPING.get(error_code)
        if error_info:
            return PermanentAPIError(
                f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return PermanentAPIError(
            f"AWS Error ({error_code}): {error_message}",
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {context.request_id}',
            ]
        )


# Global error handler instance
error_handler = ErrorHandler()
