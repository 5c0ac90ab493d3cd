"""Tests for error classification."""

from botocore.exceptions import ClientError, NoCredentialsError, ReadTimeoutError

from stackwright.utils.errors import (
    CycleError,
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    PermanentAPIError,
    TransientAPIError,
    ValidationError,
)


def client_error(code, status=400):
    return ClientError(
        {'Error': {'Code': code, 'Message': f"{code} happened"},
         'ResponseMetadata': {'HTTPStatusCode': status, 'RequestId': 'req-1'}},
        'CreateSubnet'
    )


class TestErrorHandler:
    def setup_method(self):
        self.handler = ErrorHandler()

    def test_throttling_is_transient(self):
        error = self.handler.classify(client_error('Throttling'))

        assert isinstance(error, TransientAPIError)
        assert error.retryable
        assert error.category == ErrorCategory.THROTTLING
        assert error.context.error_code == 'Throttling'
        assert error.context.request_id == 'req-1'
        assert error.context.aws_service == 'CreateSubnet'

    def test_server_errors_are_transient(self):
        assert isinstance(self.handler.classify(client_error('Whatever', 503)), TransientAPIError)

    def test_access_denied_is_permanent_with_suggestions(self):
        error = self.handler.classify(client_error('AccessDenied', 403))

        assert isinstance(error, PermanentAPIError)
        assert not error.retryable
        assert error.category == ErrorCategory.PERMISSION
        assert error.suggestions

    def test_unknown_client_error_is_permanent(self):
        error = self.handler.classify(client_error('InvalidSubnet.Conflict'))

        assert isinstance(error, PermanentAPIError)
        assert 'InvalidSubnet.Conflict' in error.message

    def test_network_timeouts_are_transient(self):
        error = self.handler.classify(ReadTimeoutError(endpoint_url='https://ec2'))

        assert isinstance(error, TransientAPIError)
        assert error.category == ErrorCategory.NETWORK

    def test_missing_credentials_are_permanent(self):
        error = self.handler.classify(NoCredentialsError())

        assert isinstance(error, PermanentAPIError)
        assert error.category == ErrorCategory.CREDENTIAL

    def test_context_is_attached(self):
        error = self.handler.classify(RuntimeError('boom'), ErrorContext(resource_id='s1'))

        assert error.context.resource_id == 's1'
        assert error.category == ErrorCategory.UNKNOWN


class TestErrorRendering:
    def test_user_message(self):
        error = PermanentAPIError(
            'Access denied',
            context=ErrorContext(resource_id='v1', operation='create'),
            suggestions=['Check IAM policies']
        )

        message = error.to_user_message()

        assert message.startswith('ERROR: Access denied')
        assert 'Resource: v1' in message
        assert '1. Check IAM policies' in message

    def test_to_dict(self):
        data = CycleError(['a', 'b', 'a']).to_dict()

        assert data['type'] == 'CycleError'
        assert data['category'] == 'dependency'
        assert data['severity'] == 'critical'
        assert data['message'] == 'Circular dependency detected: a -> b -> a'

    def test_cycle_error_is_validation_error(self):
        assert issubclass(CycleError, ValidationError)
