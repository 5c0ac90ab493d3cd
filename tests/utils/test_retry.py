"""Tests for the retry policy."""

import random

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from stackwright.config.models import RetrySettings
from stackwright.utils.errors import ErrorContext, PermanentAPIError, TransientAPIError
from stackwright.utils.retry import RetryPolicy


def throttled():
    return ClientError(
        {'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'},
         'ResponseMetadata': {'HTTPStatusCode': 400}},
        'CreateVpc'
    )


class Flaky:
    def __init__(self, *errors, result='ok'):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=5.0, jitter=False, sleep=sleeps.append)


class TestRetryPolicy:
    def test_success_on_first_attempt(self, policy, sleeps):
        result, attempts = policy.call(Flaky())

        assert (result, attempts) == ('ok', 1)
        assert sleeps == []

    def test_transient_errors_back_off_exponentially(self, policy, sleeps):
        func = Flaky(throttled(), throttled(), throttled())

        result, attempts = policy.call(func)

        assert result == 'ok'
        assert attempts == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_delay_is_capped(self, sleeps):
        policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=3.0, jitter=False, sleep=sleeps.append)

        policy.call(Flaky(*[throttled() for _ in range(5)]))

        assert sleeps == [1.0, 2.0, 3.0, 3.0, 3.0]

    def test_exhausted_retries_raise_transient_error(self, policy):
        func = Flaky(*[throttled() for _ in range(10)])

        with pytest.raises(TransientAPIError) as exc_info:
            policy.call(func, context=ErrorContext(resource_id='v1'))

        assert func.calls == 4
        assert exc_info.value.context.resource_id == 'v1'
        assert exc_info.value.context.additional_info == {'attempts': 4}
        assert isinstance(exc_info.value.__cause__, ClientError)

    def test_permanent_errors_are_not_retried(self, policy, sleeps):
        func = Flaky(ValueError('bad input'))

        with pytest.raises(PermanentAPIError):
            policy.call(func)

        assert func.calls == 1
        assert sleeps == []

    def test_already_classified_errors_pass_through(self, policy):
        error = PermanentAPIError('nope')

        with pytest.raises(PermanentAPIError) as exc_info:
            policy.call(Flaky(error))

        assert exc_info.value is error

    def test_network_errors_are_retried(self, policy):
        func = Flaky(EndpointConnectionError(endpoint_url='https://ec2.amazonaws.com'))

        _, attempts = policy.call(func)

        assert attempts == 2

    def test_jitter_stays_within_upper_half(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0, jitter=True, rng=random.Random(7))

        for attempt in range(1, 6):
            delay = policy.get_delay(attempt)
            full = min(2.0 * 2 ** (attempt - 1), 30.0)
            assert full / 2 <= delay <= full

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_settings(self):
        policy = RetryPolicy.from_settings(RetrySettings(max_attempts=2, base_delay=0.5, max_delay=1.0))

        assert policy.max_attempts == 2
        assert policy.base_delay == 0.5
        assert policy.max_delay == 1.0
