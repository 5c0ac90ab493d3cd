"""Fixtures for adapter tests: real boto3 clients with botocore stubs."""

import pytest
from botocore.stub import Stubber

from stackwright.utils.aws_client import AWSClientManager


@pytest.fixture
def clients():
    return AWSClientManager(region='us-east-1')


@pytest.fixture
def stubbed():
    """Activate a Stubber on an adapter's client; verifies all stubs were consumed."""
    stubbers = []

    def _stub(adapter):
        stubber = Stubber(adapter.client)
        stubber.activate()
        stubbers.append(stubber)
        return stubber

    yield _stub

    for stubber in stubbers:
        stubber.assert_no_pending_responses()
        stubber.deactivate()
