"""Shared fixtures: an in-memory fake cloud, state stores and declaration builders."""

import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from stackwright.adapters.base import ResourceAdapter
from stackwright.adapters.registry import AdapterRegistry
from stackwright.config.models import DeclarationSet, ResourceType
from stackwright.state.store import FileStateStore
from stackwright.utils.retry import RetryPolicy


class FakeCloud:
    """In-memory stand-in for AWS shared by one FakeAdapter per resource type.

    Every resource declared in tests carries a ``name`` attribute equal to its
    id; the fake derives the external id from it (``ext-<name>``), which makes
    failures and delays easy to target.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.always_fail: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.tokens: Dict[str, List[Optional[str]]] = {}
        self.settle_failures: Dict[str, List[Exception]] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fail(self, name: str, *errors: Exception) -> None:
        """Raise ``errors`` on successive calls for ``name``, then succeed."""
        self.failures[name] = list(errors)

    def fail_always(self, name: str, error: Exception) -> None:
        self.always_fail[name] = error

    def slow(self, name: str, seconds: float) -> None:
        self.delays[name] = seconds

    def fail_settle(self, name: str, *errors: Exception) -> None:
        """Raise ``errors`` on successive waits for ``name`` to become usable."""
        self.settle_failures[name] = list(errors)

    def operations(self, operation: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if operation is None or c[0] == operation]

    def names(self, operation: str) -> List[str]:
        return [c[1] for c in self.operations(operation)]

    def registry(self) -> AdapterRegistry:
        registry = AdapterRegistry()
        for resource_type in ResourceType:
            registry.register(resource_type, FakeAdapter(self, resource_type))
        return registry

    def settle(self, name: str) -> None:
        with self._lock:
            self.calls.append(('settle', name))
            failures = self.settle_failures.get(name)
            error = failures.pop(0) if failures else None
        if error is not None:
            raise error

    def call(self, operation: str, name: str, func):
        with self._lock:
            self.calls.append((operation, name))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            error = self.always_fail.get(name)
            if error is None and self.failures.get(name):
                error = self.failures[name].pop(0)
        try:
            if self.delays.get(name):
                time.sleep(self.delays[name])
            if error is not None:
                raise error
            with self._lock:
                return func()
        finally:
            with self._lock:
                self.active -= 1


class FakeAdapter(ResourceAdapter):
    """Adapter backed by FakeCloud."""

    service_name = 'fake'

    def __init__(self, cloud: FakeCloud, resource_type: ResourceType):
        self.cloud = cloud
        self.resource_type = resource_type

    def create(self, attributes, token=None):
        name = attributes['name']
        external_id = f"ext-{name}"
        self.cloud.tokens.setdefault(name, []).append(token)

        def _create():
            self.cloud.resources[external_id] = dict(attributes)
            return external_id

        return self.cloud.call('create', name, _create)

    def settle(self, external_id, attributes):
        self.cloud.settle(attributes['name'])

    def read(self, external_id):
        return self.cloud.call('read', external_id[4:], lambda: self.cloud.resources.get(external_id))

    def update(self, external_id, attributes):
        def _update():
            self.cloud.resources[external_id] = dict(attributes)

        self.cloud.call('update', external_id[4:], _update)

    def delete(self, external_id):
        self.cloud.call('delete', external_id[4:], lambda: self.cloud.resources.pop(external_id, None))


def make_resource(resource_id: str, resource_type: str = 'VPC', depends_on=(), **attributes) -> dict:
    return {
        'id': resource_id,
        'type': resource_type,
        'attributes': {'name': resource_id, **attributes},
        'depends_on': list(depends_on),
    }


def make_declarations(*resources: dict, **settings) -> DeclarationSet:
    return DeclarationSet.model_validate({
        'environment': 'test',
        'settings': settings,
        'resources': list(resources),
    })


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def adapters(cloud):
    return cloud.registry()


@pytest.fixture
def store(tmp_path):
    return FileStateStore(str(tmp_path / 'state' / 'test.json'))


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False, sleep=lambda s: None)


@pytest.fixture
def res():
    """Builder for a resource declaration dict."""
    return make_resource


@pytest.fixture
def declare():
    """Builder for a DeclarationSet."""
    return make_declarations


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep botocore away from real credentials and config."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)
