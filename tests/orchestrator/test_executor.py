"""Tests for the plan executor."""

import threading

import pytest
from botocore.exceptions import ClientError, WaiterError
from botocore.stub import Stubber

from stackwright.adapters.ecr import ECRRepositoryAdapter
from stackwright.adapters.registry import AdapterRegistry
from stackwright.config.models import ResourceType
from stackwright.orchestrator.executor import Executor, Outcome
from stackwright.orchestrator.planner import PlanAction, Planner
from stackwright.utils.errors import PermanentAPIError, StateError, TransientAPIError
from stackwright.utils.aws_client import AWSClientManager


def client_error(code, status=400):
    return ClientError(
        {'Error': {'Code': code, 'Message': code}, 'ResponseMetadata': {'HTTPStatusCode': status}},
        'TestOperation'
    )


@pytest.fixture
def make_executor(adapters, store, retry_policy):
    def _make(**kwargs):
        kwargs.setdefault('retry_policy', retry_policy)
        return Executor(adapters=adapters, state_store=store, **kwargs)
    return _make


def plan_for(declarations, store):
    return Planner().create_plan(declarations, store.all())


def waiter_error():
    return WaiterError('VpcAvailable', 'Max attempts exceeded', {})


class TestApply:
    def test_creates_in_dependency_order_and_records_state(self, declare, res, store, cloud, make_executor):
        declarations = declare(
            res('v1', CidrBlock='10.0.0.0/16'),
            res('s1', 'Subnet', VpcId='${v1}'),
            res('g1', 'SecurityGroup', VpcId='${v1}'),
        )

        run = make_executor().execute(plan_for(declarations, store))

        assert run.is_success()
        assert cloud.names('create')[0] == 'v1'
        assert set(cloud.names('create')) == {'v1', 's1', 'g1'}
        entry = store.get('s1')
        assert entry.external_id == 'ext-s1'
        assert entry.depends_on == ['v1']
        assert entry.attributes['VpcId'] == 'ext-v1'

    def test_references_resolve_to_external_ids(self, declare, res, store, cloud, make_executor):
        declarations = declare(
            res('s1', 'Subnet'),
            res('s2', 'Subnet'),
            res('dbsg', 'DBSubnetGroup', SubnetIds=['${s1}', '${s2}'], Description='subnets ${s1},${s2}'),
        )

        make_executor().execute(plan_for(declarations, store))

        attrs = cloud.resources['ext-dbsg']
        assert attrs['SubnetIds'] == ['ext-s1', 'ext-s2']
        assert attrs['Description'] == 'subnets ext-s1,ext-s2'

    def test_second_run_makes_no_adapter_calls(self, declare, res, store, cloud, make_executor):
        declarations = declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}'))
        make_executor().execute(plan_for(declarations, store))
        calls = len(cloud.calls)

        plan = plan_for(declarations, store)
        run = make_executor().execute(plan)

        assert not plan.has_changes()
        assert run.is_success()
        assert len(cloud.calls) == calls
        assert run.get('s1').external_id == 'ext-s1'

    def test_update_and_delete(self, declare, res, store, cloud, make_executor):
        make_executor().execute(plan_for(declare(res('v1', CidrBlock='a'), res('repo', 'ECRRepository')), store))

        plan = plan_for(declare(res('v1', CidrBlock='b')), store)
        run = make_executor().execute(plan)

        assert run.is_success()
        assert cloud.names('update') == ['v1']
        assert cloud.names('delete') == ['repo']
        assert store.get('repo') is None
        assert store.get('v1').attributes['CidrBlock'] == 'b'

    def test_empty_plan(self, declare, store, make_executor):
        run = make_executor().execute(plan_for(declare(), store))

        assert run.is_success()
        assert run.results == []


class TestFailureIsolation:
    def test_permanent_failure_skips_transitive_dependents_only(self, declare, res, store, cloud, make_executor):
        declarations = declare(
            res('v1'),
            res('s1', 'Subnet', VpcId='${v1}'),
            res('i1', 'EC2Instance', SubnetId='${s1}'),
            res('g1', 'SecurityGroup', VpcId='${v1}'),
            res('repo', 'ECRRepository'),
        )
        cloud.fail_always('s1', client_error('InvalidParameterValue'))

        run = make_executor().execute(plan_for(declarations, store))

        assert not run.is_success()
        assert run.get('s1').outcome == Outcome.FAILED
        assert isinstance(run.get('s1').error, PermanentAPIError)
        assert run.get('s1').attempts == 1
        assert run.get('i1').outcome == Outcome.SKIPPED
        assert run.get('g1').outcome == Outcome.SUCCEEDED
        assert run.get('repo').outcome == Outcome.SUCCEEDED
        assert 'i1' not in cloud.names('create')
        assert store.get('s1') is None
        assert store.get('g1') is not None

    def test_noop_dependents_of_a_failure_are_skipped(self, declare, res, store, cloud, make_executor):
        make_executor().execute(plan_for(declare(res('v1', CidrBlock='a'), res('s1', 'Subnet', VpcId='${v1}')), store))
        cloud.fail_always('v1', client_error('AccessDenied', 403))

        plan = plan_for(declare(res('v1', CidrBlock='b'), res('s1', 'Subnet', VpcId='${v1}')), store)
        run = make_executor().execute(plan)

        assert plan.get('s1').action == PlanAction.NOOP
        assert run.get('v1').is_failed()
        assert run.get('s1').is_skipped()

    def test_transient_errors_are_retried(self, declare, res, store, cloud, make_executor):
        cloud.fail('v1', client_error('Throttling'), client_error('RequestLimitExceeded'))

        run = make_executor().execute(plan_for(declare(res('v1')), store))

        assert run.is_success()
        assert run.get('v1').attempts == 3
        assert cloud.names('create') == ['v1', 'v1', 'v1']

    def test_transient_error_after_exhausted_retries_is_a_failure(self, declare, res, store, cloud, make_executor):
        cloud.fail_always('v1', client_error('ServiceUnavailable', 503))

        run = make_executor().execute(plan_for(declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}')), store))

        result = run.get('v1')
        assert result.is_failed()
        assert isinstance(result.error, TransientAPIError)
        assert result.attempts == 3
        assert run.get('s1').is_skipped()

    def test_failed_delete_skips_deletes_of_its_dependencies(self, declare, res, store, cloud, make_executor):
        make_executor().execute(plan_for(declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}')), store))
        cloud.fail_always('s1', client_error('DependencyViolationPermanent'))

        run = make_executor().execute(plan_for(declare(), store))

        assert run.get('s1').is_failed()
        assert run.get('v1').is_skipped()
        assert store.get('v1') is not None
        assert store.get('s1') is not None

    def test_missing_reference_state_fails_the_entry(self, declare, res, store, make_executor):
        executor = make_executor()

        with pytest.raises(StateError):
            executor.resolve_references({'VpcId': '${nowhere}'})


class TestConcurrency:
    def test_independent_entries_run_concurrently_within_bound(self, declare, res, store, cloud, make_executor):
        declarations = declare(*[res(f"repo{i}", 'ECRRepository') for i in range(6)])
        for i in range(6):
            cloud.slow(f"repo{i}", 0.05)

        run = make_executor(concurrency=2).execute(plan_for(declarations, store))

        assert run.is_success()
        assert cloud.max_active == 2

    def test_dependents_start_only_after_state_is_recorded(self, declare, res, store, cloud, make_executor):
        seen = {}
        original_create = cloud.registry().get('Subnet').create

        declarations = declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}'))
        executor = make_executor()

        def check_state(attributes, token=None):
            seen['v1'] = store.get('v1')
            return original_create(attributes, token=token)

        executor.adapters.get('Subnet').create = check_state
        executor.execute(plan_for(declarations, store))

        assert seen['v1'] is not None
        assert seen['v1'].external_id == 'ext-v1'
        assert not seen['v1'].pending

    def test_progress_callback(self, declare, res, store, make_executor):
        events = []
        lock = threading.Lock()

        def callback(resource_id, outcome, message):
            with lock:
                events.append((resource_id, outcome))

        make_executor(progress_callback=callback).execute(plan_for(declare(res('v1')), store))

        assert events == [('v1', None), ('v1', Outcome.SUCCEEDED)]


class TestTimeout:
    def test_timeout_drains_running_entries_and_skips_the_rest(self, declare, res, store, cloud, make_executor):
        declarations = declare(
            res('fast', 'ECRRepository'),
            res('slow', 'ECRRepository'),
            res('after', 'Subnet', depends_on=['slow']),
        )
        cloud.slow('slow', 0.5)

        run = make_executor(timeout=0.2).execute(plan_for(declarations, store))

        assert run.timed_out
        assert run.get('fast').is_success()
        assert run.get('slow').is_success()
        assert run.get('after').is_skipped()
        assert run.get('after').reason == 'run timed out'
        assert 'after' not in cloud.names('create')
        assert cloud.active == 0
        assert store.get('slow').external_id == 'ext-slow'

    def test_timeout_cancels_queued_entries(self, declare, res, store, cloud, make_executor):
        declarations = declare(res('first', 'ECRRepository'), res('queued', 'ECRRepository'))
        cloud.slow('first', 0.4)
        cloud.slow('queued', 0.4)

        run = make_executor(concurrency=1, timeout=0.1).execute(plan_for(declarations, store))

        assert run.get('first').is_success()
        assert run.get('queued').is_skipped()
        assert cloud.names('create') == ['first']
        assert store.get('queued') is None

    def test_invalid_concurrency(self, adapters, store):
        with pytest.raises(ValueError):
            Executor(adapters=adapters, state_store=store, concurrency=0)


class TestIdempotentCreate:
    REPO_ARN = 'arn:aws:ecr:us-east-1:123456789012:repository/app'

    @pytest.fixture
    def ecr(self, store, retry_policy):
        """Executor whose ECR adapter talks to a stubbed client."""
        adapter = ECRRepositoryAdapter(AWSClientManager(region='us-east-1'), wait=False)
        registry = AdapterRegistry()
        registry.register(ResourceType.ECR_REPOSITORY, adapter)
        stubber = Stubber(adapter.client)
        with stubber:
            yield Executor(adapters=registry, state_store=store, retry_policy=retry_policy), stubber
            stubber.assert_no_pending_responses()

    def test_retries_of_a_create_share_one_token(self, declare, res, store, cloud, make_executor):
        cloud.fail('v1', client_error('Throttling'), client_error('Throttling'))

        run = make_executor().execute(plan_for(declare(res('v1')), store))

        assert run.get('v1').attempts == 3
        tokens = cloud.tokens['v1']
        assert len(tokens) == 3
        assert tokens[0]
        assert len(tokens[0]) <= 64
        assert len(set(tokens)) == 1

    def test_tokens_differ_between_resources_and_runs(self, declare, res, store, cloud, make_executor):
        executor = make_executor()
        declarations = declare(res('v1'), res('v2'))
        executor.execute(plan_for(declarations, store))
        store.delete('v1')

        executor.execute(plan_for(declarations, store))

        assert cloud.tokens['v1'][0] != cloud.tokens['v2'][0]
        assert cloud.tokens['v1'][0] != cloud.tokens['v1'][1]

    def test_name_collision_after_lost_response_adopts_resource(self, declare, res, store, ecr):
        executor, stubber = ecr
        stubber.add_client_error('create_repository', 'ServerException', http_status_code=500)
        stubber.add_client_error('create_repository', 'RepositoryAlreadyExistsException')
        stubber.add_response(
            'describe_repositories',
            {'repositories': [{'repositoryName': 'app', 'repositoryArn': self.REPO_ARN}]},
            {'repositoryNames': ['app']}
        )

        run = executor.execute(plan_for(declare(res('repo', 'ECRRepository', repositoryName='app')), store))

        result = run.get('repo')
        assert result.is_success()
        assert result.attempts == 2
        assert result.external_id == 'app'
        assert store.get('repo').external_id == 'app'

    def test_name_collision_on_first_attempt_is_not_adopted(self, declare, res, store, ecr):
        executor, stubber = ecr
        stubber.add_client_error('create_repository', 'RepositoryAlreadyExistsException')

        run = executor.execute(plan_for(declare(res('repo', 'ECRRepository', repositoryName='app')), store))

        result = run.get('repo')
        assert result.is_failed()
        assert result.error.context.error_code == 'RepositoryAlreadyExistsException'
        assert store.get('repo') is None


class TestUnconfirmedCreate:
    def test_failed_wait_keeps_the_external_id(self, declare, res, store, cloud, make_executor):
        cloud.fail_settle('v1', waiter_error())

        run = make_executor().execute(plan_for(declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}')), store))

        result = run.get('v1')
        assert result.is_failed()
        assert result.external_id == 'ext-v1'
        assert run.get('s1').is_skipped()
        entry = store.get('v1')
        assert entry.external_id == 'ext-v1'
        assert entry.pending

    def test_next_apply_resumes_waiting_instead_of_creating(self, declare, res, store, cloud, make_executor):
        declarations = declare(res('v1'))
        cloud.fail_settle('v1', waiter_error())
        make_executor().execute(plan_for(declarations, store))

        plan = plan_for(declarations, store)
        run = make_executor().execute(plan)

        assert plan.get('v1').action == PlanAction.UPDATE
        assert plan.get('v1').reason == 'creation not confirmed'
        assert run.is_success()
        assert cloud.names('create') == ['v1']
        assert cloud.names('settle') == ['v1', 'v1']
        assert not store.get('v1').pending
        assert plan_for(declarations, store).get('v1').action == PlanAction.NOOP


class TestDependencyRefresh:
    def test_noop_records_current_dependencies(self, declare, res, store, cloud, make_executor):
        make_executor().execute(plan_for(declare(res('v1'), res('repo', 'ECRRepository', depends_on=['v1'])), store))
        calls = len(cloud.calls)

        plan = plan_for(declare(res('v1'), res('repo', 'ECRRepository')), store)
        run = make_executor().execute(plan)

        assert plan.get('repo').action == PlanAction.NOOP
        assert run.is_success()
        assert store.get('repo').depends_on == []
        assert store.get('repo').external_id == 'ext-repo'
        assert len(cloud.calls) == calls

    def test_unchanged_dependencies_are_not_rewritten(self, declare, res, store, make_executor):
        declarations = declare(res('v1'), res('s1', 'Subnet', VpcId='${v1}'))
        make_executor().execute(plan_for(declarations, store))
        recorded = store.get('s1').updated_at

        make_executor().execute(plan_for(declarations, store))

        assert store.get('s1').updated_at == recorded
