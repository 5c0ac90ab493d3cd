"""Tests for the file state store and run lock."""

import json
import threading

import pytest

from stackwright.config.models import ResourceType
from stackwright.state.lock import RunLock
from stackwright.state.models import StateEntry, StateSnapshot
from stackwright.state.store import FileStateStore
from stackwright.utils.errors import StateError, StateLockError


def entry(external_id='vpc-1', **kwargs):
    kwargs.setdefault('config_hash', 'abc')
    kwargs.setdefault('resource_type', ResourceType.VPC)
    return StateEntry(external_id=external_id, **kwargs)


class TestFileStateStore:
    def test_missing_file_is_empty_snapshot(self, store):
        assert not store.exists()
        assert store.all().is_empty()
        assert store.get('v1') is None

    def test_put_get_delete(self, store):
        store.put('v1', entry(depends_on=[], attributes={'CidrBlock': '10.0.0.0/16'}))

        assert store.exists()
        assert store.get('v1').external_id == 'vpc-1'
        assert store.get('v1').attributes == {'CidrBlock': '10.0.0.0/16'}

        removed = store.delete('v1')

        assert removed.external_id == 'vpc-1'
        assert store.get('v1') is None
        assert store.delete('v1') is None
        assert store.exists()

    def test_file_format(self, store):
        store.put('s1', entry('subnet-1', resource_type=ResourceType.SUBNET, depends_on=['v1']))

        data = json.loads(store.state_path.read_text())

        assert data['version'] == '1'
        assert data['resources']['s1']['external_id'] == 'subnet-1'
        assert data['resources']['s1']['resource_type'] == 'Subnet'
        assert data['resources']['s1']['depends_on'] == ['v1']

    def test_pending_marker_persists_and_defaults_off(self, store):
        store.put('v1', entry(pending=True))
        store.put('v2', entry('vpc-2'))
        data = json.loads(store.state_path.read_text())
        del data['resources']['v2']['pending']
        store.state_path.write_text(json.dumps(data))

        reloaded = FileStateStore(str(store.state_path))

        assert reloaded.get('v1').pending
        assert not reloaded.get('v2').pending

    def test_snapshot_round_trip(self, store):
        store.put('v1', entry())

        snapshot = StateSnapshot.from_dict(store.all().to_dict())

        assert snapshot.get('v1').external_id == 'vpc-1'
        assert snapshot.ids() == ['v1']

    def test_corrupt_file_raises_and_is_not_overwritten(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text('{not json')

        with pytest.raises(StateError):
            store.all()
        with pytest.raises(StateError):
            store.put('v1', entry())

        assert store.state_path.read_text() == '{not json'

    def test_invalid_schema_raises(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text(json.dumps({'resources': {'v1': {'external_id': 'x'}}}))

        with pytest.raises(StateError):
            store.all()

    def test_concurrent_puts_are_not_lost(self, store):
        def writer(i):
            store.put(f"r{i}", entry(f"ext-{i}"))

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.all().resources) == 20

    def test_no_temp_files_left_behind(self, store):
        store.put('v1', entry())
        store.put('v2', entry())

        assert sorted(p.name for p in store.state_path.parent.iterdir()) == ['test.json']

    def test_lock_path(self, tmp_path):
        store = FileStateStore(str(tmp_path / 'prod.json'))

        assert store.lock_path == tmp_path / 'prod.json.lock'


class TestRunLock:
    def test_context_manager_acquires_and_releases(self, tmp_path):
        lock = RunLock(str(tmp_path / 'state.json.lock'))

        with lock:
            assert lock.held
        assert not lock.held

    def test_contention_times_out(self, tmp_path):
        path = str(tmp_path / 'state.json.lock')
        with RunLock(path):
            with pytest.raises(StateLockError):
                RunLock(path, timeout=0.2, poll_interval=0.05).acquire()

    def test_released_on_exception(self, tmp_path):
        path = str(tmp_path / 'state.json.lock')

        with pytest.raises(RuntimeError):
            with RunLock(path):
                raise RuntimeError('boom')

        with RunLock(path, timeout=0):
            pass

    def test_double_acquire_is_an_error(self, tmp_path):
        lock = RunLock(str(tmp_path / 'state.json.lock'))
        lock.acquire()
        try:
            with pytest.raises(StateLockError):
                lock.acquire()
        finally:
            lock.release()
