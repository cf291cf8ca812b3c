"""
锁管理器测试
"""

import pytest

from txnkv.data_models import ErrorKind, LockHeld, TransactionFailure, encode
from txnkv.storage import MemoryStore, StoreError
from txnkv.transactions import LockManager


class BrokenStore(MemoryStore):
    """所有写入都失败的存储"""

    def put(self, identity, bins, mode=None, generation=0):
        raise StoreError("connection refused")


@pytest.fixture
def locks(store, settings, clock):
    return LockManager(store, settings, clock)


class TestCreateLock:

    def test_lock_record_layout(self, locks, store, key, clock):
        record_key = key("alice")
        locks.create_lock(record_key, "t1")

        stored = store.get(locks.lock_identity(record_key))
        assert stored.bins == {
            "type": "lock",
            "txnID": "t1",
            "namespace": "test",
            "set": "accounts",
            "userKey": "alice",
            "timestamp": clock.now,
        }

    def test_lock_lives_in_lock_set_keyed_by_identity_string(self, locks, settings, key):
        record_key = key("alice")
        lock_key = locks.lock_identity(record_key)
        assert lock_key.namespace == settings.transaction_namespace
        assert lock_key.set_name == settings.lock_set
        assert lock_key.user_key == encode(record_key)

    def test_second_owner_raises_lock_held(self, locks, key):
        locks.create_lock(key("alice"), "t1")
        with pytest.raises(LockHeld) as exc_info:
            locks.create_lock(key("alice"), "t2")

        err = exc_info.value
        assert err.kind == ErrorKind.LOCK_HELD
        assert err.identity == key("alice")
        assert err.txn_id == "t2"

    def test_same_owner_is_idempotent(self, locks, key):
        locks.create_lock(key("alice"), "t1")
        locks.create_lock(key("alice"), "t1")
        assert locks.read_lock(key("alice")).txn_id == "t1"

    def test_store_error_becomes_transaction_failure(self, settings, key):
        locks = LockManager(BrokenStore(), settings)
        with pytest.raises(TransactionFailure) as exc_info:
            locks.create_lock(key("alice"), "t1")

        assert exc_info.value.txn_id == "t1"
        assert isinstance(exc_info.value.cause, StoreError)
        assert isinstance(exc_info.value.__cause__, StoreError)


class TestRemoveLock:

    def test_other_owner_cannot_remove(self, locks, key):
        locks.create_lock(key("alice"), "t1")
        locks.remove_lock(key("alice"), "t2")
        assert locks.lock_exists(key("alice"))

    def test_owner_removes(self, locks, key):
        locks.create_lock(key("alice"), "t1")
        locks.remove_lock(key("alice"), "t1")
        assert not locks.lock_exists(key("alice"))

    def test_missing_lock_is_noop(self, locks, key):
        locks.remove_lock(key("nobody"), "t1")
        assert not locks.lock_exists(key("nobody"))

    def test_remove_locks(self, locks, key):
        identities = [key("a"), key("b"), key("c")]
        for identity in identities:
            locks.create_lock(identity, "t1")

        locks.remove_locks(identities, "t1")
        assert not any(locks.lock_exists(identity) for identity in identities)

    def test_lock_can_be_retaken_after_release(self, locks, key):
        locks.create_lock(key("alice"), "t1")
        locks.remove_lock(key("alice"), "t1")
        locks.create_lock(key("alice"), "t2")
        assert locks.read_lock(key("alice")).txn_id == "t2"


class TestLockInfo:

    def test_unlocked(self, locks, key):
        assert locks.read_lock(key("alice")) is None
        assert locks.get_lock_info(key("alice")) == {
            'resource_id': encode(key("alice")),
            'locked': False,
            'txn_id': None,
            'locked_at': None,
        }

    def test_locked(self, locks, key, clock):
        locks.create_lock(key("alice"), "t1")
        info = locks.get_lock_info(key("alice"))
        assert info['locked'] is True
        assert info['txn_id'] == "t1"
        assert info['locked_at'] == clock.now
