"""
测试公共夹具
内存存储、可控的毫秒时钟，以及连接到它们的协调器与恢复管理器
"""

import pytest

from config.settings import TransactionSettings
from txnkv.data_models import RecordIdentity
from txnkv.monitoring import TransactionMetrics
from txnkv.storage import MemoryStore
from txnkv.transactions import RecoveryManager, TransactionCoordinator


class FakeClock:
    """手动推进的毫秒时钟"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return TransactionSettings(
        transaction_namespace="test",
        transaction_set="txns",
        lock_set="locks",
        index_marker_set="index-created",
        expiry_ms=30000,
        durable_delete=True,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def metrics():
    return TransactionMetrics()


@pytest.fixture
def coordinator(store, settings, metrics, clock):
    return TransactionCoordinator(store, settings, metrics=metrics, clock=clock)


@pytest.fixture
def recovery(coordinator):
    return RecoveryManager(coordinator)


def make_key(user_key, namespace: str = "test", set_name: str = "accounts") -> RecordIdentity:
    return RecordIdentity.of(namespace, set_name, user_key)


@pytest.fixture
def key():
    return make_key
