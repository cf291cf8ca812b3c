"""
锁记录、事务记录与属性包校验测试
"""

import pytest

from txnkv.data_models import (
    LockRecord,
    TransactionRecord,
    ValidationError,
    validate_bins,
)


class TestLockRecord:

    def test_wire_layout(self):
        lock = LockRecord(txn_id="t1", namespace="test", set_name="accounts", user_key="alice", timestamp=5)
        assert lock.to_bins() == {
            "type": "lock",
            "txnID": "t1",
            "namespace": "test",
            "set": "accounts",
            "userKey": "alice",
            "timestamp": 5,
        }

    def test_from_wire(self):
        lock = LockRecord.from_bins({
            "type": "lock", "txnID": "t1", "namespace": "test",
            "set": "accounts", "userKey": "", "timestamp": 5,
        })
        assert lock.txn_id == "t1"
        assert lock.set_name == "accounts"

    def test_wrong_type_tag_rejected(self):
        with pytest.raises(Exception):
            LockRecord.from_bins({"type": "txn", "txnID": "t1", "namespace": "n", "set": "s", "timestamp": 1})

    def test_immutable(self):
        lock = LockRecord(txn_id="t1", namespace="n", set_name="s", timestamp=1)
        with pytest.raises(Exception):
            lock.txn_id = "t2"


class TestTransactionRecord:

    def test_wire_layout(self):
        record = TransactionRecord(
            previous_versions={"test::accounts::01": {"balance": 1000}, "test::accounts::02": None},
            txn_id="t1",
            timestamp=7,
        )
        assert record.to_bins() == {
            "type": "txn",
            "previousVersions": {"test::accounts::01": {"balance": 1000}, "test::accounts::02": None},
            "txnID": "t1",
            "timestamp": 7,
        }
        assert record.keys() == ["test::accounts::01", "test::accounts::02"]

    def test_pre_images_keep_value_types(self):
        bins = {"n": 1, "f": 1.5, "s": "x", "b": b"\x00", "flag": True, "l": [1, "a"], "m": {"k": 2}}
        record = TransactionRecord.from_bins({
            "type": "txn", "previousVersions": {"k": bins}, "txnID": "t1", "timestamp": 1,
        })
        assert record.previous_versions["k"] == bins
        assert record.previous_versions["k"]["flag"] is True


class TestValidateBins:

    def test_accepts_supported_values(self):
        bins = {"n": 1, "s": "x", "l": [1, 2], "m": {"a": 1}}
        assert validate_bins(bins) == bins

    def test_rejects_unsupported_value(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_bins({"when": object()})
        assert exc_info.value.error_code == "invalid_bins"

    def test_rejects_non_mapping(self):
        with pytest.raises(ValidationError):
            validate_bins(["not", "a", "bag"])
