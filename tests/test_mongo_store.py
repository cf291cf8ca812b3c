"""
MongoDB存储适配器测试（使用模拟的集合对象）
"""

from unittest.mock import MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from txnkv.data_models import RecordIdentity, bytes_to_hex
from txnkv.storage import (
    GenerationError,
    IndexExistsError,
    RecordExistsError,
    StoreError,
    WriteMode,
)
from txnkv.storage.mongo import MongoStore


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def mongo(collection):
    # namespace -> 数据库，set -> 集合
    return MongoStore({"test": {"users": collection}})


@pytest.fixture
def ident():
    return RecordIdentity.of("test", "users", "alice")


class TestPut:

    def test_create_only_inserts_document(self, mongo, collection, ident):
        mongo.put(ident, {"v": 1}, WriteMode.CREATE_ONLY)
        collection.insert_one.assert_called_once_with({
            "_id": bytes_to_hex(ident.digest),
            "gen": 1,
            "bins": {"v": 1},
            "userKey": "alice",
        })

    def test_create_only_duplicate(self, mongo, collection, ident):
        collection.insert_one.side_effect = DuplicateKeyError("dup", 11000)
        with pytest.raises(RecordExistsError):
            mongo.put(ident, {"v": 1}, WriteMode.CREATE_ONLY)

    def test_expected_generation_zero_on_existing_record(self, mongo, collection, ident):
        collection.insert_one.side_effect = DuplicateKeyError("dup", 11000)
        with pytest.raises(GenerationError):
            mongo.put(ident, {"v": 1}, WriteMode.EXPECT_GENERATION, 0)

    def test_expected_generation_mismatch(self, mongo, collection, ident):
        collection.update_one.return_value.matched_count = 0
        with pytest.raises(GenerationError):
            mongo.put(ident, {"v": 1}, WriteMode.EXPECT_GENERATION, 3)

        query = collection.update_one.call_args[0][0]
        assert query == {"_id": bytes_to_hex(ident.digest), "gen": 3}

    def test_update_upserts_and_bumps_generation(self, mongo, collection, ident):
        mongo.put(ident, {"v": 2})
        args, kwargs = collection.update_one.call_args
        assert args[1] == {"$set": {"bins": {"v": 2}, "userKey": "alice"}, "$inc": {"gen": 1}}
        assert kwargs == {"upsert": True}

    def test_driver_error_wrapped(self, mongo, collection, ident):
        collection.update_one.side_effect = PyMongoError("network")
        with pytest.raises(StoreError):
            mongo.put(ident, {"v": 2})


class TestGet:

    def test_found(self, mongo, collection, ident):
        collection.find_one.return_value = {"_id": "x", "gen": 4, "bins": {"v": 1}}
        record = mongo.get(ident)
        assert record.bins == {"v": 1}
        assert record.generation == 4

    def test_missing(self, mongo, collection, ident):
        collection.find_one.return_value = None
        assert mongo.get(ident) is None

    def test_get_many_single_query_per_collection(self, mongo, collection):
        a = RecordIdentity.of("test", "users", "a")
        b = RecordIdentity.of("test", "users", "b")
        collection.find.return_value = [{"_id": bytes_to_hex(b.digest), "gen": 2, "bins": {"v": "b"}}]

        records = mongo.get_many([a, b])

        assert records[0] is None
        assert records[1].bins == {"v": "b"}
        collection.find.assert_called_once_with(
            {"_id": {"$in": [bytes_to_hex(a.digest), bytes_to_hex(b.digest)]}}
        )


class TestDelete:

    def test_durable_delete_uses_journaled_write_concern(self, mongo, collection, ident):
        durable = collection.with_options.return_value
        durable.delete_one.return_value.deleted_count = 1

        assert mongo.delete(ident, match={"txnID": "t1"}, durable=True) is True

        write_concern = collection.with_options.call_args[1]["write_concern"]
        assert write_concern.document == {"j": True}
        durable.delete_one.assert_called_once_with(
            {"_id": bytes_to_hex(ident.digest), "bins.txnID": "t1"}
        )

    def test_no_match(self, mongo, collection, ident):
        collection.delete_one.return_value.deleted_count = 0
        assert mongo.delete(ident, match={"txnID": "t2"}) is False

    def test_generation_mismatch(self, mongo, collection, ident):
        collection.find_one.return_value = {"gen": 2}
        with pytest.raises(GenerationError):
            mongo.delete(ident, generation=1)
        collection.delete_one.assert_not_called()


class TestScanAndIndex:

    def test_scan_query_and_projection(self, mongo, collection, ident):
        collection.find.return_value = [
            {"_id": bytes_to_hex(ident.digest), "userKey": "alice", "bins": {"txnID": "t1"}},
        ]

        rows = list(mongo.scan("test", "users", "lock", older_than=100, bins=["txnID"]))

        collection.find.assert_called_once_with(
            {"bins.type": "lock", "bins.timestamp": {"$lt": 100}},
            {"userKey": 1, "bins.txnID": 1},
        )
        assert rows == [(ident, {"txnID": "t1"})]
        assert rows[0][0].user_key == "alice"

    def test_existing_index(self, mongo, collection):
        collection.create_index.side_effect = OperationFailure("exists", code=85)
        with pytest.raises(IndexExistsError):
            mongo.create_index("test", "users", "type", "idx")

    def test_index_created_on_bins_field(self, mongo, collection):
        mongo.create_index("test", "users", "type", "idx")
        collection.create_index.assert_called_once_with([("bins.type", 1)], name="idx")


class TestDurableSupport:

    def test_supports_durable_delete(self, mongo):
        assert mongo.supports_durable_delete is True
