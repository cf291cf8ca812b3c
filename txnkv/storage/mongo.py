"""
MongoDB键值存储适配器
namespace映射为数据库，set映射为集合；文档 _id 为摘要的十六进制，
gen 字段保存版本号，bins 字段保存属性包
"""
from collections import defaultdict
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError
from pymongo.write_concern import WriteConcern

from ..data_models.keys import RecordIdentity, bytes_to_hex, hex_to_bytes
from ..data_models.records import TIMESTAMP_BIN, TYPE_BIN
from .base import (
    GenerationError,
    IndexExistsError,
    KeyValueStore,
    Record,
    RecordExistsError,
    StoreError,
    WriteMode,
)


GENERATION_FIELD = "gen"
BINS_FIELD = "bins"
USER_KEY_FIELD = "userKey"

# 索引冲突错误码：IndexOptionsConflict / IndexKeySpecsConflict
INDEX_CONFLICT_CODES = {85, 86}


class MongoStore(KeyValueStore):
    """MongoDB存储"""

    # 删除使用journal写关注，节点重启后不会复活
    supports_durable_delete = True

    def __init__(self, client: MongoClient):
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "MongoStore":
        """根据MongoSettings创建"""
        client = MongoClient(
            settings.mongodb_url,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        )
        return cls(client)

    def _collection(self, namespace: str, set_name: str) -> Collection:
        return self.client[namespace][set_name]

    @staticmethod
    def _document_id(identity: RecordIdentity) -> str:
        return bytes_to_hex(identity.digest)

    def _new_document(self, identity: RecordIdentity, bins: Dict[str, Any]) -> Dict[str, Any]:
        document = {
            "_id": self._document_id(identity),
            GENERATION_FIELD: 1,
            BINS_FIELD: bins,
        }
        if identity.user_key is not None:
            document[USER_KEY_FIELD] = identity.user_key
        return document

    def put(self, identity: RecordIdentity, bins: Dict[str, Any],
            mode: WriteMode = WriteMode.UPDATE, generation: int = 0) -> None:
        """写入记录"""
        collection = self._collection(identity.namespace, identity.set_name)
        document_id = self._document_id(identity)

        update_fields: Dict[str, Any] = {BINS_FIELD: bins}
        if identity.user_key is not None:
            update_fields[USER_KEY_FIELD] = identity.user_key
        update = {"$set": update_fields, "$inc": {GENERATION_FIELD: 1}}

        try:
            if mode == WriteMode.CREATE_ONLY:
                collection.insert_one(self._new_document(identity, bins))
            elif mode == WriteMode.EXPECT_GENERATION and generation == 0:
                # 期望版本号0即期望记录不存在
                try:
                    collection.insert_one(self._new_document(identity, bins))
                except DuplicateKeyError as exc:
                    raise GenerationError(f"Record {identity} already exists, expected generation 0") from exc
            elif mode == WriteMode.EXPECT_GENERATION:
                result = collection.update_one({"_id": document_id, GENERATION_FIELD: generation}, update)
                if result.matched_count == 0:
                    raise GenerationError(f"Record {identity} is not at generation {generation}")
            else:
                collection.update_one({"_id": document_id}, update, upsert=True)
        except DuplicateKeyError as exc:
            raise RecordExistsError(f"Record {identity} already exists") from exc
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    @staticmethod
    def _to_record(document: Dict[str, Any]) -> Record:
        return Record(document.get(BINS_FIELD) or {}, document.get(GENERATION_FIELD, 1))

    def get(self, identity: RecordIdentity) -> Optional[Record]:
        """读取记录"""
        collection = self._collection(identity.namespace, identity.set_name)
        try:
            document = collection.find_one({"_id": self._document_id(identity)})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return self._to_record(document) if document is not None else None

    def get_many(self, identities: Iterable[RecordIdentity]) -> List[Optional[Record]]:
        """批量读取，每个集合一次查询"""
        identities = list(identities)
        grouped: Dict[Tuple[str, str], List[str]] = defaultdict(list)
        for identity in identities:
            grouped[(identity.namespace, identity.set_name)].append(self._document_id(identity))

        found: Dict[Tuple[str, str, str], Record] = {}
        try:
            for (namespace, set_name), document_ids in grouped.items():
                cursor = self._collection(namespace, set_name).find({"_id": {"$in": document_ids}})
                for document in cursor:
                    found[(namespace, set_name, document["_id"])] = self._to_record(document)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

        return [
            found.get((identity.namespace, identity.set_name, self._document_id(identity)))
            for identity in identities
        ]

    def delete(self, identity: RecordIdentity, match: Optional[Dict[str, Any]] = None,
               generation: Optional[int] = None, durable: bool = False) -> bool:
        """删除记录"""
        collection = self._collection(identity.namespace, identity.set_name)
        if durable:
            collection = collection.with_options(write_concern=WriteConcern(j=True))

        query: Dict[str, Any] = {"_id": self._document_id(identity)}
        for name, value in (match or {}).items():
            query[f"{BINS_FIELD}.{name}"] = value

        try:
            if generation is not None:
                current = collection.find_one({"_id": query["_id"]}, {GENERATION_FIELD: 1})
                current_generation = current[GENERATION_FIELD] if current else 0
                if current_generation != generation:
                    raise GenerationError(
                        f"Record {identity} is at generation {current_generation}, expected {generation}"
                    )
                if current is None:
                    return False
                query[GENERATION_FIELD] = generation

            result = collection.delete_one(query)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

        return result.deleted_count == 1

    def scan(self, namespace: str, set_name: str, type_value: str,
             older_than: Optional[int] = None,
             bins: Optional[List[str]] = None) -> Iterator[Tuple[RecordIdentity, Dict[str, Any]]]:
        """按type与时间戳扫描"""
        query: Dict[str, Any] = {f"{BINS_FIELD}.{TYPE_BIN}": type_value}
        if older_than is not None:
            query[f"{BINS_FIELD}.{TIMESTAMP_BIN}"] = {"$lt": older_than}

        projection = None
        if bins is not None:
            projection = {USER_KEY_FIELD: 1}
            projection.update({f"{BINS_FIELD}.{name}": 1 for name in bins})

        try:
            for document in self._collection(namespace, set_name).find(query, projection):
                identity = RecordIdentity(
                    namespace, set_name, hex_to_bytes(document["_id"]), document.get(USER_KEY_FIELD)
                )
                yield identity, document.get(BINS_FIELD) or {}
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def create_index(self, namespace: str, set_name: str, bin_name: str, index_name: str) -> None:
        """创建二级索引"""
        try:
            self._collection(namespace, set_name).create_index(
                [(f"{BINS_FIELD}.{bin_name}", ASCENDING)], name=index_name
            )
        except OperationFailure as exc:
            if exc.code in INDEX_CONFLICT_CODES:
                raise IndexExistsError(f"Index {index_name} already exists") from exc
            raise StoreError(str(exc)) from exc
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
