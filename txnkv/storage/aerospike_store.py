"""
Aerospike键值存储适配器
使用官方aerospike客户端；摘要由客户端计算，与服务端一致
"""
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import aerospike
from aerospike import exception as ex
from aerospike import predicates as p
from aerospike_helpers import expressions as exp

from ..data_models.keys import RecordIdentity
from ..data_models.records import PREVIOUS_VERSIONS_BIN, TIMESTAMP_BIN, TYPE_BIN
from .base import (
    GenerationError,
    IndexExistsError,
    KeyValueStore,
    Record,
    RecordExistsError,
    StoreError,
    WriteMode,
)


logger = logging.getLogger(__name__)

# Aerospike的bin名最长15字节
BIN_ALIASES = {PREVIOUS_VERSIONS_BIN: "prevVersions"}
_BIN_NAMES = {alias: name for name, alias in BIN_ALIASES.items()}

RESULT_OK = 0


def _normalise(value: Any) -> Any:
    """把客户端返回的bytearray转为bytes（递归处理容器）"""
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, dict):
        return {k: _normalise(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalise(v) for v in value]
    return value


def _to_wire(bins: Dict[str, Any]) -> Dict[str, Any]:
    return {BIN_ALIASES.get(name, name): value for name, value in bins.items()}


def _from_wire(bins: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {_BIN_NAMES.get(name, name): _normalise(value) for name, value in (bins or {}).items()}


def _bin_equals(name: str, value: Any):
    if isinstance(value, int) and not isinstance(value, bool):
        return exp.Eq(exp.IntBin(name), value)
    return exp.Eq(exp.StrBin(name), value)


class AerospikeStore(KeyValueStore):
    """Aerospike存储"""

    def __init__(self, client, enterprise: bool = True):
        self.client = client
        # 社区版不支持持久删除
        self.supports_durable_delete = enterprise

    @classmethod
    def from_settings(cls, settings) -> "AerospikeStore":
        """根据AerospikeSettings创建并连接"""
        config = {"hosts": [(settings.host, settings.port)]}
        if settings.user:
            client = aerospike.client(config).connect(settings.user, settings.password)
        else:
            client = aerospike.client(config).connect()
        return cls(client, enterprise=settings.enterprise)

    def identity(self, namespace: str, set_name: str, user_key: Any) -> RecordIdentity:
        """使用服务端一致的摘要"""
        digest = aerospike.calc_digest(namespace, set_name, user_key)
        return RecordIdentity(namespace, set_name, bytes(digest), user_key)

    @staticmethod
    def _key(identity: RecordIdentity) -> Tuple:
        return (identity.namespace, identity.set_name, None, bytearray(identity.digest))

    def put(self, identity: RecordIdentity, bins: Dict[str, Any],
            mode: WriteMode = WriteMode.UPDATE, generation: int = 0) -> None:
        """写入记录（整条替换）"""
        meta = None
        policy: Dict[str, Any] = {"exists": aerospike.POLICY_EXISTS_CREATE_OR_REPLACE}
        if mode == WriteMode.CREATE_ONLY:
            policy["exists"] = aerospike.POLICY_EXISTS_CREATE
        elif mode == WriteMode.EXPECT_GENERATION and generation == 0:
            policy["exists"] = aerospike.POLICY_EXISTS_CREATE
        elif mode == WriteMode.EXPECT_GENERATION:
            policy["exists"] = aerospike.POLICY_EXISTS_REPLACE
            policy["gen"] = aerospike.POLICY_GEN_EQ
            meta = {"gen": generation}

        try:
            self.client.put(self._key(identity), _to_wire(bins), meta=meta, policy=policy)
        except ex.RecordExistsError as exc:
            if mode == WriteMode.EXPECT_GENERATION:
                raise GenerationError(f"Record {identity} already exists, expected generation 0") from exc
            raise RecordExistsError(f"Record {identity} already exists") from exc
        except (ex.RecordGenerationError, ex.RecordNotFound) as exc:
            raise GenerationError(f"Record {identity} is not at generation {generation}") from exc
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc

    def get(self, identity: RecordIdentity) -> Optional[Record]:
        """读取记录"""
        try:
            _, meta, bins = self.client.get(self._key(identity))
        except ex.RecordNotFound:
            return None
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc
        return Record(_from_wire(bins), meta["gen"])

    def get_many(self, identities: Iterable[RecordIdentity]) -> List[Optional[Record]]:
        """批量读取"""
        keys = [self._key(identity) for identity in identities]
        if not keys:
            return []
        try:
            batch = self.client.batch_read(keys)
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc

        records: List[Optional[Record]] = []
        for batch_record in batch.batch_records:
            if batch_record.result == RESULT_OK and batch_record.record is not None:
                _, meta, bins = batch_record.record
                records.append(Record(_from_wire(bins), meta["gen"]))
            else:
                records.append(None)
        return records

    def delete(self, identity: RecordIdentity, match: Optional[Dict[str, Any]] = None,
               generation: Optional[int] = None, durable: bool = False) -> bool:
        """删除记录"""
        if durable and not self.supports_durable_delete:
            logger.warning("Durable delete requested but not supported; deleting %s non-durably", identity)
            durable = False

        meta = None
        policy: Dict[str, Any] = {"durable_delete": durable}
        if generation is not None:
            if generation == 0:
                # 期望记录不存在
                if self.get(identity) is not None:
                    raise GenerationError(f"Record {identity} exists, expected generation 0")
                return False
            policy["gen"] = aerospike.POLICY_GEN_EQ
            meta = {"gen": generation}
        if match:
            conditions = [_bin_equals(name, value) for name, value in match.items()]
            expression = conditions[0] if len(conditions) == 1 else exp.And(*conditions)
            policy["expressions"] = expression.compile()

        try:
            self.client.remove(self._key(identity), meta=meta, policy=policy)
        except ex.RecordNotFound:
            if generation is not None:
                raise GenerationError(f"Record {identity} is at generation 0, expected {generation}")
            return False
        except ex.FilteredOut:
            return False
        except ex.RecordGenerationError as exc:
            raise GenerationError(f"Record {identity} is not at generation {generation}") from exc
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc
        return True

    def scan(self, namespace: str, set_name: str, type_value: str,
             older_than: Optional[int] = None,
             bins: Optional[List[str]] = None) -> Iterator[Tuple[RecordIdentity, Dict[str, Any]]]:
        """二级索引查询：type等值，可选时间戳过滤"""
        query = self.client.query(namespace, set_name)
        if bins is not None:
            query.select(*[BIN_ALIASES.get(name, name) for name in bins])
        query.where(p.equals(TYPE_BIN, type_value))

        policy = {}
        if older_than is not None:
            policy["expressions"] = exp.LT(exp.IntBin(TIMESTAMP_BIN), older_than).compile()

        try:
            results = query.results(policy)
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc

        for key, _, record_bins in results:
            identity = RecordIdentity(namespace, set_name, bytes(key[3]), key[2])
            yield identity, _from_wire(record_bins)

    def create_index(self, namespace: str, set_name: str, bin_name: str, index_name: str) -> None:
        """创建字符串二级索引"""
        try:
            self.client.index_string_create(namespace, set_name, bin_name, index_name)
        except ex.IndexFoundError as exc:
            raise IndexExistsError(f"Index {index_name} already exists") from exc
        except ex.AerospikeError as exc:
            raise StoreError(str(exc)) from exc
