"""
内存键值存储
进程内实现的存储能力契约，单记录操作在全局锁内原子执行，用于测试和本地运行
"""
import copy
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..data_models.keys import RecordIdentity
from ..data_models.records import TIMESTAMP_BIN, TYPE_BIN
from .base import (
    GenerationError,
    IndexExistsError,
    KeyValueStore,
    Record,
    RecordExistsError,
    WriteMode,
)


class MemoryStore(KeyValueStore):
    """内存存储"""

    def __init__(self, supports_durable_delete: bool = True):
        self.supports_durable_delete = supports_durable_delete
        self.data: Dict[Tuple[str, str], Dict[bytes, Record]] = defaultdict(dict)  # (namespace, set) -> digest -> record
        self.user_keys: Dict[Tuple[str, str, bytes], Any] = {}
        self.indexes: Dict[str, Tuple[str, str, str]] = {}  # index_name -> (namespace, set, bin)
        self.lock = threading.RLock()

    def put(self, identity: RecordIdentity, bins: Dict[str, Any],
            mode: WriteMode = WriteMode.UPDATE, generation: int = 0) -> None:
        """写入记录"""
        with self.lock:
            records = self.data[(identity.namespace, identity.set_name)]
            current = records.get(identity.digest)
            current_generation = current.generation if current else 0

            if mode == WriteMode.CREATE_ONLY and current is not None:
                raise RecordExistsError(f"Record {identity} already exists")
            if mode == WriteMode.EXPECT_GENERATION and current_generation != generation:
                raise GenerationError(
                    f"Record {identity} is at generation {current_generation}, expected {generation}"
                )

            records[identity.digest] = Record(copy.deepcopy(bins), current_generation + 1)
            if identity.user_key is not None:
                self.user_keys[(identity.namespace, identity.set_name, identity.digest)] = identity.user_key

    def get(self, identity: RecordIdentity) -> Optional[Record]:
        """读取记录"""
        with self.lock:
            record = self.data[(identity.namespace, identity.set_name)].get(identity.digest)
            if record is None:
                return None
            return Record(copy.deepcopy(record.bins), record.generation)

    def get_many(self, identities: Iterable[RecordIdentity]) -> List[Optional[Record]]:
        """批量读取（同一锁内完成）"""
        with self.lock:
            return [self.get(identity) for identity in identities]

    def delete(self, identity: RecordIdentity, match: Optional[Dict[str, Any]] = None,
               generation: Optional[int] = None, durable: bool = False) -> bool:
        """删除记录"""
        with self.lock:
            records = self.data[(identity.namespace, identity.set_name)]
            current = records.get(identity.digest)
            current_generation = current.generation if current else 0

            if generation is not None and current_generation != generation:
                raise GenerationError(
                    f"Record {identity} is at generation {current_generation}, expected {generation}"
                )
            if current is None:
                return False
            if match and any(current.bins.get(name) != value for name, value in match.items()):
                return False

            del records[identity.digest]
            self.user_keys.pop((identity.namespace, identity.set_name, identity.digest), None)
            return True

    def scan(self, namespace: str, set_name: str, type_value: str,
             older_than: Optional[int] = None,
             bins: Optional[List[str]] = None) -> Iterator[Tuple[RecordIdentity, Dict[str, Any]]]:
        """扫描记录"""
        with self.lock:
            snapshot = [
                (digest, copy.deepcopy(record.bins))
                for digest, record in self.data[(namespace, set_name)].items()
            ]
            user_keys = {
                digest: self.user_keys.get((namespace, set_name, digest))
                for digest, _ in snapshot
            }

        for digest, record_bins in snapshot:
            if record_bins.get(TYPE_BIN) != type_value:
                continue
            if older_than is not None:
                timestamp = record_bins.get(TIMESTAMP_BIN)
                if not isinstance(timestamp, int) or timestamp >= older_than:
                    continue
            if bins is not None:
                record_bins = {name: record_bins[name] for name in bins if name in record_bins}

            yield RecordIdentity(namespace, set_name, digest, user_keys[digest]), record_bins

    def create_index(self, namespace: str, set_name: str, bin_name: str, index_name: str) -> None:
        """创建二级索引（只登记，扫描不依赖索引）"""
        with self.lock:
            if index_name in self.indexes:
                raise IndexExistsError(f"Index {index_name} already exists")
            self.indexes[index_name] = (namespace, set_name, bin_name)

    def count(self, namespace: str, set_name: str) -> int:
        """统计集合中的记录数"""
        with self.lock:
            return len(self.data[(namespace, set_name)])
