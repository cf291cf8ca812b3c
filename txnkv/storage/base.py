"""
存储能力契约
事务协调器依赖的键值存储接口：条件写、批量读、带谓词的删除、按类型与时间戳过滤的扫描、二级索引
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..data_models.keys import RecordIdentity


class WriteMode(Enum):
    """写入模式"""
    UPDATE = "update"                          # 无条件写入（替换整个属性包）
    CREATE_ONLY = "create_only"                # 仅当记录不存在时写入
    EXPECT_GENERATION = "expect_generation"    # 仅当版本号等于预期值时写入


@dataclass
class Record:
    """存储记录"""
    bins: Dict[str, Any] = field(default_factory=dict)
    generation: int = 1


class StoreError(Exception):
    """存储层错误基类"""
    pass


class RecordExistsError(StoreError):
    """CREATE_ONLY写入时记录已存在"""
    pass


class GenerationError(StoreError):
    """版本号不匹配"""
    pass


class IndexExistsError(StoreError):
    """二级索引已存在"""
    pass


class KeyValueStore(ABC):
    """键值存储抽象基类

    只保证单记录原子性。版本号从1开始，每次写入加1；不存在的记录视为版本号0。
    """

    supports_durable_delete: bool = False

    def identity(self, namespace: str, set_name: str, user_key: Any) -> RecordIdentity:
        """把 (namespace, set, user_key) 解析为带摘要的记录标识"""
        return RecordIdentity.of(namespace, set_name, user_key)

    @abstractmethod
    def put(self, identity: RecordIdentity, bins: Dict[str, Any],
            mode: WriteMode = WriteMode.UPDATE, generation: int = 0) -> None:
        """写入记录"""
        pass

    @abstractmethod
    def get(self, identity: RecordIdentity) -> Optional[Record]:
        """读取记录，不存在时返回None"""
        pass

    def get_many(self, identities: Iterable[RecordIdentity]) -> List[Optional[Record]]:
        """批量读取，结果与输入对齐"""
        return [self.get(identity) for identity in identities]

    @abstractmethod
    def delete(self, identity: RecordIdentity, match: Optional[Dict[str, Any]] = None,
               generation: Optional[int] = None, durable: bool = False) -> bool:
        """删除记录

        match 为bin等值谓词，不满足时不删除并返回False；记录不存在同样返回False。
        """
        pass

    @abstractmethod
    def scan(self, namespace: str, set_name: str, type_value: str,
             older_than: Optional[int] = None,
             bins: Optional[List[str]] = None) -> Iterator[Tuple[RecordIdentity, Dict[str, Any]]]:
        """按type精确匹配扫描，可选 timestamp < older_than 过滤与bin投影"""
        pass

    @abstractmethod
    def create_index(self, namespace: str, set_name: str, bin_name: str, index_name: str) -> None:
        """创建二级索引"""
        pass
