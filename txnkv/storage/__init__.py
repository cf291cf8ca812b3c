"""
存储引擎包
事务协调器依赖的键值存储契约及其实现
"""

from .base import *
from .memory import *

__all__ = [
    # 存储契约
    "KeyValueStore",
    "Record",
    "WriteMode",

    # 存储错误
    "StoreError",
    "RecordExistsError",
    "GenerationError",
    "IndexExistsError",

    # 内存存储
    "MemoryStore",
]

# MongoStore (txnkv.storage.mongo) 与 AerospikeStore (txnkv.storage.aerospike_store)
# 需按需导入，后者依赖可选的aerospike客户端
