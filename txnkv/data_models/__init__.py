"""
数据模型包
记录标识、锁记录、事务记录及错误分类
"""

from .base import *
from .errors import *
from .keys import *
from .records import *

__all__ = [
    # 基础模型
    "BaseModel",
    "ValueObject",
    "DomainError",
    "ValidationError",

    # 错误分类
    "ErrorKind",
    "TxnError",
    "LockHeld",
    "GenerationConflict",
    "TransactionFailure",
    "KeyFormatError",

    # 记录标识编解码
    "RecordIdentity",
    "encode",
    "decode",
    "bytes_to_hex",
    "hex_to_bytes",
    "compute_digest",
    "DELIMITER",
    "DIGEST_SIZE",

    # 持久化记录
    "LockRecord",
    "TransactionRecord",
    "AttributeBag",
    "validate_bins",
    "current_time_millis",

    # bin名称与类型标签
    "TYPE_BIN",
    "TXN_ID_BIN",
    "TIMESTAMP_BIN",
    "NAMESPACE_BIN",
    "SET_NAME_BIN",
    "USER_KEY_BIN",
    "PREVIOUS_VERSIONS_BIN",
    "LOCK_TYPE",
    "TXN_TYPE",
]
