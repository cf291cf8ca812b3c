"""
事务处理包
在单记录原子的键值存储上实现多记录原子事务：锁管理、事务日志、回滚与恢复
"""

from ..data_models.errors import *
from ..data_models.keys import *
from .locks import *
from .log import *
from .coordinator import *
from .recovery import *

__all__ = [
    # 错误分类
    "ErrorKind",
    "TxnError",
    "LockHeld",
    "GenerationConflict",
    "TransactionFailure",
    "KeyFormatError",

    # 记录标识
    "RecordIdentity",
    "encode",
    "decode",

    # 锁与日志
    "LockManager",
    "TransactionLog",
    "PreImages",

    # 协调器
    "TransactionCoordinator",
    "TransactionState",
    "unique_txn_id",

    # 恢复
    "RecoveryManager",
    "SweepReport",
]
