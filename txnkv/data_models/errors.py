"""
事务错误分类
所有事务错误共享一个异常族，通过kind字段区分类型，并携带记录标识、事务ID和底层原因
"""

from enum import Enum
from typing import Any, Optional

from .base import DomainError


class ErrorKind(str, Enum):
    """错误类型"""
    LOCK_HELD = "lock_held"                        # 记录已被其他事务锁定（可重试的竞争）
    GENERATION_CONFLICT = "generation_conflict"    # 版本号检查失败（业务层面的过期数据）
    TRANSACTION_FAILURE = "transaction_failure"    # 其他存储层错误（可能可重试的基础设施故障）
    KEY_FORMAT = "key_format"                      # 记录标识字符串格式错误


class TxnError(DomainError):
    """事务错误基类"""

    kind: ErrorKind

    def __init__(self, kind: ErrorKind, message: str, identity: Any = None,
                 txn_id: Optional[str] = None, cause: Optional[BaseException] = None):
        self.kind = kind
        self.identity = identity
        self.txn_id = txn_id
        self.cause = cause
        super().__init__(message, error_code=kind.value)


class LockHeld(TxnError):
    """记录已被其他事务锁定"""

    def __init__(self, identity: Any, txn_id: str):
        super().__init__(
            ErrorKind.LOCK_HELD,
            f"Lock already exists for key {identity} for txn id {txn_id}",
            identity=identity,
            txn_id=txn_id,
        )


class GenerationConflict(TxnError):
    """版本号检查失败"""

    def __init__(self, identity: Any, txn_id: str, cause: Optional[BaseException] = None):
        super().__init__(
            ErrorKind.GENERATION_CONFLICT,
            f"Generation check failed for key {identity} for txn id {txn_id}",
            identity=identity,
            txn_id=txn_id,
            cause=cause,
        )


class TransactionFailure(TxnError):
    """事务执行过程中的存储层错误，保留原始原因"""

    def __init__(self, txn_id: Optional[str], cause: Optional[BaseException] = None):
        context = f"Transaction {txn_id}" if txn_id else "Transaction support operation"
        super().__init__(
            ErrorKind.TRANSACTION_FAILURE,
            f"{context} failed: {cause}",
            txn_id=txn_id,
            cause=cause,
        )


class KeyFormatError(TxnError, ValueError):
    """记录标识字符串格式错误"""

    def __init__(self, raw: str, reason: str = "should contain three parts delimited by '::'"):
        self.raw = raw
        super().__init__(ErrorKind.KEY_FORMAT, f"Key {raw!r} {reason}")
