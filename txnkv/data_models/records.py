"""
锁记录与事务记录模型
定义持久化到存储层的记录布局，并在序列化边界做类型校验
"""
import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import (
    Field,
    StrictBool,
    StrictBytes,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
)
from pydantic import ValidationError as PydanticValidationError

from .base import ValidationError, ValueObject


# bin名称（线上格式）
TYPE_BIN = "type"
TXN_ID_BIN = "txnID"
TIMESTAMP_BIN = "timestamp"
NAMESPACE_BIN = "namespace"
SET_NAME_BIN = "set"
USER_KEY_BIN = "userKey"
PREVIOUS_VERSIONS_BIN = "previousVersions"

# 记录类型标签
LOCK_TYPE = "lock"
TXN_TYPE = "txn"


def current_time_millis() -> int:
    """当前时间（毫秒）"""
    return int(time.time() * 1000)


BinValue = Union[
    StrictBool,
    StrictInt,
    StrictFloat,
    StrictStr,
    StrictBytes,
    List[Any],
    Dict[str, Any],
]
AttributeBag = Dict[str, BinValue]

_ATTRIBUTE_BAG = TypeAdapter(AttributeBag)


def validate_bins(bins: Any) -> AttributeBag:
    """校验属性包，只允许存储层支持的标量与容器类型"""
    try:
        return _ATTRIBUTE_BAG.validate_python(bins)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Unsupported attribute bag: {exc.error_count()} invalid value(s)",
            error_code="invalid_bins",
        ) from exc


class LockRecord(ValueObject):
    """锁记录"""
    type: Literal["lock"] = LOCK_TYPE
    txn_id: str = Field(alias=TXN_ID_BIN)
    namespace: str
    set_name: str = Field(alias=SET_NAME_BIN)
    user_key: str = Field(default="", alias=USER_KEY_BIN)
    timestamp: int


class TransactionRecord(ValueObject):
    """事务记录 - 保存事务开始前所有记录的前像"""
    type: Literal["txn"] = TXN_TYPE
    # 记录标识字符串 -> 前像（None表示事务开始前记录不存在）
    previous_versions: Dict[str, Optional[AttributeBag]] = Field(
        default_factory=dict, alias=PREVIOUS_VERSIONS_BIN
    )
    txn_id: str = Field(alias=TXN_ID_BIN)
    timestamp: int

    def keys(self) -> List[str]:
        """事务涉及的记录标识字符串"""
        return list(self.previous_versions)
