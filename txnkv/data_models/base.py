"""
基础数据模型
提供锁记录、事务记录等持久化模型的通用功能
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel as PydanticBaseModel, ConfigDict


class BaseModel(PydanticBaseModel):
    """基础Pydantic模型"""

    model_config = ConfigDict(
        # 允许用字段名或别名构造
        populate_by_name=True,
        # 使用枚举值
        use_enum_values=True,
        # 验证赋值
        validate_assignment=True,
    )

    def to_bins(self) -> Dict[str, Any]:
        """转换为存储层的bin字典（使用线上别名）"""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_bins(cls, bins: Dict[str, Any]):
        """从存储层的bin字典还原"""
        return cls.model_validate(bins)


class ValueObject(BaseModel):
    """值对象基类"""

    # 值对象不可变，相等性基于值
    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )


class DomainError(Exception):
    """领域错误基类"""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(DomainError):
    """验证错误"""
    pass
