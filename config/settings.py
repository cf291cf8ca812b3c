"""
多记录事务系统配置
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransactionSettings(BaseSettings):
    """事务协调器配置"""
    model_config = SettingsConfigDict(env_prefix="TXNKV_", env_file=".env", extra="ignore")

    # 锁记录与事务记录所在的namespace
    transaction_namespace: str = "test"

    # 使用UUID作为set名，避免与业务set冲突
    transaction_set: str = "5b3adebd60384ebcb1ee7cdd80ab7845"
    lock_set: str = "1d6bc26c6ca74d35a61b129be35bb24a"
    index_marker_set: str = "index-created"

    # 事务过期阈值
    expiry_ms: int = Field(default=30000, ge=0)  # 30秒

    # 持久删除（存储不支持时降级并告警）
    durable_delete: bool = True


class MongoSettings(BaseSettings):
    """MongoDB配置"""
    model_config = SettingsConfigDict(env_prefix="TXNKV_MONGODB_", env_file=".env", extra="ignore")

    host: str = "localhost"
    port: int = 27017
    user: Optional[str] = None
    password: Optional[str] = None
    server_selection_timeout_ms: int = 5000

    @property
    def mongodb_url(self) -> str:
        if self.user:
            return f"mongodb://{self.user}:{self.password}@{self.host}:{self.port}/"
        return f"mongodb://{self.host}:{self.port}/"


class AerospikeSettings(BaseSettings):
    """Aerospike配置"""
    model_config = SettingsConfigDict(env_prefix="TXNKV_AEROSPIKE_", env_file=".env", extra="ignore")

    host: str = "localhost"
    port: int = 3000
    user: Optional[str] = None
    password: Optional[str] = None

    # 社区版不支持持久删除
    enterprise: bool = True


class Settings(BaseSettings):
    """主配置类"""
    model_config = SettingsConfigDict(
        env_prefix="TXNKV_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    transaction: TransactionSettings = Field(default_factory=TransactionSettings)
    mongodb: MongoSettings = Field(default_factory=MongoSettings)
    aerospike: AerospikeSettings = Field(default_factory=AerospikeSettings)
