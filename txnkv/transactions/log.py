"""
事务日志（预写日志）
在任何修改之前持久化事务涉及记录的前像，用于提交失败时的回滚和崩溃后的恢复
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from config.settings import TransactionSettings

from ..data_models.errors import TransactionFailure
from ..data_models.keys import RecordIdentity, decode, encode
from ..data_models.records import AttributeBag, TransactionRecord, current_time_millis
from ..storage.base import KeyValueStore, StoreError, WriteMode


logger = logging.getLogger(__name__)

PreImages = Dict[str, Optional[AttributeBag]]


class TransactionLog:
    """事务日志

    事务记录存在即表示事务未完成；删除事务记录就是提交点。
    """

    def __init__(self, store: KeyValueStore, settings: TransactionSettings,
                 clock: Callable[[], int] = current_time_millis):
        self.store = store
        self.settings = settings
        self.clock = clock

    def record_identity(self, txn_id: str) -> RecordIdentity:
        """事务记录的存储标识"""
        return self.store.identity(
            self.settings.transaction_namespace,
            self.settings.transaction_set,
            txn_id,
        )

    def capture_pre_images(self, identities: Iterable[RecordIdentity], txn_id: str) -> PreImages:
        """批量读取记录当前状态作为前像"""
        identities = list(identities)
        try:
            records = self.store.get_many(identities)
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

        return {
            encode(identity): (record.bins if record is not None else None)
            for identity, record in zip(identities, records)
        }

    def write_record(self, txn_id: str, pre_images: PreImages) -> TransactionRecord:
        """持久化事务记录"""
        try:
            record = TransactionRecord(
                previous_versions=pre_images,
                txn_id=txn_id,
                timestamp=self.clock(),
            )
        except PydanticValidationError as exc:
            # 事务外写入的记录可能含有无法持久化为前像的值
            raise TransactionFailure(txn_id, exc) from exc

        try:
            self.store.put(self.record_identity(txn_id), record.to_bins(), WriteMode.UPDATE)
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

        logger.debug("Logged %d pre-image(s) for txn %s", len(pre_images), txn_id)
        return record

    def read_record(self, txn_id: str) -> Optional[TransactionRecord]:
        """读取事务记录"""
        try:
            record = self.store.get(self.record_identity(txn_id))
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

        if record is None:
            return None
        try:
            return TransactionRecord.from_bins(record.bins)
        except PydanticValidationError as exc:
            raise TransactionFailure(txn_id, exc) from exc

    def delete_record(self, txn_id: str):
        """删除事务记录"""
        try:
            self.store.delete(self.record_identity(txn_id), durable=self.settings.durable_delete)
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

    def exists(self, txn_id: str) -> bool:
        """事务记录是否存在"""
        try:
            return self.store.get(self.record_identity(txn_id)) is not None
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

    def restore(self, txn_id: str, pre_images: PreImages) -> List[RecordIdentity]:
        """把每条记录恢复为前像

        重复执行结果相同，恢复过程可以被多次调用。
        """
        restored = []
        for key, bins in pre_images.items():
            identity = decode(key)
            try:
                if bins is not None:
                    self.store.put(identity, bins, WriteMode.UPDATE)
                else:
                    # 事务开始前不存在的记录
                    self.store.delete(identity, durable=self.settings.durable_delete)
            except StoreError as exc:
                raise TransactionFailure(txn_id, exc) from exc
            restored.append(identity)

        return restored
