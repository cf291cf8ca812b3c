"""
记录锁管理
每条记录一个建议性排他锁，锁记录以CREATE_ONLY方式写入存储，
利用存储的"仅创建"语义作为跨进程的CAS原语
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from config.settings import TransactionSettings

from ..data_models.errors import LockHeld, TransactionFailure
from ..data_models.keys import RecordIdentity, encode
from ..data_models.records import TXN_ID_BIN, LockRecord, current_time_millis
from ..storage.base import KeyValueStore, RecordExistsError, StoreError, WriteMode


logger = logging.getLogger(__name__)


class LockManager:
    """锁管理器

    不持有任何进程内状态，锁的存在与归属完全由存储中的锁记录决定。
    """

    def __init__(self, store: KeyValueStore, settings: TransactionSettings,
                 clock: Callable[[], int] = current_time_millis):
        self.store = store
        self.settings = settings
        self.clock = clock

    def lock_identity(self, identity: RecordIdentity) -> RecordIdentity:
        """记录对应的锁记录标识"""
        return self.store.identity(
            self.settings.transaction_namespace,
            self.settings.lock_set,
            encode(identity),
        )

    def create_lock(self, identity: RecordIdentity, txn_id: str):
        """获取锁

        同一事务重复加锁视为成功；锁被其他事务持有时抛出LockHeld。
        """
        lock_key = self.lock_identity(identity)
        lock = LockRecord(
            txn_id=txn_id,
            namespace=identity.namespace,
            set_name=identity.set_name,
            user_key="" if identity.user_key is None else str(identity.user_key),
            timestamp=self.clock(),
        )

        try:
            self.store.put(lock_key, lock.to_bins(), WriteMode.CREATE_ONLY)
        except RecordExistsError:
            existing = self._get(lock_key, txn_id)
            # 锁在两次操作之间被释放也视为冲突，由调用方重试
            if existing is None or existing.bins.get(TXN_ID_BIN) != txn_id:
                raise LockHeld(identity, txn_id)
            logger.debug("Lock on %s already held by txn %s", identity, txn_id)
            return
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

        logger.debug("Locked %s for txn %s", identity, txn_id)

    def remove_lock(self, identity: RecordIdentity, txn_id: str):
        """释放锁

        仅删除属于txn_id的锁；锁不存在或属于其他事务时不做任何操作。
        """
        try:
            removed = self.store.delete(
                self.lock_identity(identity),
                match={TXN_ID_BIN: txn_id},
                durable=self.settings.durable_delete,
            )
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc

        if removed:
            logger.debug("Released lock on %s for txn %s", identity, txn_id)

    def remove_locks(self, identities: Iterable[RecordIdentity], txn_id: str):
        """释放一组记录的锁"""
        for identity in identities:
            self.remove_lock(identity, txn_id)

    def lock_exists(self, identity: RecordIdentity) -> bool:
        """记录当前是否被锁定"""
        try:
            return self.store.get(self.lock_identity(identity)) is not None
        except StoreError as exc:
            raise TransactionFailure(None, exc) from exc

    def read_lock(self, identity: RecordIdentity) -> Optional[LockRecord]:
        """读取锁记录"""
        try:
            record = self.store.get(self.lock_identity(identity))
        except StoreError as exc:
            raise TransactionFailure(None, exc) from exc
        return LockRecord.from_bins(record.bins) if record is not None else None

    def get_lock_info(self, identity: RecordIdentity) -> Dict[str, Any]:
        """获取锁信息"""
        lock = self.read_lock(identity)
        return {
            'resource_id': encode(identity),
            'locked': lock is not None,
            'txn_id': lock.txn_id if lock else None,
            'locked_at': lock.timestamp if lock else None,
        }

    def _get(self, lock_key: RecordIdentity, txn_id: str):
        try:
            return self.store.get(lock_key)
        except StoreError as exc:
            raise TransactionFailure(txn_id, exc) from exc
