"""
事务协调器
在只保证单记录原子性的键值存储之上实现多记录原子写入：
加锁 -> 记录前像 -> 执行写入 -> 删除事务记录（提交点）-> 释放锁；
任一写入失败则恢复前像、删除事务记录并释放锁
"""

import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from config.settings import TransactionSettings

from ..data_models.errors import GenerationConflict, LockHeld, TransactionFailure, TxnError
from ..data_models.keys import RecordIdentity
from ..data_models.records import current_time_millis, validate_bins
from ..monitoring.metrics import TransactionMetrics
from ..storage.base import GenerationError, KeyValueStore, StoreError, WriteMode
from .locks import LockManager
from .log import PreImages, TransactionLog


logger = logging.getLogger(__name__)

WriteSet = Mapping[RecordIdentity, Optional[Dict[str, Any]]]
Generations = Mapping[RecordIdentity, int]


class TransactionState(Enum):
    """事务状态"""
    LOCKING = "locking"
    LOGGED = "logged"            # 所有锁已持有，前像已持久化
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ABANDONED = "abandoned"      # 调用方在LOGGED之后崩溃，等待恢复


def unique_txn_id() -> str:
    """生成事务ID"""
    return str(uuid.uuid4())


class TransactionCoordinator:
    """事务协调器

    通过组合持有存储接口，不保存任何跨调用的进程内状态；
    多个进程中的协调器实例可以并发操作同一存储。
    """

    def __init__(self, store: KeyValueStore, settings: Optional[TransactionSettings] = None,
                 metrics: Optional[TransactionMetrics] = None,
                 clock: Callable[[], int] = current_time_millis):
        self.store = store
        self.settings = self._resolve_durable_delete(settings or TransactionSettings(), store)
        self.metrics = metrics or TransactionMetrics()
        self.clock = clock
        self.lock_manager = LockManager(store, self.settings, clock)
        self.transaction_log = TransactionLog(store, self.settings, clock)

    @staticmethod
    def _resolve_durable_delete(settings: TransactionSettings, store: KeyValueStore) -> TransactionSettings:
        """根据存储能力确定是否使用持久删除"""
        if not settings.durable_delete:
            logger.warning("Durable deletes disabled for lock/txn deletes")
            logger.warning("Lock and txn records can be resurrected after a store cold restart")
            return settings

        if not store.supports_durable_delete:
            logger.warning("Store does not support durable deletes, running without them")
            logger.warning("This is unsafe: lock and txn records can be resurrected after a store cold restart")
            return settings.model_copy(update={"durable_delete": False})

        logger.info("Enabling durable deletes for all lock/txn deletes")
        return settings

    def put(self, write_set: WriteSet, generations: Optional[Generations] = None,
            txn_id: Optional[str] = None) -> str:
        """原子写入一组记录，返回事务ID"""
        txn_id = txn_id or unique_txn_id()
        self.apply_writes(write_set, txn_id, generations)
        return txn_id

    def apply_writes(self, write_set: WriteSet, txn_id: str,
                     generations: Optional[Generations] = None):
        """原子写入一组记录

        write_set 中值为 None 表示删除该记录。generations 为可选的版本号预期，
        不匹配时整个事务回滚并抛出 GenerationConflict。
        """
        generations = generations or {}
        identities = list(write_set)
        for identity in identities:
            if write_set[identity] is not None:
                validate_bins(write_set[identity])

        started = time.monotonic()

        # 1. 按调用方给定的顺序加锁
        self._transition(txn_id, TransactionState.LOCKING)
        acquired: List[RecordIdentity] = []
        try:
            for identity in identities:
                self.lock_manager.create_lock(identity, txn_id)
                acquired.append(identity)
        except LockHeld:
            self.lock_manager.remove_locks(acquired, txn_id)
            self.metrics.record_lock_conflict()
            raise
        except TxnError:
            self.lock_manager.remove_locks(acquired, txn_id)
            self.metrics.record_failure()
            raise

        # 2. 记录前像，必须在任何修改之前完成
        try:
            pre_images = self.transaction_log.capture_pre_images(identities, txn_id)
            self.transaction_log.write_record(txn_id, pre_images)
        except TransactionFailure:
            self.lock_manager.remove_locks(acquired, txn_id)
            self.metrics.record_failure()
            raise
        self._transition(txn_id, TransactionState.LOGGED)

        # 3. 执行写入
        self._transition(txn_id, TransactionState.APPLYING)
        current = None
        try:
            for identity in identities:
                current = identity
                self._apply(identity, write_set[identity], generations.get(identity))
        except GenerationError as exc:
            self._undo(txn_id, pre_images)
            self.metrics.record_rollback("generation_conflict", self._elapsed_ms(started))
            raise GenerationConflict(current, txn_id, exc) from exc
        except StoreError as exc:
            self._undo(txn_id, pre_images)
            self.metrics.record_rollback("transaction_failure", self._elapsed_ms(started))
            raise TransactionFailure(txn_id, exc) from exc

        # 4. 删除事务记录即提交
        try:
            self.transaction_log.delete_record(txn_id)
        except TransactionFailure:
            logger.error("Commit of txn %s failed, rolling back", txn_id)
            self._undo(txn_id, pre_images)
            self.metrics.record_rollback("transaction_failure", self._elapsed_ms(started))
            raise
        self._transition(txn_id, TransactionState.COMMITTED)

        self.lock_manager.remove_locks(identities, txn_id)
        self.metrics.record_commit(self._elapsed_ms(started))
        logger.info("Committed txn %s (%d record(s))", txn_id, len(identities))

    def _apply(self, identity: RecordIdentity, bins: Optional[Dict[str, Any]],
               expected_generation: Optional[int]):
        if bins is None:
            self.store.delete(identity, generation=expected_generation,
                              durable=self.settings.durable_delete)
        elif expected_generation is not None:
            self.store.put(identity, bins, WriteMode.EXPECT_GENERATION, expected_generation)
        else:
            self.store.put(identity, bins, WriteMode.UPDATE)

    def rollback(self, txn_id: str) -> bool:
        """根据事务ID回滚未完成的事务

        先以新的恢复事务ID锁定事务记录本身，锁被占用说明已有其他调用方在恢复，
        此时直接抛出 LockHeld。事务记录不存在时返回 False。
        """
        recovery_txn_id = unique_txn_id()
        record_key = self.transaction_log.record_identity(txn_id)
        self.lock_manager.create_lock(record_key, recovery_txn_id)

        try:
            record = self.transaction_log.read_record(txn_id)
            if record is None:
                logger.info("No record for txn %s, nothing to roll back", txn_id)
                return False

            self._transition(txn_id, TransactionState.ABANDONED)
            self._undo(txn_id, record.previous_versions)
        finally:
            self.lock_manager.remove_lock(record_key, recovery_txn_id)

        self.metrics.record_rollback("recovery")
        logger.info("Rolled back txn %s", txn_id)
        return True

    def _undo(self, txn_id: str, pre_images: PreImages):
        """恢复前像 -> 删除事务记录 -> 释放原事务的锁"""
        restored = self.transaction_log.restore(txn_id, pre_images)
        self.transaction_log.delete_record(txn_id)
        self.lock_manager.remove_locks(restored, txn_id)
        self._transition(txn_id, TransactionState.ROLLED_BACK)

    def is_incomplete(self, txn_id: str) -> bool:
        """是否存在该事务ID的未完成事务"""
        return self.transaction_log.exists(txn_id)

    def create_lock(self, identity: RecordIdentity, txn_id: str):
        """为记录加锁"""
        self.lock_manager.create_lock(identity, txn_id)

    def remove_lock(self, identity: RecordIdentity, txn_id: str):
        """释放记录的锁"""
        self.lock_manager.remove_lock(identity, txn_id)

    def lock_exists(self, identity: RecordIdentity) -> bool:
        """记录当前是否被锁定"""
        return self.lock_manager.lock_exists(identity)

    def _transition(self, txn_id: str, state: TransactionState):
        logger.debug("Txn %s -> %s", txn_id, state.value)
        self.metrics.record_transition(state.value)

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.monotonic() - started) * 1000
