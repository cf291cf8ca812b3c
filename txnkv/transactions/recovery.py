"""
恢复管理
回滚调用方崩溃后遗留的过期事务，清理没有存活事务的孤儿锁，
并在首次启动时为锁集合和事务集合建立type二级索引
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set, Tuple

from ..data_models.errors import LockHeld, TransactionFailure
from ..data_models.records import (
    LOCK_TYPE,
    TIMESTAMP_BIN,
    TXN_ID_BIN,
    TXN_TYPE,
    TYPE_BIN,
)
from ..monitoring.metrics import TransactionMetrics
from ..storage.base import IndexExistsError, StoreError
from .coordinator import TransactionCoordinator


logger = logging.getLogger(__name__)

# 索引创建标记记录的固定键
LOCK_INDEX_MARKER_KEY = "62d020b4-7561-410d-a269-16bc32194409"
TXN_INDEX_MARKER_KEY = "c86304ee-a0fa-48ef-86b2-21040979d0a2"
INDEX_MARKER_TYPE = "index-created-record"

LOCK_TYPE_INDEX = "lock_type_idx"
TXN_TYPE_INDEX = "txn_type_idx"


@dataclass
class SweepReport:
    """一次恢复清理的结果"""
    rolled_back: int = 0
    contended: List[str] = field(default_factory=list)
    orphan_locks_removed: int = 0


class RecoveryManager:
    """恢复管理器

    只依赖存储中的记录，不持有跨调用的进程内状态，
    多个恢复管理器可以与正在进行的事务并发运行。
    """

    def __init__(self, coordinator: TransactionCoordinator, expiry_ms: Optional[int] = None,
                 metrics: Optional[TransactionMetrics] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.coordinator = coordinator
        self.store = coordinator.store
        self.settings = coordinator.settings
        self.expiry_ms = self.settings.expiry_ms if expiry_ms is None else expiry_ms
        self.metrics = metrics or coordinator.metrics
        self.clock = clock or coordinator.clock

    def _threshold(self) -> int:
        return self.clock() - self.expiry_ms

    def expired_transaction_ids(self) -> List[str]:
        """早于过期阈值的事务ID"""
        try:
            return [
                bins[TXN_ID_BIN]
                for _, bins in self.store.scan(
                    self.settings.transaction_namespace,
                    self.settings.transaction_set,
                    TXN_TYPE,
                    older_than=self._threshold(),
                    bins=[TXN_ID_BIN],
                )
                if TXN_ID_BIN in bins
            ]
        except StoreError as exc:
            raise TransactionFailure(None, exc) from exc

    def sweep_expired_transactions(self) -> int:
        """回滚所有过期事务，返回回滚数量"""
        rolled_back, _ = self._rollback_expired()
        return rolled_back

    def _rollback_expired(self) -> Tuple[int, List[str]]:
        """回滚过期事务，返回 (回滚数量, 被其他调用方占用的事务ID)

        某个事务正被其他调用方恢复时记录日志并跳过。
        """
        rolled_back = 0
        contended: List[str] = []
        for txn_id in self.expired_transaction_ids():
            try:
                if self.coordinator.rollback(txn_id):
                    rolled_back += 1
            except LockHeld:
                logger.warning("Txn %s is being recovered elsewhere, skipping", txn_id)
                contended.append(txn_id)

        if rolled_back:
            logger.info("Rolled back %d expired txn(s)", rolled_back)
        self.metrics.record_recovery(rolled_back, 0)
        return rolled_back, contended

    def sweep_orphan_locks(self) -> int:
        """删除过期且所属事务不存在的锁，返回删除数量"""
        try:
            live_txn_ids = self._live_txn_ids()
            stale_locks = list(self.store.scan(
                self.settings.transaction_namespace,
                self.settings.lock_set,
                LOCK_TYPE,
                older_than=self._threshold(),
                bins=[TXN_ID_BIN, TIMESTAMP_BIN],
            ))

            removed = 0
            for lock_key, bins in stale_locks:
                owner = bins.get(TXN_ID_BIN)
                if owner in live_txn_ids:
                    continue
                # 以观察到的持有者为条件删除，锁已被重新获取时不受影响
                if self.store.delete(lock_key, match={TXN_ID_BIN: owner},
                                     durable=self.settings.durable_delete):
                    logger.debug("Removed orphan lock %s owned by txn %s", lock_key, owner)
                    removed += 1
        except StoreError as exc:
            raise TransactionFailure(None, exc) from exc

        if removed:
            logger.info("Removed %d orphan lock(s)", removed)
        self.metrics.record_recovery(0, removed)
        return removed

    def _live_txn_ids(self) -> Set[str]:
        return {
            bins[TXN_ID_BIN]
            for _, bins in self.store.scan(
                self.settings.transaction_namespace,
                self.settings.transaction_set,
                TXN_TYPE,
                bins=[TXN_ID_BIN],
            )
            if TXN_ID_BIN in bins
        }

    def sweep(self) -> SweepReport:
        """先回滚过期事务，再清理孤儿锁"""
        rolled_back, contended = self._rollback_expired()
        report = SweepReport(
            rolled_back=rolled_back,
            contended=contended,
            orphan_locks_removed=self.sweep_orphan_locks(),
        )
        logger.info(
            "Recovery sweep: %d rolled back, %d contended, %d orphan lock(s) removed",
            report.rolled_back, len(report.contended), report.orphan_locks_removed,
        )
        return report

    def setup(self):
        """为锁集合和事务集合创建type索引（可重复调用）"""
        self._ensure_index(self.settings.lock_set, LOCK_TYPE_INDEX, LOCK_INDEX_MARKER_KEY, LOCK_TYPE)
        self._ensure_index(self.settings.transaction_set, TXN_TYPE_INDEX, TXN_INDEX_MARKER_KEY, TXN_TYPE)

    def _ensure_index(self, set_name: str, index_name: str, marker_key: str, marker_value: str):
        namespace = self.settings.transaction_namespace
        marker = self.store.identity(namespace, self.settings.index_marker_set, marker_key)

        try:
            if self.store.get(marker) is not None:
                logger.debug("Index %s already created", index_name)
                return

            try:
                self.store.create_index(namespace, set_name, TYPE_BIN, index_name)
                logger.info("Created index %s on %s.%s", index_name, namespace, set_name)
            except IndexExistsError:
                logger.info("Index %s already exists", index_name)

            self.store.put(marker, {TYPE_BIN: INDEX_MARKER_TYPE, "value": marker_value})
        except StoreError as exc:
            raise TransactionFailure(None, exc) from exc
