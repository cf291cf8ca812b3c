"""
监控指标收集系统
记录事务提交、回滚、锁冲突和恢复相关的指标，按标签组合分序列保存
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..data_models.records import current_time_millis


LabelKey = Tuple[Tuple[str, str], ...]


class MetricType(Enum):
    """指标类型"""
    COUNTER = "counter"         # 计数器（只增不减）
    GAUGE = "gauge"            # 量规（可增可减）
    HISTOGRAM = "histogram"    # 直方图


def _label_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


@dataclass
class Observation:
    """直方图观测值"""
    value: float
    labels: LabelKey = ()
    timestamp: int = field(default_factory=current_time_millis)


@dataclass
class Metric:
    """指标

    计数器和量规按标签组合保存当前值；直方图保留最近的观测值。
    """
    name: str
    metric_type: MetricType
    description: str
    unit: str = ""
    series: Dict[LabelKey, float] = field(default_factory=dict)
    observations: Deque[Observation] = field(default_factory=lambda: deque(maxlen=1000))

    def increment(self, amount: float = 1, labels: Optional[Dict[str, str]] = None):
        key = _label_key(labels)
        self.series[key] = self.series.get(key, 0) + amount

    def set(self, value: float, labels: Optional[Dict[str, str]] = None):
        self.series[_label_key(labels)] = value

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None):
        self.observations.append(Observation(value, _label_key(labels)))

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        """指定标签组合的值；不指定标签时为所有序列之和"""
        if labels is not None:
            return self.series.get(_label_key(labels), 0)
        return sum(self.series.values())

    def get_statistics(self) -> Dict[str, Any]:
        """直方图统计"""
        if not self.observations:
            return {}

        values = [obs.value for obs in self.observations]
        return {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'avg': sum(values) / len(values),
        }


class MetricsRegistry:
    """指标注册表"""

    def __init__(self):
        self.metrics: Dict[str, Metric] = {}
        self.lock = threading.RLock()

    def register(self, name: str, metric_type: MetricType, description: str, unit: str = "") -> Metric:
        """注册指标，已存在时返回原指标"""
        with self.lock:
            if name not in self.metrics:
                self.metrics[name] = Metric(name, metric_type, description, unit)
            return self.metrics[name]

    def get_metric(self, name: str) -> Optional[Metric]:
        with self.lock:
            return self.metrics.get(name)

    def get_all_metrics(self) -> List[Metric]:
        with self.lock:
            return list(self.metrics.values())

    def _typed(self, name: str, metric_type: MetricType) -> Optional[Metric]:
        metric = self.metrics.get(name)
        if metric is None or metric.metric_type != metric_type:
            return None
        return metric

    def record_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None):
        """计数器累加"""
        with self.lock:
            metric = self._typed(name, MetricType.COUNTER)
            if metric:
                metric.increment(value, labels)

    def record_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """设置量规"""
        with self.lock:
            metric = self._typed(name, MetricType.GAUGE)
            if metric:
                metric.set(value, labels)

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """记录直方图观测值"""
        with self.lock:
            metric = self._typed(name, MetricType.HISTOGRAM)
            if metric:
                metric.observe(value, labels)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """获取指标摘要"""
        with self.lock:
            summary = {}
            for name, metric in self.metrics.items():
                entry = {
                    'type': metric.metric_type.value,
                    'description': metric.description,
                    'unit': metric.unit,
                }
                if metric.metric_type == MetricType.HISTOGRAM:
                    entry.update(metric.get_statistics())
                else:
                    entry['value'] = metric.value()
                summary[name] = entry
            return summary

    def export_prometheus_format(self) -> str:
        """导出Prometheus文本格式"""
        lines = []

        with self.lock:
            for name, metric in self.metrics.items():
                lines.append(f"# HELP {name} {metric.description}")
                lines.append(f"# TYPE {name} {metric.metric_type.value}")

                if metric.metric_type == MetricType.HISTOGRAM:
                    stats = metric.get_statistics()
                    if stats:
                        lines.append(f"{name}_count {stats['count']}")
                        lines.append(f"{name}_sum {stats['sum']}")
                    continue

                for key, value in metric.series.items():
                    labels = ",".join(f'{k}="{v}"' for k, v in key)
                    lines.append(f"{name}{{{labels}}} {value}" if labels else f"{name} {value}")

        return "\n".join(lines)


class TransactionMetrics:
    """事务指标收集器"""

    COMMITTED = "txn_committed_total"
    ROLLED_BACK = "txn_rolled_back_total"
    LOCK_CONFLICTS = "txn_lock_conflicts_total"
    GENERATION_CONFLICTS = "txn_generation_conflicts_total"
    FAILURES = "txn_failures_total"
    APPLY_DURATION = "txn_apply_duration_ms"
    RECOVERED = "recovery_rolled_back_total"
    ORPHAN_LOCKS_REMOVED = "recovery_orphan_locks_removed_total"
    TRANSITIONS = "txn_state_transitions_total"

    def __init__(self, registry: Optional[MetricsRegistry] = None):
        self.registry = registry or MetricsRegistry()
        for name, metric_type, description, unit in (
            (self.COMMITTED, MetricType.COUNTER, "已提交事务数", "transactions"),
            (self.ROLLED_BACK, MetricType.COUNTER, "已回滚事务数", "transactions"),
            (self.LOCK_CONFLICTS, MetricType.COUNTER, "锁冲突次数", "conflicts"),
            (self.GENERATION_CONFLICTS, MetricType.COUNTER, "版本号冲突次数", "conflicts"),
            (self.FAILURES, MetricType.COUNTER, "存储故障导致的事务失败数", "transactions"),
            (self.APPLY_DURATION, MetricType.HISTOGRAM, "事务执行耗时", "ms"),
            (self.RECOVERED, MetricType.COUNTER, "恢复时回滚的过期事务数", "transactions"),
            (self.ORPHAN_LOCKS_REMOVED, MetricType.COUNTER, "清理的孤儿锁数", "locks"),
            (self.TRANSITIONS, MetricType.COUNTER, "事务状态转换次数", "transitions"),
        ):
            self.registry.register(name, metric_type, description, unit)

    def record_commit(self, duration_ms: float):
        self.registry.record_counter(self.COMMITTED)
        self.registry.record_histogram(self.APPLY_DURATION, duration_ms, {'outcome': 'committed'})

    def record_rollback(self, reason: str, duration_ms: Optional[float] = None):
        """记录回滚，reason为generation_conflict、transaction_failure或recovery"""
        self.registry.record_counter(self.ROLLED_BACK, 1, {'reason': reason})
        if reason == "generation_conflict":
            self.registry.record_counter(self.GENERATION_CONFLICTS)
        elif reason == "transaction_failure":
            self.registry.record_counter(self.FAILURES)
        if duration_ms is not None:
            self.registry.record_histogram(self.APPLY_DURATION, duration_ms, {'outcome': 'rolled_back'})

    def record_transition(self, state: str):
        """按目标状态计数"""
        self.registry.record_counter(self.TRANSITIONS, 1, {'state': state})

    def record_lock_conflict(self):
        self.registry.record_counter(self.LOCK_CONFLICTS)

    def record_failure(self):
        """记录未进入执行阶段的事务失败"""
        self.registry.record_counter(self.FAILURES)

    def record_recovery(self, rolled_back: int, orphan_locks_removed: int):
        """记录一次恢复清理的结果"""
        if rolled_back:
            self.registry.record_counter(self.RECOVERED, rolled_back)
        if orphan_locks_removed:
            self.registry.record_counter(self.ORPHAN_LOCKS_REMOVED, orphan_locks_removed)

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """计数器当前值（未记录时为0）"""
        metric = self.registry.get_metric(name)
        return metric.value(labels) if metric else 0
