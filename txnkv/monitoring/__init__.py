"""
监控系统包
事务与恢复相关的指标收集
"""

from .metrics import *

__all__ = [
    # 指标收集
    "MetricType",
    "Observation",
    "Metric",
    "MetricsRegistry",
    "TransactionMetrics",
]
