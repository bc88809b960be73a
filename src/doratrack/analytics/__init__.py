"""DORA analytics: period metrics and commit-scoped dashboards."""

from doratrack.analytics.dora_aggregate import (
    AggregateMetrics,
    DoraAggregator,
    author_filter,
    is_merge_commit,
)
from doratrack.analytics.dora_metrics import (
    DORALevel,
    DORAMetricsEngine,
    DORAMetricType,
    classify_change_failure_rate,
)
from doratrack.analytics.periods import Period, iter_periods

__all__ = [
    "AggregateMetrics",
    "DORALevel",
    "DORAMetricType",
    "DORAMetricsEngine",
    "DoraAggregator",
    "Period",
    "author_filter",
    "classify_change_failure_rate",
    "is_merge_commit",
    "iter_periods",
]
