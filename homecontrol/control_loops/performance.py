"""Per-operation timing counters reported in controller status documents."""

from dataclasses import dataclass, field
from functools import wraps
from time import perf_counter
from typing import Any


@dataclass
class PerformanceMetric:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None

    def record(self, elapsed_ms: float) -> None:
        self.count += 1
        self.total_ms += elapsed_ms
        self.min_ms = elapsed_ms if self.min_ms is None else min(self.min_ms, elapsed_ms)
        self.max_ms = elapsed_ms if self.max_ms is None else max(self.max_ms, elapsed_ms)

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
        }


@dataclass
class PerformanceMetrics:
    metrics: dict[str, PerformanceMetric] = field(default_factory=dict)

    def record(self, name: str, elapsed_ms: float) -> None:
        metric = self.metrics.get(name)
        if metric is None:
            metric = PerformanceMetric()
            self.metrics[name] = metric
        metric.record(elapsed_ms)

    def to_dict(self) -> dict[str, Any]:
        return {name: metric.to_dict() for name, metric in self.metrics.items()}


def track_performance(name: str):
    """Record wall time of a controller method into ``self.performance_metrics``."""

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start = perf_counter()
            try:
                return func(self, *args, **kwargs)
            finally:
                elapsed_ms = (perf_counter() - start) * 1000.0
                if hasattr(self, "performance_metrics"):
                    self.performance_metrics.record(name, elapsed_ms)

        return wrapper

    return decorator
