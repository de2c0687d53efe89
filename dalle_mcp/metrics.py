"""In-process metrics with JSON and Prometheus text output."""

import math
import resource
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

HISTOGRAM_WINDOW = 1000


@dataclass
class Counter:
    name: str
    labels: dict[str, str]
    value: float = 0.0


@dataclass
class Gauge:
    name: str
    labels: dict[str, str]
    value: float = 0.0


@dataclass
class Histogram:
    name: str
    labels: dict[str, str]
    count: int = 0
    sum: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    values: list[float] = field(default_factory=list)


def _key(name: str, labels: dict[str, str]) -> str:
    label_str = ",".join(f'{k}="{labels[k]}"' for k in sorted(labels))
    return f"{name}{{{label_str}}}" if label_str else name


def _format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"


def percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil(len(ordered) * p) - 1
    return ordered[max(0, index)]


class MetricsStore:
    def __init__(self) -> None:
        self.start_time = time.time()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def increment_counter(self, name: str, value: float = 1, labels: dict[str, str] | None = None) -> None:
        labels = labels or {}
        with self._lock:
            key = _key(name, labels)
            counter = self._counters.setdefault(key, Counter(name, labels))
            counter.value += value

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        labels = labels or {}
        with self._lock:
            self._gauges[_key(name, labels)] = Gauge(name, labels, value)

    def record_histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        labels = labels or {}
        with self._lock:
            key = _key(name, labels)
            hist = self._histograms.setdefault(key, Histogram(name, labels))
            hist.count += 1
            hist.sum += value
            hist.min = min(hist.min, value)
            hist.max = max(hist.max, value)
            hist.values.append(value)
            if len(hist.values) > HISTOGRAM_WINDOW:
                del hist.values[0]

    def counter_value(self, name: str, labels: dict[str, str] | None = None) -> float:
        counter = self._counters.get(_key(name, labels or {}))
        return counter.value if counter else 0.0

    @property
    def uptime(self) -> float:
        return time.time() - self.start_time

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": self.uptime,
                "counters": [
                    {"name": c.name, "labels": c.labels, "value": c.value} for c in self._counters.values()
                ],
                "gauges": [
                    {"name": g.name, "labels": g.labels, "value": g.value} for g in self._gauges.values()
                ],
                "histograms": [
                    {
                        "name": h.name,
                        "labels": h.labels,
                        "count": h.count,
                        "sum": h.sum,
                        "min": h.min,
                        "max": h.max,
                        "avg": h.sum / h.count,
                        "p50": percentile(h.values, 0.5),
                        "p95": percentile(h.values, 0.95),
                        "p99": percentile(h.values, 0.99),
                    }
                    for h in self._histograms.values()
                ],
            }

    def prometheus(self) -> str:
        lines = [
            "# HELP process_uptime_seconds Process uptime in seconds",
            "# TYPE process_uptime_seconds gauge",
            f"process_uptime_seconds {self.uptime}",
            "",
        ]
        with self._lock:
            for c in self._counters.values():
                lines += [
                    f"# HELP {c.name} Counter metric",
                    f"# TYPE {c.name} counter",
                    f"{c.name}{_format_labels(c.labels)} {c.value:g}",
                    "",
                ]
            for g in self._gauges.values():
                lines += [
                    f"# HELP {g.name} Gauge metric",
                    f"# TYPE {g.name} gauge",
                    f"{g.name}{_format_labels(g.labels)} {g.value:g}",
                    "",
                ]
            for h in self._histograms.values():
                labels = _format_labels(h.labels)
                lines += [
                    f"# HELP {h.name} Histogram metric",
                    f"# TYPE {h.name} histogram",
                    f"{h.name}_count{labels} {h.count}",
                    f"{h.name}_sum{labels} {h.sum:g}",
                    "",
                ]
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Module singleton
metrics = MetricsStore()


def track_image_generation(model: str, duration_ms: float, success: bool, error: str | None = None) -> None:
    metrics.increment_counter("image_generations_total", 1, {"model": model, "success": str(success).lower()})
    if success:
        metrics.record_histogram("image_generation_duration_ms", duration_ms, {"model": model})
    else:
        metrics.increment_counter(
            "image_generation_errors_total", 1, {"model": model, "error": error or "unknown"},
        )


def track_http_request(method: str, path: str, status: int, duration_ms: float) -> None:
    metrics.increment_counter("http_requests_total", 1, {"method": method, "path": path})
    labels = {"method": method, "path": path, "status": str(status)}
    metrics.record_histogram("http_request_duration_ms", duration_ms, labels)
    metrics.increment_counter("http_responses_total", 1, labels)


def update_process_metrics() -> None:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is in kilobytes on Linux and bytes on macOS
    rss = usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024
    metrics.set_gauge("process_max_rss_bytes", rss)
    metrics.set_gauge("process_cpu_user_seconds", usage.ru_utime)
    metrics.set_gauge("process_cpu_system_seconds", usage.ru_stime)
