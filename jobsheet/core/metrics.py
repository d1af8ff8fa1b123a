"""
In-process metrics for the entitlement service, exported as Prometheus text
on /metrics.

Only two shapes are needed: monotonically increasing counters (requests,
webhook outcomes, write conflicts, transitions, emails) and the audit gauge,
which is replaced wholesale on every audit run.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

LabelValues = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"")


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names = tuple(label_names or ())
        self._values: Dict[LabelValues, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Mapping[str, str]]) -> LabelValues:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def value(self, labels: Optional[Mapping[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def export(self) -> List[str]:
        lines = [f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            samples = sorted(self._values.items())
        for key, value in samples:
            labels = ",".join(f'{name}="{_escape(v)}"' for name, v in zip(self.label_names, key))
            lines.append(f"{self.name}{{{labels}}} {value}" if labels else f"{self.name} {value}")
        return lines


class Counter(_Metric):
    kind = "counter"

    def inc(self, labels: Optional[Mapping[str, str]] = None, amount: float = 1.0) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount


class Gauge(_Metric):
    kind = "gauge"

    def replace(self, samples: Mapping[str, float]) -> None:
        """Swap every sample at once; keyed by the gauge's single label."""
        if len(self.label_names) != 1:
            raise ValueError(f"{self.name}: replace() needs exactly one label")
        with self._lock:
            self._values = {(str(label),): float(value) for label, value in samples.items()}


class MetricsRegistry:
    def __init__(self):
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _register(self, metric: _Metric) -> _Metric:
        with self._lock:
            return self._metrics.setdefault(metric.name, metric)

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        return self._register(Counter(name, label_names))

    def gauge(self, name: str, label_names: Optional[Iterable[str]] = None) -> Gauge:
        return self._register(Gauge(name, label_names))

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in self._metrics.values():
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for metric in self._metrics.values():
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", ["method", "path", "status"])
billing_webhook_events_total = METRICS.counter("billing_webhook_events_total", ["kind", "outcome"])
entitlement_write_conflicts_total = METRICS.counter("entitlement_write_conflicts_total", ["operation"])
entitlement_transitions_total = METRICS.counter("entitlement_transitions_total", ["from_status", "to_status"])
notifications_total = METRICS.counter("notifications_total", ["template", "outcome"])

entitlement_audit_issues = METRICS.gauge("entitlement_audit_issues", ["issue"])


# Account ids, UUIDs and numeric ids all collapse to :id
_ID_SEGMENT_RE = re.compile(r"^(?:\d+|[0-9a-fA-F-]{8,}|(?:acct|user|cus|sub|cs)_\w+)$")


def normalize_path(path: str) -> str:
    segments = [segment for segment in path.split("/") if segment]
    return "/" + "/".join(":id" if _ID_SEGMENT_RE.match(segment) else segment for segment in segments)
