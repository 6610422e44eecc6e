from __future__ import annotations

import threading
from time import time
from typing import Dict, Tuple

# In-memory metrics for a single frogtable process.
# Counters, gauges and summaries (sum, count), exposed at GET /metrics.

_Key = Tuple[str, Tuple[Tuple[str, str], ...]]


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[_Key, float] = {}
        self._gauges: Dict[_Key, float] = {}
        self._summaries: Dict[_Key, Tuple[float, int]] = {}

    @staticmethod
    def _key(name: str, labels: Dict[str, str] | None) -> _Key:
        return name, tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))

    def counter_inc(self, name: str, labels: Dict[str, str] | None = None, amount: float = 1.0) -> None:
        k = self._key(name, labels)
        with self._lock:
            self._counters[k] = self._counters.get(k, 0.0) + float(amount)

    def gauge_add(self, name: str, amount: float, labels: Dict[str, str] | None = None) -> None:
        k = self._key(name, labels)
        with self._lock:
            self._gauges[k] = self._gauges.get(k, 0.0) + float(amount)

    def summary_observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        k = self._key(name, labels)
        with self._lock:
            total, count = self._summaries.get(k, (0.0, 0))
            self._summaries[k] = (total + float(value), count + 1)

    def counter_value(self, name: str, labels: Dict[str, str] | None = None) -> float:
        with self._lock:
            return self._counters.get(self._key(name, labels), 0.0)

    def gauge_value(self, name: str, labels: Dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges.get(self._key(name, labels), 0.0)

    def render_prometheus(self) -> str:
        lines: list[str] = []
        with self._lock:
            for kind, series in (("counter", self._counters), ("gauge", self._gauges)):
                for name in sorted({n for n, _ in series}):
                    lines.append(f"# TYPE {name} {kind}")
                    for (n, items), val in series.items():
                        if n == name:
                            lines.append(f"{name}{_fmt_labels(items)} {val}")
            for name in sorted({n for n, _ in self._summaries}):
                lines.append(f"# TYPE {name} summary")
                for (n, items), (total, count) in self._summaries.items():
                    if n == name:
                        lines.append(f"{name}_sum{_fmt_labels(items)} {total}")
                        lines.append(f"{name}_count{_fmt_labels(items)} {count}")
        lines.append(f"# EOF {int(time())}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._summaries.clear()


def _fmt_labels(items: Tuple[Tuple[str, str], ...]) -> str:
    if not items:
        return ""
    parts = [f'{k}="{_escape(v)}"' for k, v in items]
    return "{" + ",".join(parts) + "}"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


registry = MetricsRegistry()


def counter_inc(name: str, labels: Dict[str, str] | None = None, amount: float = 1.0) -> None:
    registry.counter_inc(name, labels, amount)


def gauge_inc(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    registry.gauge_add(name, amount, labels)


def gauge_dec(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    registry.gauge_add(name, -float(amount), labels)


def summary_observe(name: str, value: float, labels: Dict[str, str] | None = None) -> None:
    registry.summary_observe(name, value, labels)


def render_prometheus() -> str:
    return registry.render_prometheus()
