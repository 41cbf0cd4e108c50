"""Periodic collection of module metrics and their text exposition."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol


@dataclass
class Metric:
    """A named gauge whose value is obtained by calling ``read``."""

    name: str
    description: str = ""
    read: Callable[[], float] | None = None


class MetricsProvider(Protocol):
    def metrics(self) -> list[Metric]: ...


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == int(value) and abs(value) < 1e21:
        return str(int(value))
    return repr(float(value))


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


class MetricsCollector:
    """Collects gauges from metrics providers at a fixed interval."""

    def __init__(
        self,
        namespace: str = "gotenberg",
        interval: float = 1.0,
        disable_route_logging: bool = False,
        disable_collect: bool = False,
    ) -> None:
        self.namespace = namespace
        self.interval = interval
        self.disable_route_logging = disable_route_logging
        self.disable_collect = disable_collect
        self.metrics: list[Metric] = []
        self._gauges: dict[str, tuple[Metric, float]] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._threads: list[threading.Thread] = []

    def provision(self, providers: Iterable[MetricsProvider]) -> None:
        """Gather the metrics of every provider."""
        if self.disable_collect:
            return
        for provider in providers:
            try:
                metrics = provider.metrics()
            except Exception as exc:
                raise RuntimeError(f"get metrics: {exc}") from exc
            self.metrics.extend(metrics)

    def validate(self) -> None:
        """Check the namespace and that metrics are named, readable and unique."""
        if self.disable_collect:
            return
        if not self.namespace:
            raise ValueError("namespace must not be empty")
        seen: set[str] = set()
        for metric in self.metrics:
            if not metric.name:
                raise ValueError("metric name cannot be empty")
            if metric.read is None:
                raise ValueError(f"metric '{metric.name}' has nil read method")
            if metric.name in seen:
                raise ValueError(f"metric '{metric.name}' is already registered")
            seen.add(metric.name)

    def _full_name(self, metric: Metric) -> str:
        return f"{self.namespace}_{metric.name}"

    def _collect(self, full_name: str, metric: Metric) -> None:
        while not self._stopped.is_set():
            value = float(metric.read())
            with self._lock:
                self._gauges[full_name] = (metric, value)
            self._stopped.wait(self.interval)

    def start(self) -> None:
        """Register one gauge per metric and start refreshing them."""
        if self.disable_collect:
            return
        self._stopped.clear()
        for metric in self.metrics:
            full_name = self._full_name(metric)
            with self._lock:
                if full_name in self._gauges:
                    raise ValueError(f"metric '{full_name}' is already registered")
                self._gauges[full_name] = (metric, 0.0)
            thread = threading.Thread(target=self._collect, args=(full_name, metric), daemon=True)
            self._threads.append(thread)
            thread.start()

    def stop(self) -> None:
        """Stop refreshing the gauges."""
        self._stopped.set()
        for thread in self._threads:
            thread.join(timeout=self.interval + 1.0)
        self._threads.clear()

    def startup_message(self) -> str:
        return "collect disabled" if self.disable_collect else "collecting metrics"

    def render(self) -> str:
        """The registered gauges in the Prometheus text exposition format."""
        if self.disable_collect:
            return ""
        with self._lock:
            gauges = sorted(self._gauges.items())
        lines: list[str] = []
        for full_name, (metric, value) in gauges:
            lines.append(f"# HELP {full_name} {_escape_help(metric.description)}")
            lines.append(f"# TYPE {full_name} gauge")
            lines.append(f"{full_name} {_format_value(value)}")
        return "".join(line + "\n" for line in lines)