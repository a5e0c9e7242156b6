"""Render sinks: where a processed cycle ends up.

The poll loop only knows the :class:`RenderSink` contract. ``MemorySink``
keeps the latest frame in memory (used by the Streamlit dashboard and the
tests), ``MatplotlibSink`` writes one PNG per chart for headless runs.
"""
import logging
import math
import os
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from machine_status.autoscale import AxisBounds
from machine_status.config import FIELD_DECIMALS, METRICS, PLACEHOLDER, MetricConfig
from machine_status.series import SeriesRegistry
from machine_status.status import BADGE_FIELDS, TEXT_FIELDS, Severity, badge

log = logging.getLogger(__name__)


# ===================== Formatting =====================
def format_number(val: Optional[float], decimals: int = 3) -> str:
    return PLACEHOLDER if val is None else f"{val:.{decimals}f}"


def format_count(val: Optional[float]) -> str:
    if val is None:
        return PLACEHOLDER
    return str(int(val)) if float(val).is_integer() else str(val)


def format_updated(creation_time: Optional[str]) -> str:
    return f"Updated: {creation_time}" if creation_time else "—"


def field_updates(
    record: Mapping[str, Any], metrics: Dict[str, MetricConfig] = METRICS
) -> List[Tuple[str, str, Severity]]:
    """(field id, display text, severity) for every tile on the dashboard."""
    out: List[Tuple[str, str, Severity]] = []
    for field_id in BADGE_FIELDS:
        b = badge(field_id, record.get(field_id))
        out.append((field_id, b.text, b.severity))
    for field_id in TEXT_FIELDS:
        out.append((field_id, record.get(field_id) or PLACEHOLDER, Severity.NONE))
    for field_id, cfg in metrics.items():
        out.append((field_id, format_number(record.get(field_id), cfg.decimals), Severity.NONE))
    for field_id, decimals in FIELD_DECIMALS.items():
        if field_id == "partcount":
            text = format_count(record.get(field_id))
        else:
            text = format_number(record.get(field_id), decimals)
        out.append((field_id, text, Severity.NONE))
    return out


# ===================== Contract =====================
class RenderSink(Protocol):
    def update_field(self, field_id: str, text: str, severity: Severity = Severity.NONE) -> None: ...

    def update_series(
        self,
        metric_id: str,
        labels: Sequence[str],
        values: Sequence[Optional[float]],
        bounds: Optional[AxisBounds],
    ) -> None: ...

    def set_status(self, message: str) -> None: ...


def plot_points(
    labels: Sequence[str], values: Sequence[Optional[float]], span_gaps: bool = True
) -> Tuple[List[int], List[float]]:
    """
    x/y arrays for a line plot. With span_gaps the absent points are dropped so
    the line bridges them; otherwise they become NaN and break the line.
    """
    xs: List[int] = []
    ys: List[float] = []
    for i, val in enumerate(values[: len(labels)]):
        if val is None:
            if span_gaps:
                continue
            val = math.nan
        xs.append(i)
        ys.append(val)
    return xs, ys


# ===================== Sinks =====================
class MemorySink:
    """Latest state of every field and chart, safe to read from another thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self.fields: Dict[str, Tuple[str, Severity]] = {}
        self.series: Dict[str, Tuple[List[str], List[Optional[float]], Optional[AxisBounds]]] = {}
        self.status: str = "—"
        self.renders = 0

    def update_field(self, field_id: str, text: str, severity: Severity = Severity.NONE) -> None:
        with self._lock:
            self.fields[field_id] = (text, severity)

    def update_series(self, metric_id, labels, values, bounds) -> None:
        with self._lock:
            self.series[metric_id] = (list(labels), list(values), bounds)
            self.renders += 1

    def set_status(self, message: str) -> None:
        with self._lock:
            self.status = message

    def snapshot(self):
        with self._lock:
            return dict(self.fields), dict(self.series), self.status


class MatplotlibSink:
    """Writes <plot_dir>/<metric>.png on every chart update.

    Gap bridging follows each metric's ``SeriesWindow.span_gaps``.
    """

    def __init__(self, plot_dir: str, registry: SeriesRegistry, metrics: Dict[str, MetricConfig] = METRICS):
        import matplotlib
        matplotlib.use("Agg")

        self.plot_dir = plot_dir
        self.metrics = metrics
        self.registry = registry
        os.makedirs(plot_dir, exist_ok=True)

    def update_field(self, field_id: str, text: str, severity: Severity = Severity.NONE) -> None:
        if severity in (Severity.NONE, Severity.NORMAL):
            log.debug(f"{field_id}: {text}")
        else:
            log.info(f"{field_id}: {text} [{severity.value}]")

    def update_series(self, metric_id, labels, values, bounds) -> None:
        import matplotlib.pyplot as plt

        cfg = self.metrics.get(metric_id)
        title = cfg.label if cfg else metric_id
        color = cfg.color if cfg else None
        span_gaps = self.registry[metric_id].span_gaps if metric_id in self.registry else True

        xs, ys = plot_points(labels, values, span_gaps)
        fig, ax = plt.subplots(figsize=(10, 3))
        try:
            ax.plot(xs, ys, color=color, linewidth=2, label=title)
            if bounds is not None:
                ax.set_ylim(bounds.low, bounds.high)
                ax.locator_params(axis="y", nbins=bounds.ticks)
            step = max(1, len(labels) // 6)
            ax.set_xticks(range(0, len(labels), step))
            ax.set_xticklabels(list(labels)[::step], rotation=45, ha="right")
            ax.set_title(title)
            ax.grid(True, alpha=0.2)
            fig.tight_layout()
            fig.savefig(os.path.join(self.plot_dir, f"{metric_id}.png"))
        finally:
            plt.close(fig)

    def set_status(self, message: str) -> None:
        log.info(message)
