"""Y-axis bounds for the rolling charts.

Series flatter than ``min_span`` are centred on their midpoint with a
half-span of ``max(min_span / 2, |mid| * padding)``. Wider series are padded
by ``span * padding`` on both sides. Padding never clips data.
"""
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from machine_status.config import MAX_TICKS, PADDING_FRACTION


@dataclass(frozen=True)
class AxisBounds:
    low: float
    high: float
    ticks: int = MAX_TICKS

    @property
    def span(self) -> float:
        return self.high - self.low


def tick_count(low: float, high: float, max_ticks: int = MAX_TICKS) -> int:
    """Number of axis ticks: one per "nice" step, never more than max_ticks."""
    span = high - low
    if span <= 0 or not math.isfinite(span):
        return 2
    step = 10 ** math.floor(math.log10(span))
    ticks = int(span // step) + 1
    return max(2, min(max_ticks, ticks))


def compute_bounds(
    values: Iterable[Optional[float]],
    padding_fraction: float = PADDING_FRACTION,
    min_span: float = 0.0,
    previous: Optional[AxisBounds] = None,
    max_ticks: int = MAX_TICKS,
) -> Optional[AxisBounds]:
    present = [v for v in values if v is not None]
    if not present:
        return previous

    lo, hi = min(present), max(present)
    if hi - lo < min_span:
        mid = (hi + lo) / 2
        half = max(min_span / 2, abs(mid) * padding_fraction)
        low, high = mid - half, mid + half
    else:
        pad = (hi - lo) * padding_fraction
        low, high = lo - pad, hi + pad
    return AxisBounds(low, high, tick_count(low, high, max_ticks))


class Autoscaler:
    """Keeps the last bounds per metric so an all-gap window keeps its axis."""

    def __init__(self, padding_fraction: float = PADDING_FRACTION, max_ticks: int = MAX_TICKS):
        self.padding_fraction = padding_fraction
        self.max_ticks = max_ticks
        self._bounds: Dict[str, Optional[AxisBounds]] = {}

    def rescale(self, metric_id: str, values: Iterable[Optional[float]], min_span: float) -> Optional[AxisBounds]:
        bounds = compute_bounds(
            values,
            padding_fraction=self.padding_fraction,
            min_span=min_span,
            previous=self._bounds.get(metric_id),
            max_ticks=self.max_ticks,
        )
        self._bounds[metric_id] = bounds
        return bounds

    def bounds(self, metric_id: str) -> Optional[AxisBounds]:
        return self._bounds.get(metric_id)
