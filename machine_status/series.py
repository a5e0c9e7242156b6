"""Rolling chart windows, one per charted metric."""
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from machine_status.config import MetricConfig

Point = Tuple[str, Optional[float]]


class SeriesWindow:
    """
    Fixed-capacity FIFO of (label, value) pairs.
    Absent readings are kept as None gaps; ``span_gaps`` only tells renderers
    whether to draw a segment across them.
    """

    def __init__(self, metric_id: str, capacity: int, span_gaps: bool = True):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.metric_id = metric_id
        self.capacity = capacity
        self.span_gaps = span_gaps
        self._points: Deque[Point] = deque(maxlen=capacity)

    def append(self, label: str, value: Optional[float]) -> None:
        # deque(maxlen) drops exactly one entry from the left on overflow
        self._points.append((label, value))

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points)

    @property
    def labels(self) -> List[str]:
        return [label for label, _ in self._points]

    @property
    def values(self) -> List[Optional[float]]:
        return [value for _, value in self._points]

    def present_values(self) -> List[float]:
        return [value for _, value in self._points if value is not None]


class SeriesRegistry:
    """Metric id -> owned SeriesWindow, built once at startup."""

    def __init__(self, windows: Iterable[SeriesWindow]):
        self._windows: Dict[str, SeriesWindow] = {w.metric_id: w for w in windows}

    @classmethod
    def from_metrics(cls, metrics: Iterable[MetricConfig], capacity: Optional[int] = None) -> "SeriesRegistry":
        return cls(SeriesWindow(m.metric_id, capacity or m.capacity) for m in metrics)

    def __getitem__(self, metric_id: str) -> SeriesWindow:
        return self._windows[metric_id]

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._windows

    def __iter__(self) -> Iterator[str]:
        return iter(self._windows)

    def items(self):
        return self._windows.items()

    def to_frame(self) -> pd.DataFrame:
        """
        Recent samples as a table, one column per metric, newest row last.
        Windows are appended together each cycle, so rows line up from the tail;
        shorter windows are padded with NaN at the top.
        """
        longest = max(self._windows.values(), key=len, default=None)
        labels = longest.labels if longest is not None else []
        n = len(labels)
        columns = {}
        for metric_id, window in self._windows.items():
            values = [v if v is not None else float("nan") for v in window.values]
            columns[metric_id] = [float("nan")] * (n - len(values)) + values
        df = pd.DataFrame(columns, index=pd.Index(labels, name="time"), dtype="float64")
        return df
