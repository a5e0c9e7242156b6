"""Fixed-rate polling of the MTConnect agent.

Each timer tick starts a new cycle with its own :class:`CycleToken` and
cancels the previous one. A cycle only touches badges and chart windows
while its token is still the current one, so a late response from a
superseded cycle is dropped instead of overwriting newer data.

    Idle -> Fetching -> Processing -> Idle
              \\            \\
               +-> Error <---+-> Idle
"""
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import requests

from machine_status.autoscale import Autoscaler
from machine_status.config import METRICS, POLL_INTERVAL, REQUEST_TIMEOUT, MetricConfig
from machine_status.errors import CycleCancelled, MonitorError, TransportFailure
from machine_status.extract import FIELD_SPECS, FieldSpec, SnapshotRecord, extract, parse_snapshot
from machine_status.render import RenderSink, field_updates, format_updated
from machine_status.series import SeriesRegistry
from machine_status.status import Severity, badge

log = logging.getLogger(__name__)

OFFLINE = "OFFLINE"
UPDATE_FAILED = "Update failed"

Payload = Union[str, bytes]


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    ERROR = "error"


class CycleToken:
    def __init__(self, cycle_id: int):
        self.cycle_id = cycle_id
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __repr__(self) -> str:
        return f"CycleToken({self.cycle_id}{', cancelled' if self.cancelled else ''})"


# ===================== Transport =====================
class HttpSnapshotFetcher:
    """GET the agent's current snapshot, giving up early once the token is cancelled."""

    NO_CACHE = {"Cache-Control": "no-cache", "Pragma": "no-cache"}

    def __init__(self, endpoint: str, timeout: float = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None, chunk_size: int = 8192):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.chunk_size = chunk_size

    def __call__(self, token: CycleToken) -> bytes:
        if token.cancelled:
            raise CycleCancelled(f"cycle {token.cycle_id} cancelled before fetch")
        try:
            r = self.session.get(self.endpoint, timeout=self.timeout, headers=self.NO_CACHE, stream=True)
            try:
                r.raise_for_status()
                chunks = []
                for chunk in r.iter_content(chunk_size=self.chunk_size):
                    if token.cancelled:
                        raise CycleCancelled(f"cycle {token.cycle_id} cancelled during fetch")
                    chunks.append(chunk)
            finally:
                r.close()
        except requests.RequestException as e:
            raise TransportFailure(f"{self.endpoint}: {e}") from e
        return b"".join(chunks)

    def close(self) -> None:
        self.session.close()


def clock_label() -> str:
    return datetime.now().strftime("%H:%M:%S")


@dataclass
class Frame:
    """One cycle's render output, built before any window is touched."""
    updates: List[Tuple[str, str, Severity]]
    status: str
    label: str
    points: Dict[str, Any]
    series: List[Tuple[str, Sequence[str], Sequence[Optional[float]], Any]] = field(default_factory=list)


# ===================== Poll loop =====================
class PollLoop:
    def __init__(
        self,
        fetch: Callable[[CycleToken], Payload],
        sink: RenderSink,
        registry: SeriesRegistry,
        metrics: Dict[str, MetricConfig] = METRICS,
        specs: Iterable[FieldSpec] = FIELD_SPECS,
        interval: float = POLL_INTERVAL,
        autoscaler: Optional[Autoscaler] = None,
        label_fn: Callable[[], str] = clock_label,
    ):
        self.fetch = fetch
        self.sink = sink
        self.registry = registry
        self.metrics = metrics
        self.specs = tuple(specs)
        self.interval = interval
        self.autoscaler = autoscaler or Autoscaler()
        self.label_fn = label_fn

        self.state = CycleState.IDLE
        self.last_record: Optional[SnapshotRecord] = None
        self.last_error: Optional[BaseException] = None
        self.applied = 0
        self.failures = 0

        self._ids = itertools.count(1)
        self._current: Optional[CycleToken] = None
        self._lock = threading.Lock()          # token swap and window updates
        self._render_lock = threading.Lock()   # sink calls
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None

    # ----- cycle lifecycle -----
    def begin_cycle(self) -> CycleToken:
        """Cancel the outstanding cycle (if any) and make a new one current."""
        with self._lock:
            if self._current is not None and not self._current.cancelled:
                log.debug(f"Cancelling outstanding cycle {self._current.cycle_id}")
                self._current.cancel()
            token = CycleToken(next(self._ids))
            self._current = token
            self.state = CycleState.FETCHING
        return token

    def is_current(self, token: CycleToken) -> bool:
        return token is self._current and not token.cancelled

    def run_cycle(self, token: CycleToken) -> bool:
        """Fetch and apply one cycle. Returns True when the result was applied."""
        try:
            body = self.fetch(token)
        except CycleCancelled as e:
            log.debug(f"Discarding cycle {token.cycle_id}: {e}")
            return False
        except Exception as e:
            self.fail(token, e)
            return False
        return self.complete(token, body)

    def complete(self, token: CycleToken, body: Payload) -> bool:
        """Parse, extract and apply a fetched payload if the token is still current."""
        with self._lock:
            if not self.is_current(token):
                log.debug(f"Discarding stale result of cycle {token.cycle_id}")
                return False
            self.state = CycleState.PROCESSING
            try:
                record = extract(parse_snapshot(body), self.specs)
                frame = self._prepare(record)
            except Exception as e:
                self._record_failure(token, e)
                frame = None
            else:
                self._commit(record, frame)

        if frame is None:
            self._show_offline(token)
            return False

        # Windows are committed; rendering runs outside the cycle lock.
        try:
            self._render(token, frame)
        except Exception as e:
            with self._lock:
                self._record_failure(token, e)
            self._show_offline(token)
            return False

        with self._lock:
            self.applied += 1
            if self.is_current(token):
                self.state = CycleState.IDLE
        return True

    def fail(self, token: CycleToken, exc: BaseException) -> bool:
        with self._lock:
            if not self.is_current(token):
                log.debug(f"Ignoring failure of stale cycle {token.cycle_id}: {exc}")
                return False
            self._record_failure(token, exc)
        self._show_offline(token)
        return True

    def _record_failure(self, token: CycleToken, exc: BaseException) -> None:
        self.state = CycleState.ERROR
        self.failures += 1
        self.last_error = exc
        if isinstance(exc, MonitorError):
            log.warning(f"Cycle {token.cycle_id} failed: {exc}")
        else:
            log.exception(f"Cycle {token.cycle_id} failed unexpectedly: {exc}")

    def _show_offline(self, token: CycleToken) -> None:
        offline = badge("availability", OFFLINE)
        with self._render_lock:
            self.sink.update_field(offline.field_id, offline.text, offline.severity)
            self.sink.set_status(UPDATE_FAILED)
        with self._lock:
            if self._current is token:
                self.state = CycleState.IDLE

    def _prepare(self, record: SnapshotRecord) -> Frame:
        """Everything derived from the record; raises before any window is touched."""
        return Frame(
            updates=field_updates(record, self.metrics),
            status=format_updated(record.get("updated")),
            label=self.label_fn(),
            points={metric_id: record.get(metric_id) for metric_id in self.registry},
        )

    def _commit(self, record: SnapshotRecord, frame: Frame) -> None:
        # Append to every window and rescale; nothing here raises, so all
        # windows always move together.
        for metric_id, value in frame.points.items():
            window = self.registry[metric_id]
            window.append(frame.label, value)
            cfg = self.metrics.get(metric_id)
            bounds = self.autoscaler.rescale(metric_id, window.values, cfg.min_span if cfg else 0.0)
            frame.series.append((metric_id, window.labels, window.values, bounds))
        self.last_record = record

    def _render(self, token: CycleToken, frame: Frame) -> None:
        with self._render_lock:
            if not self.is_current(token):
                log.debug(f"Cycle {token.cycle_id} superseded before render")
                return
            for field_id, text, severity in frame.updates:
                self.sink.update_field(field_id, text, severity)
            self.sink.set_status(frame.status)
            for metric_id, labels, values, bounds in frame.series:
                self.sink.update_series(metric_id, labels, values, bounds)

    def frame(self):
        """Chart windows as a DataFrame, read consistently with cycle application."""
        with self._lock:
            return self.registry.to_frame()

    # ----- timer -----
    def tick(self) -> CycleToken:
        """Start a new cycle in a worker thread without waiting for it."""
        token = self.begin_cycle()
        threading.Thread(
            target=self.run_cycle, args=(token,), name=f"cycle-{token.cycle_id}", daemon=True
        ).start()
        return token

    def _timer_loop(self) -> None:
        log.info(f"Polling every {self.interval:.1f}s")
        next_tick = time.monotonic()
        while not self._stop.is_set():
            self.tick()
            # Fixed-rate schedule: tick times do not depend on cycle duration
            next_tick += self.interval
            sleep_for = next_tick - time.monotonic()
            if sleep_for > 0:
                self._stop.wait(sleep_for)
            else:
                next_tick = time.monotonic()

    def start(self) -> None:
        if self._timer is not None and self._timer.is_alive():
            return
        self._stop.clear()
        self._timer = threading.Thread(target=self._timer_loop, name="poll-timer", daemon=True)
        self._timer.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        with self._lock:
            if self._current is not None:
                self._current.cancel()
        if self._timer is not None:
            self._timer.join(timeout)
            self._timer = None
        log.info("Polling stopped")

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.is_alive()
