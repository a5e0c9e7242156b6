"""Poll loop cycle handling: applying, discarding stale cycles, error path."""
import threading
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_snapshot
from machine_status.errors import CycleCancelled, TransportFailure
from machine_status.poll import (
    OFFLINE,
    UPDATE_FAILED,
    CycleState,
    CycleToken,
    HttpSnapshotFetcher,
    PollLoop,
)
from machine_status.render import MemorySink
from machine_status.status import Severity


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def make_loop(sink, registry):
    def _make(fetch=None, sink=sink):
        labels = iter(f"10:00:{i:02d}" for i in range(60))
        return PollLoop(
            fetch=fetch or (lambda token: make_snapshot()),
            sink=sink,
            registry=registry,
            interval=0.05,
            label_fn=lambda: next(labels),
        )
    return _make


# =============================================================================
# CYCLES
# =============================================================================

def test_cycle_applies_snapshot(make_loop, sink, registry):
    loop = make_loop()
    token = loop.begin_cycle()
    assert loop.state is CycleState.FETCHING
    assert loop.run_cycle(token) is True
    assert loop.state is CycleState.IDLE

    assert sink.fields["availability"] == ("AVAILABLE", Severity.NORMAL)
    assert sink.fields["estop"] == ("READY", Severity.NORMAL)
    assert sink.fields["execution"] == ("ACTIVE", Severity.NORMAL)
    assert sink.fields["temperature"][0] == "21.4"
    assert sink.status == "Updated: 2025-01-01T10:00:00Z"
    assert registry["temperature"].values == [21.4]

    labels, values, bounds = sink.series["temperature"]
    assert labels == ["10:00:00"]
    assert values == [21.4]
    assert bounds.high - bounds.low >= 2.0


def test_estop_triggered_is_critical(make_loop, sink):
    loop = make_loop(lambda token: make_snapshot(estop="TRIGGERED"))
    loop.run_cycle(loop.begin_cycle())
    assert sink.fields["estop"] == ("TRIGGERED", Severity.CRITICAL)


def test_same_snapshot_twice(make_loop, sink, registry):
    loop = make_loop()
    loop.run_cycle(loop.begin_cycle())
    first = dict(sink.fields)
    loop.run_cycle(loop.begin_cycle())
    assert sink.fields == first
    assert registry["rpm"].values == [1200.0, 1200.0]


def test_stale_cycle_is_discarded(make_loop, sink, registry):
    loop = make_loop()
    old = loop.begin_cycle()
    new = loop.begin_cycle()
    assert old.cancelled
    assert not new.cancelled

    assert loop.complete(new, make_snapshot(Stemp="25.0")) is True
    # cycle N arrives after N+1 was applied
    assert loop.complete(old, make_snapshot(Stemp="99.0", estop="TRIGGERED")) is False

    assert registry["temperature"].values == [25.0]
    assert sink.fields["estop"] == ("READY", Severity.NORMAL)
    assert loop.applied == 1


def test_stale_failure_does_not_mark_offline(make_loop, sink):
    loop = make_loop()
    old = loop.begin_cycle()
    new = loop.begin_cycle()
    loop.complete(new, make_snapshot())
    assert loop.fail(old, TransportFailure("late timeout")) is False
    assert sink.fields["availability"] == ("AVAILABLE", Severity.NORMAL)
    assert loop.failures == 0


def test_cancelled_fetch_is_dropped(make_loop, sink, registry):
    def fetch(token):
        raise CycleCancelled("superseded")

    loop = make_loop(fetch)
    assert loop.run_cycle(loop.begin_cycle()) is False
    assert loop.failures == 0
    assert len(registry["rpm"]) == 0
    assert sink.fields == {}


def test_transport_failure_enters_error_and_recovers(make_loop, sink, registry):
    responses = [TransportFailure("HTTP 503"), make_snapshot()]

    def fetch(token):
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    loop = make_loop(fetch)
    assert loop.run_cycle(loop.begin_cycle()) is False
    assert sink.fields["availability"] == (OFFLINE, Severity.CAUTION)
    assert sink.status == UPDATE_FAILED
    assert loop.state is CycleState.IDLE
    assert len(registry["rpm"]) == 0

    assert loop.run_cycle(loop.begin_cycle()) is True
    assert sink.fields["availability"] == ("AVAILABLE", Severity.NORMAL)
    assert loop.failures == 1


def test_parse_failure_applies_nothing(make_loop, sink, registry):
    loop = make_loop(lambda token: "<MTConnectStreams>")
    assert loop.run_cycle(loop.begin_cycle()) is False
    assert sink.status == UPDATE_FAILED
    assert sink.fields == {"availability": (OFFLINE, Severity.CAUTION)}
    assert all(len(registry[m]) == 0 for m in registry)


def test_unexpected_fetch_error_is_not_fatal(make_loop, sink):
    def fetch(token):
        raise RuntimeError("boom")

    loop = make_loop(fetch)
    assert loop.run_cycle(loop.begin_cycle()) is False
    assert isinstance(loop.last_error, RuntimeError)
    assert sink.status == UPDATE_FAILED


def test_gap_recorded_for_missing_metric(make_loop, registry):
    loop = make_loop(lambda token: make_snapshot(Xpos="UNAVAILABLE"))
    loop.run_cycle(loop.begin_cycle())
    assert registry["xpos"].values == [None]


def test_unavailable_agent_shows_unknown_badge(make_loop, sink):
    loop = make_loop(lambda token: make_snapshot(availability="UNAVAILABLE"))
    assert loop.run_cycle(loop.begin_cycle()) is True
    assert sink.fields["availability"] == ("–", Severity.UNKNOWN)
    assert sink.status == "Updated: 2025-01-01T10:00:00Z"


def test_render_failure_keeps_windows_aligned(make_loop, registry):
    class DiskFullSink(MemorySink):
        def update_series(self, metric_id, labels, values, bounds):
            if metric_id == "rpm":
                raise OSError("disk full")
            super().update_series(metric_id, labels, values, bounds)

    sink = DiskFullSink()
    loop = make_loop(sink=sink)
    assert loop.run_cycle(loop.begin_cycle()) is False

    assert {len(registry[m]) for m in registry} == {1}
    assert sink.status == UPDATE_FAILED
    assert sink.fields["availability"] == (OFFLINE, Severity.CAUTION)
    assert isinstance(loop.last_error, OSError)
    assert loop.failures == 1
    assert loop.state is CycleState.IDLE

    df = loop.frame()
    assert list(df.index) == ["10:00:00"]
    assert df.loc["10:00:00", "xpos"] == 10.1234


def test_extract_failure_touches_no_window(make_loop, registry):
    def broken_label():
        raise RuntimeError("clock unavailable")

    loop = make_loop()
    loop.label_fn = broken_label
    assert loop.complete(loop.begin_cycle(), make_snapshot()) is False
    assert all(len(registry[m]) == 0 for m in registry)


def test_slow_render_does_not_block_next_cycle(make_loop, registry):
    rendering = threading.Event()
    release = threading.Event()

    class SlowSink(MemorySink):
        def update_series(self, metric_id, labels, values, bounds):
            rendering.set()
            release.wait(2.0)
            super().update_series(metric_id, labels, values, bounds)

    loop = make_loop(sink=SlowSink())
    first = loop.begin_cycle()
    worker = threading.Thread(target=loop.complete, args=(first, make_snapshot()), daemon=True)
    worker.start()
    try:
        assert rendering.wait(2.0)
        started = []
        starter = threading.Thread(target=lambda: started.append(loop.begin_cycle()), daemon=True)
        starter.start()
        starter.join(1.0)
        assert started and started[0].cycle_id == 2
        assert first.cancelled
    finally:
        release.set()
        worker.join(2.0)
    assert {len(registry[m]) for m in registry} == {1}


def test_superseded_before_render_skips_sink(make_loop, sink, registry):
    loop = make_loop()
    first = loop.begin_cycle()

    real_commit = loop._commit

    def commit_then_supersede(record, frame):
        real_commit(record, frame)
        loop._current = CycleToken(99)   # a newer cycle started meanwhile

    loop._commit = commit_then_supersede
    assert loop.complete(first, make_snapshot()) is True
    assert registry["rpm"].values == [1200.0]
    assert sink.series == {}


def test_timer_keeps_polling(make_loop, registry):
    done = threading.Event()
    calls = []

    def fetch(token):
        calls.append(token.cycle_id)
        if len(calls) >= 3:
            done.set()
        return make_snapshot()

    loop = make_loop(fetch)
    loop.start()
    try:
        assert done.wait(2.0)
    finally:
        loop.stop(timeout=1.0)
    assert not loop.running
    assert sorted(calls)[:3] == [1, 2, 3]


# =============================================================================
# HTTP FETCHER
# =============================================================================

def _response(status=200, chunks=(b"<a/>",)):
    r = MagicMock()
    if status >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    r.iter_content.return_value = iter(chunks)
    return r


def test_fetcher_reads_body_without_cache():
    session = MagicMock()
    session.get.return_value = _response(chunks=(b"<MTConnect", b"Streams/>"))
    fetcher = HttpSnapshotFetcher("http://agent:5000/current", timeout=1.0, session=session)

    assert fetcher(CycleToken(1)) == b"<MTConnectStreams/>"
    _, kwargs = session.get.call_args
    assert kwargs["headers"]["Cache-Control"] == "no-cache"
    assert kwargs["timeout"] == 1.0
    session.get.return_value.close.assert_called_once()


def test_fetcher_wraps_http_errors():
    session = MagicMock()
    session.get.return_value = _response(status=503)
    fetcher = HttpSnapshotFetcher("http://agent:5000/current", session=session)
    with pytest.raises(TransportFailure):
        fetcher(CycleToken(1))


def test_fetcher_wraps_network_errors():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    fetcher = HttpSnapshotFetcher("http://agent:5000/current", session=session)
    with pytest.raises(TransportFailure):
        fetcher(CycleToken(1))


def test_fetcher_stops_when_cancelled():
    token = CycleToken(1)
    session = MagicMock()

    def chunks():
        yield b"<MTConnect"
        token.cancel()
        yield b"Streams/>"

    session.get.return_value = _response(chunks=chunks())
    fetcher = HttpSnapshotFetcher("http://agent:5000/current", session=session)
    with pytest.raises(CycleCancelled):
        fetcher(token)
    session.get.return_value.close.assert_called_once()


def test_fetcher_skips_cancelled_token():
    session = MagicMock()
    token = CycleToken(1)
    token.cancel()
    with pytest.raises(CycleCancelled):
        HttpSnapshotFetcher("http://agent:5000/current", session=session)(token)
    session.get.assert_not_called()
