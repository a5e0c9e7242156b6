from machine_status.config import ENDPOINT, METRICS, POLL_INTERVAL, get_settings


def test_defaults(monkeypatch):
    for var in ("MTC_ENDPOINT", "MTC_POLL_INTERVAL", "MTC_MAX_POINTS"):
        monkeypatch.delenv(var, raising=False)
    s = get_settings()
    assert s.endpoint == ENDPOINT
    assert s.poll_interval == POLL_INTERVAL
    assert s.max_points == 30


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MTC_ENDPOINT", "http://10.0.0.5:5000/current")
    monkeypatch.setenv("MTC_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("MTC_MAX_POINTS", "60")
    s = get_settings()
    assert s.endpoint == "http://10.0.0.5:5000/current"
    assert s.poll_interval == 0.5
    assert s.max_points == 60


def test_charted_metrics():
    assert list(METRICS) == ["temperature", "angle", "rpm", "xpos", "zpos"]
    assert all(m.min_span > 0 for m in METRICS.values())
