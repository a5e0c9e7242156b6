import os
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet

# ===================== Configuration =====================
ENDPOINT = "http://localhost:5000/current"
POLL_INTERVAL = 2.0               # seconds
REQUEST_TIMEOUT = 1.5             # seconds per request
MAX_POINTS = 30                   # points kept per chart
PADDING_FRACTION = 0.1            # axis padding relative to span
MAX_TICKS = 6
PLOT_DIR = "plots"
LOG_LEVEL = "INFO"

DEFAULT_SENTINELS: FrozenSet[str] = frozenset({"UNAVAILABLE", "-9999"})
# -9999 can be a real (if unlikely) reading on some temperature sensors
TEMPERATURE_SENTINELS: FrozenSet[str] = frozenset({"UNAVAILABLE"})
# Categorical readings: UNAVAILABLE means no value, like any other sentinel
TEXT_SENTINELS: FrozenSet[str] = frozenset({"UNAVAILABLE"})

PLACEHOLDER = "–"


@dataclass(frozen=True)
class MetricConfig:
    metric_id: str
    label: str
    color: str
    min_span: float
    decimals: int
    capacity: int = MAX_POINTS


# Charted metrics, in display order
METRICS: Dict[str, MetricConfig] = {
    "temperature": MetricConfig("temperature", "Temperature (°C)", "#ff5c5c", min_span=2.0, decimals=1),
    "angle":       MetricConfig("angle",       "C angle (°)",      "#f5a623", min_span=1.0, decimals=4),
    "rpm":         MetricConfig("rpm",         "RPM",              "#1db954", min_span=100.0, decimals=0),
    "xpos":        MetricConfig("xpos",        "X position (mm)",  "#4a90e2", min_span=1.0, decimals=4),
    "zpos":        MetricConfig("zpos",        "Z position (mm)",  "#bd10e0", min_span=1.0, decimals=4),
}

# Decimals for the numeric value tiles that are not charted
FIELD_DECIMALS: Dict[str, int] = {
    "sovr": 0,
    "fovr": 0,
    "frapid": 0,
    "partcount": 0,
}


@dataclass(frozen=True)
class Settings:
    endpoint: str
    poll_interval: float
    request_timeout: float
    max_points: int
    padding_fraction: float
    plot_dir: str
    log_level: str


def get_settings() -> Settings:
    # Real environment variables override the module defaults.
    return Settings(
        endpoint=os.getenv("MTC_ENDPOINT", ENDPOINT),
        poll_interval=float(os.getenv("MTC_POLL_INTERVAL", str(POLL_INTERVAL))),
        request_timeout=float(os.getenv("MTC_REQUEST_TIMEOUT", str(REQUEST_TIMEOUT))),
        max_points=int(os.getenv("MTC_MAX_POINTS", str(MAX_POINTS))),
        padding_fraction=float(os.getenv("MTC_PADDING_FRACTION", str(PADDING_FRACTION))),
        plot_dir=os.getenv("MTC_PLOT_DIR", PLOT_DIR),
        log_level=os.getenv("MTC_LOG_LEVEL", LOG_LEVEL),
    )


# ===================== Logging =====================
def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s.%(msecs)03dZ [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
