import time

import matplotlib.pyplot as plt
import streamlit as st

from machine_status.autoscale import Autoscaler
from machine_status.config import METRICS, get_settings, setup_logging
from machine_status.poll import HttpSnapshotFetcher, PollLoop
from machine_status.render import MemorySink, plot_points
from machine_status.series import SeriesRegistry
from machine_status.status import Severity

# === CONFIG ===
SETTINGS = get_settings()
BADGE_COLORS = {
    Severity.NORMAL: "green",
    Severity.CAUTION: "orange",
    Severity.CRITICAL: "red",
    Severity.UNKNOWN: "gray",
}


# === One poll loop per server process ===
@st.cache_resource
def start_monitor():
    setup_logging(SETTINGS.log_level)
    sink = MemorySink()
    loop = PollLoop(
        fetch=HttpSnapshotFetcher(SETTINGS.endpoint, timeout=SETTINGS.request_timeout),
        sink=sink,
        registry=SeriesRegistry.from_metrics(METRICS.values(), capacity=SETTINGS.max_points),
        interval=SETTINGS.poll_interval,
        autoscaler=Autoscaler(padding_fraction=SETTINGS.padding_fraction),
    )
    loop.start()
    return loop, sink


loop, sink = start_monitor()
fields, series, status = sink.snapshot()


def field_text(field_id):
    return fields.get(field_id, ("–", Severity.UNKNOWN))


def show_badge(col, title, field_id):
    text, severity = field_text(field_id)
    color = BADGE_COLORS.get(severity)
    col.caption(title)
    col.markdown(f":{color}[**{text}**]" if color else f"**{text}**")


# === Header ===
st.title("Machine Status")
st.caption(status)

cols = st.columns(4)
show_badge(cols[0], "Availability", "availability")
show_badge(cols[1], "Execution", "execution")
show_badge(cols[2], "Mode", "mode")
show_badge(cols[3], "Emergency stop", "estop")

# === Value tiles ===
tiles = [
    ("Temperature (°C)", "temperature"), ("C angle (°)", "angle"), ("RPM", "rpm"),
    ("Spindle override", "sovr"), ("Feed override", "fovr"), ("Rapid override", "frapid"),
    ("Door", "door"), ("X (mm)", "xpos"), ("Z (mm)", "zpos"),
    ("Program", "program"), ("Part count", "partcount"),
]
for start in range(0, len(tiles), 4):
    row = st.columns(4)
    for col, (title, field_id) in zip(row, tiles[start:start + 4]):
        col.metric(title, field_text(field_id)[0])

# === Charts ===
for metric_id, cfg in METRICS.items():
    if metric_id not in series:
        continue
    labels, values, bounds = series[metric_id]
    xs, ys = plot_points(labels, values, span_gaps=loop.registry[metric_id].span_gaps)
    fig, ax = plt.subplots(figsize=(8, 2.5))
    ax.plot(xs, ys, color=cfg.color, linewidth=2)
    if bounds is not None:
        ax.set_ylim(bounds.low, bounds.high)
        ax.locator_params(axis="y", nbins=bounds.ticks)
    step = max(1, len(labels) // 6)
    ax.set_xticks(range(0, len(labels), step))
    ax.set_xticklabels(labels[::step], rotation=45, ha="right")
    ax.set_title(cfg.label)
    ax.grid(True, alpha=0.2)
    st.pyplot(fig)
    plt.close(fig)

with st.expander("Recent samples"):
    st.dataframe(loop.frame())

# === Refresh loop ===
time.sleep(SETTINGS.poll_interval)
st.rerun()
