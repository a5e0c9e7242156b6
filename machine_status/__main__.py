# File: machine_status/__main__.py
# Headless monitor: polls the agent, logs status changes and keeps
# <plot_dir>/<metric>.png up to date.
import logging
import signal
import threading

from machine_status.autoscale import Autoscaler
from machine_status.config import METRICS, get_settings, setup_logging
from machine_status.poll import HttpSnapshotFetcher, PollLoop
from machine_status.render import MatplotlibSink
from machine_status.series import SeriesRegistry

log = logging.getLogger("monitor")

stop_event = threading.Event()


# ===================== Signal handling =====================
def request_stop(signum=None, frame=None):
    if not stop_event.is_set():
        log.info(f"Stopping... (signal {signum})")
        stop_event.set()


# ===================== Main =====================
def run() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    fetcher = HttpSnapshotFetcher(settings.endpoint, timeout=settings.request_timeout)
    registry = SeriesRegistry.from_metrics(METRICS.values(), capacity=settings.max_points)
    loop = PollLoop(
        fetch=fetcher,
        sink=MatplotlibSink(settings.plot_dir, registry),
        registry=registry,
        interval=settings.poll_interval,
        autoscaler=Autoscaler(padding_fraction=settings.padding_fraction),
    )
    log.info(f"Monitoring {settings.endpoint}, charts in {settings.plot_dir}/")
    loop.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(0.2)
    finally:
        loop.stop(timeout=settings.poll_interval)
        fetcher.close()
        log.info("Shutdown complete.")


if __name__ == "__main__":
    run()
