"""Live MTConnect machine status: badges, value tiles and rolling charts."""

from machine_status.autoscale import AxisBounds, Autoscaler, compute_bounds
from machine_status.extract import FIELD_SPECS, Candidate, FieldSpec, parse_snapshot
from machine_status.poll import CycleState, CycleToken, HttpSnapshotFetcher, PollLoop
from machine_status.series import SeriesRegistry, SeriesWindow
from machine_status.status import Severity, StatusBadge, classify

__version__ = "0.1.0"
