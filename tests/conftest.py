from typing import Dict, Optional

import pytest

from machine_status.config import METRICS
from machine_status.series import SeriesRegistry

NS = "urn:mtconnect.org:MTConnectStreams:1.3"

DEFAULTS: Dict[str, Optional[str]] = {
    "availability": "AVAILABLE",
    "execution": "ACTIVE",
    "mode": "AUTOMATIC",
    "estop": "READY",
    "S2temp": "UNAVAILABLE",
    "Stemp": "21.4",
    "Cpos": "12.5",
    "C2pos": "UNAVAILABLE",
    "Srpm": "1200",
    "S2rpm": "0",
    "Sovr": "100",
    "Fovr": "90",
    "Frapidovr": "50",
    "doorstate": "CLOSED",
    "Xpos": "10.1234",
    "Zpos": "-5.5",
    "program": "O1234",
    "PartCountAct": "42",
}


def make_snapshot(creation_time: str = "2025-01-01T10:00:00Z", **overrides) -> str:
    """MTConnect current document; a value of None leaves the element out."""
    v = dict(DEFAULTS, **overrides)

    def item(tag, name, key):
        if v.get(key) is None:
            return ""
        name_attr = f' name="{name}"' if name else ""
        return f'<{tag} dataItemId="{key}"{name_attr} sequence="1">{v[key]}</{tag}>'

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<MTConnectStreams xmlns="{NS}">
  <Header creationTime="{creation_time}" sender="agent" lastSequence="100"/>
  <Streams>
    <DeviceStream name="lathe" uuid="lathe-1">
      <ComponentStream component="Device" name="lathe">
        <Events>
          {item("Availability", "avail", "availability")}
          {item("EmergencyStop", "estop", "estop")}
        </Events>
      </ComponentStream>
      <ComponentStream component="Rotary" name="S">
        <Samples>
          {item("Temperature", "S2temp", "S2temp")}
          {item("Temperature", "Stemp", "Stemp")}
          {item("Angle", "Cpos", "Cpos")}
          {item("Angle", "C2pos", "C2pos")}
          {item("RotaryVelocity", "Srpm", "Srpm")}
          {item("RotaryVelocity", "S2rpm", "S2rpm")}
          {item("Position", "Xpos", "Xpos")}
          {item("Position", "Zpos", "Zpos")}
        </Samples>
      </ComponentStream>
      <ComponentStream component="Path" name="path">
        <Events>
          {item("Execution", "execution", "execution")}
          {item("ControllerMode", "mode", "mode")}
          {item("RotaryVelocityOverride", "Sovr", "Sovr")}
          {item("PathFeedrateOverride", "Fovr", "Fovr")}
          {item("PathFeedrateOverride", "Frapidovr", "Frapidovr")}
          {item("DoorState", "doorstate", "doorstate")}
          {item("Program", "program", "program")}
          {item("PartCount", "PartCountAct", "PartCountAct")}
        </Events>
      </ComponentStream>
    </DeviceStream>
  </Streams>
</MTConnectStreams>
"""


@pytest.fixture
def snapshot_xml() -> str:
    return make_snapshot()


@pytest.fixture
def registry() -> SeriesRegistry:
    return SeriesRegistry.from_metrics(METRICS.values())
