from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from machine_status.config import PLACEHOLDER


class Severity(str, Enum):
    NORMAL = "normal"
    CAUTION = "caution"
    CRITICAL = "critical"
    UNKNOWN = "unknown"
    NONE = "none"       # plain-text field, no badge colour


# Literal value tables per badge; nothing is inferred beyond these sets.
ESTOP_LEVELS: Dict[str, Severity] = {
    "ARMED": Severity.CAUTION,
    "TRIGGERED": Severity.CRITICAL,
    "READY": Severity.NORMAL,
    "INACTIVE": Severity.NORMAL,
}
EXECUTION_NORMAL: FrozenSet[str] = frozenset({"ACTIVE", "EXECUTING"})
EXECUTION_CAUTION: FrozenSet[str] = frozenset({"STOPPED", "INTERRUPTED"})

BADGE_FIELDS = ("availability", "execution", "estop")
TEXT_FIELDS = ("mode", "door", "program")


@dataclass(frozen=True)
class StatusBadge:
    field_id: str
    value: Optional[str]
    severity: Severity

    @property
    def text(self) -> str:
        return self.value if self.value is not None else PLACEHOLDER


def classify(field_id: str, value: Optional[str]) -> Severity:
    if field_id == "availability":
        if value is None:
            return Severity.UNKNOWN
        return Severity.NORMAL if value == "AVAILABLE" else Severity.CAUTION
    if field_id == "estop":
        return ESTOP_LEVELS.get(value, Severity.UNKNOWN)
    if field_id == "execution":
        if value in EXECUTION_NORMAL:
            return Severity.NORMAL
        if value in EXECUTION_CAUTION:
            return Severity.CAUTION
        return Severity.UNKNOWN
    return Severity.NONE


def badge(field_id: str, value: Optional[str]) -> StatusBadge:
    return StatusBadge(field_id, value, classify(field_id, value))
