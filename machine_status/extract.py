"""Field lookup over an MTConnect ``current`` snapshot.

Every logical field is described by a :class:`FieldSpec`: an ordered list of
candidate locations plus the rules used to turn the located text into a
reading. Two fallback policies exist:

- ``structural``: the first candidate that locates an element wins, even if
  its value turns out to be a sentinel. Used by single-source status fields.
- ``value``: the first candidate whose value normalizes to a number wins.
  Used by redundant sensors (two spindles, two rotary axes).
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import AbstractSet, Any, Iterable, Mapping, Optional, Tuple
from xml.etree import ElementTree as ET

from machine_status.config import DEFAULT_SENTINELS, TEMPERATURE_SENTINELS, TEXT_SENTINELS
from machine_status.errors import ParseFailure
from machine_status.normalize import clean_text, normalize

log = logging.getLogger(__name__)

STRUCTURAL = "structural"
VALUE = "value"
NUMERIC = "numeric"
TEXT = "text"

SnapshotRecord = Mapping[str, Any]


@dataclass(frozen=True)
class Candidate:
    tag: str
    name: Optional[str] = None        # match on the element's name attribute
    attribute: Optional[str] = None   # read this attribute instead of the text


@dataclass(frozen=True)
class FieldSpec:
    field_id: str
    candidates: Tuple[Candidate, ...]
    kind: str = NUMERIC
    sentinels: AbstractSet[str] = DEFAULT_SENTINELS
    fallback: str = STRUCTURAL


# ===================== MTConnect parsing =====================
def parse_snapshot(xml_text: str) -> ET.Element:
    """Parse the snapshot body, raising ParseFailure on malformed XML."""
    try:
        return ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseFailure(f"Invalid XML: {e}") from e


def local_name(tag: str) -> str:
    # "{urn:mtconnect.org:MTConnectStreams:1.3}Position" -> "Position"
    return tag.split("}")[-1]


def iter_tag(root: ET.Element, tag: str) -> Iterable[ET.Element]:
    """All elements with the given local name, in document order."""
    for el in root.iter():
        if isinstance(el.tag, str) and local_name(el.tag) == tag:
            yield el


def find_first(root: ET.Element, tag: str) -> Optional[ET.Element]:
    return next(iter(iter_tag(root, tag)), None)


def find_by_tag_and_name(root: ET.Element, tag: str, name: str) -> Optional[ET.Element]:
    for el in iter_tag(root, tag):
        if el.attrib.get("name") == name:
            return el
    return None


def locate(root: ET.Element, cand: Candidate) -> Optional[ET.Element]:
    if cand.name is None:
        return find_first(root, cand.tag)
    return find_by_tag_and_name(root, cand.tag, cand.name)


def raw_value(el: Optional[ET.Element], attribute: Optional[str] = None) -> Optional[str]:
    if el is None:
        return None
    if attribute is not None:
        return clean_text(el.attrib.get(attribute))
    return clean_text("".join(el.itertext()))


# ===================== Field resolution =====================
def _convert(spec: FieldSpec, raw: Optional[str]) -> Any:
    if spec.kind == TEXT:
        return None if raw in spec.sentinels else raw
    return normalize(raw, spec.sentinels)


def resolve(root: ET.Element, spec: FieldSpec) -> Any:
    if spec.fallback == VALUE:
        for cand in spec.candidates:
            value = _convert(spec, raw_value(locate(root, cand), cand.attribute))
            if value is not None:
                return value
        return None

    for cand in spec.candidates:
        el = locate(root, cand)
        if el is not None:
            return _convert(spec, raw_value(el, cand.attribute))
    return None


def extract(root: ET.Element, specs: Iterable[FieldSpec]) -> SnapshotRecord:
    """Resolve every field into a fresh, read-only record."""
    out = {spec.field_id: resolve(root, spec) for spec in specs}
    log.debug(f"[Extractor] {sum(v is not None for v in out.values())}/{len(out)} fields present")
    return MappingProxyType(out)


FIELD_SPECS: Tuple[FieldSpec, ...] = (
    # header / status, single source
    FieldSpec("availability", (Candidate("Availability"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("execution", (Candidate("Execution", "execution"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("mode", (Candidate("ControllerMode", "mode"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("estop", (Candidate("EmergencyStop"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("updated", (Candidate("Header", attribute="creationTime"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    # redundant sensors, value-level fallback
    FieldSpec(
        "temperature",
        (Candidate("Temperature", "S2temp"), Candidate("Temperature", "Stemp")),
        sentinels=TEMPERATURE_SENTINELS,
        fallback=VALUE,
    ),
    FieldSpec("angle", (Candidate("Angle", "Cpos"), Candidate("Angle", "C2pos")), fallback=VALUE),
    FieldSpec("rpm", (Candidate("RotaryVelocity", "Srpm"), Candidate("RotaryVelocity", "S2rpm")), fallback=VALUE),
    # overrides
    FieldSpec("sovr", (Candidate("RotaryVelocityOverride", "Sovr"),)),
    FieldSpec("fovr", (Candidate("PathFeedrateOverride", "Fovr"),)),
    FieldSpec("frapid", (Candidate("PathFeedrateOverride", "Frapidovr"),)),
    # door, axes, program
    FieldSpec("door", (Candidate("DoorState", "doorstate"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("xpos", (Candidate("Position", "Xpos"),)),
    FieldSpec("zpos", (Candidate("Position", "Zpos"),)),
    FieldSpec("program", (Candidate("Program", "program"),), kind=TEXT, sentinels=TEXT_SENTINELS),
    FieldSpec("partcount", (Candidate("PartCount", "PartCountAct"),)),
)
