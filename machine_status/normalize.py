import math
from typing import AbstractSet, Optional

from machine_status.config import DEFAULT_SENTINELS


def clean_text(val: Optional[str]) -> Optional[str]:
    """Trimmed text, or None when missing or blank."""
    if val is None:
        return None
    val = val.strip()
    return val or None


def normalize(val: Optional[str], sentinels: AbstractSet[str] = DEFAULT_SENTINELS) -> Optional[float]:
    """
    Turn a raw data-item value into a float or None.
    - Missing/blank -> None
    - Sentinel token (e.g. UNAVAILABLE) -> None
    - Unparsable, NaN or infinite -> None
    Never raises.
    """
    text = clean_text(val)
    if text is None or text in sentinels:
        return None
    try:
        num = float(text)
    except ValueError:
        return None
    return num if math.isfinite(num) else None
