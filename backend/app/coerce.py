import math
from decimal import Decimal
from typing import Any, Optional, Union

Number = Union[int, float]

_TRUE_STRINGS = {"true", "1", "yes", "y"}
_FALSE_STRINGS = {"false", "0", "no", "n"}


def to_number_or_null(value: Any) -> Optional[Number]:
    """
    Coerce untrusted input (JSON bodies, jsonb, numeric columns) to a finite number.
    Anything empty, unparseable, NaN or infinite becomes None. Never raises.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, str):
        s = value.strip()
        # "1_000" parses in Python but not as a JSON/JS number.
        if not s or "_" in s:
            return None
        try:
            parsed = float(s)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def to_float(value: Any, default: float = 0.0) -> float:
    n = to_number_or_null(value)
    return float(n) if n is not None else default


def to_boolean(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        # NaN is falsy.
        return value == value and value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
        return bool(value)
    # Objects and arrays are truthy even when empty.
    return True
