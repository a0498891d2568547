"""Non-throwing numeric conversions for upstream payloads."""

import math
from typing import Any


def safe_float(val: Any, default: float = 0.0) -> float:
    """Safely parse a value to float; malformed input yields the default."""
    if val is None or val == "" or val == "null" or isinstance(val, bool):
        return default
    try:
        parsed = float(val)
    except (ValueError, TypeError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def safe_int(val: Any, default: int | None = None) -> int | None:
    """Safely parse a value to int, keeping ``None`` for missing ranks."""
    if val is None or isinstance(val, bool):
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def parse_hex_quantity(val: Any) -> int:
    """Parse a JSON-RPC hex quantity such as ``"0x1b4"``.

    Anything that is not a non-negative hexadecimal string yields 0.
    """
    if not isinstance(val, str):
        return 0
    digits = val[2:] if val[:2].lower() == "0x" else val
    if not digits:
        return 0
    try:
        parsed = int(digits, 16)
    except ValueError:
        return 0
    return parsed if parsed >= 0 else 0
