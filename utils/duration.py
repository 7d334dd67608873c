# edgeguard/utils/duration.py
import re
from datetime import timedelta
from typing import Union

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")


def parse_duration(value: Union[str, int, float, timedelta, None]) -> float:
    """
    Converts a duration into seconds.
    Accepts numbers (seconds), timedelta, or strings made of number+unit
    components such as "15s", "1h30m", "500ms" or "2d". A bare numeric string
    is taken as seconds.
    Raises ValueError for anything else.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return 0.0

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if _NUMBER.fullmatch(text):
        return sign * float(text)

    total = 0.0
    pos = 0
    for match in _COMPONENT.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"Invalid duration: {value!r}")
    return sign * total
