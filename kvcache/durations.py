"""
kvcache — Duration Parsing

Converts TTL values into whole seconds. Accepted forms:
- int / float seconds
- numeric strings ("3600")
- datetime.timedelta
- relative expressions ("+1 hour", "2 days", "1 week 3 hours", "-5 minutes")
"""

import math
import re
from datetime import timedelta

from .errors import ConfigurationError

# Calendar units are approximated: a month is 30 days, a year 365.
_UNIT_SECONDS = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "h": 3600,
    "hour": 3600,
    "d": 86400,
    "day": 86400,
    "w": 604800,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}

_TERM = re.compile(r"\s*([+-]?)\s*(\d+)\s*([a-z]+?)s?\b", re.IGNORECASE)
_NUMERIC = re.compile(r"^\s*[+-]?\d+(\.\d+)?\s*$")


def parse_relative(expression: str) -> int:
    """
    Parse a relative time expression into seconds from now.

    Args:
        expression: e.g. "+1 hour", "2 days 4 hours", "-30 minutes"

    Returns:
        Signed number of seconds

    Raises:
        ConfigurationError: If the expression cannot be parsed
    """
    total = 0
    position = 0
    text = expression.strip()
    if not text:
        raise ConfigurationError("Empty duration expression", details={"duration": expression})

    while position < len(text):
        match = _TERM.match(text, position)
        if match is None:
            raise ConfigurationError(
                f"Unrecognized duration expression: {expression!r}",
                details={"duration": expression, "position": position},
            )
        sign, amount, unit = match.groups()
        unit = unit.lower()
        if unit not in _UNIT_SECONDS:
            raise ConfigurationError(
                f"Unknown duration unit '{unit}' in {expression!r}",
                details={"duration": expression, "unit": unit},
            )
        seconds = int(amount) * _UNIT_SECONDS[unit]
        total += -seconds if sign == "-" else seconds
        position = match.end()
        # Allow "1 day, 2 hours" and "1 day and 2 hours"
        while position < len(text) and text[position] in " ,":
            position += 1
        if text.startswith("and ", position):
            position += 4

    return total


def _whole_seconds(value: float) -> int:
    # Fractions round away from zero: 0.5 must not become 0 (no expiry)
    return math.ceil(value) if value > 0 else math.floor(value)


def to_seconds(duration: int | float | str | timedelta) -> int:
    """
    Normalize any accepted duration form into whole seconds.

    Fractional durations round away from zero, so any positive duration is
    at least one second and any negative one stays negative.
    """
    if isinstance(duration, bool):
        raise ConfigurationError("Duration must not be a boolean", details={"duration": duration})
    if isinstance(duration, timedelta):
        return _whole_seconds(duration.total_seconds())
    if isinstance(duration, int):
        return duration
    if isinstance(duration, float):
        return _whole_seconds(duration)
    if isinstance(duration, str):
        if _NUMERIC.match(duration):
            return _whole_seconds(float(duration))
        return parse_relative(duration)
    raise ConfigurationError(
        f"Unsupported duration type: {type(duration).__name__}",
        details={"duration": repr(duration)},
    )
