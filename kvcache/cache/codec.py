"""
kvcache — Value Codec

Integers are stored as their decimal text so that Redis INCRBY/DECRBY work
on freshly written counters. Everything else is stored as compact JSON.
"""

import json
import re
from typing import Any

from ..errors import CorruptEntryError

_INTEGER = re.compile(rb"^-?\d+$")


def encode(value: Any) -> bytes:
    """Serialize a value to bytes."""
    # bool is an int subclass but must round-trip as a bool
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value).encode("ascii")
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise TypeError(f"Value of type {type(value).__name__} is not serializable: {e}") from e


def decode(data: bytes | str) -> Any:
    """
    Deserialize bytes produced by encode().

    Raises:
        CorruptEntryError: If the data is neither an integer nor valid JSON
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if _INTEGER.match(data):
        return int(data)
    try:
        return json.loads(data.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise CorruptEntryError(
            f"Failed to decode cache entry: {e}",
            details={"preview": data[:100].decode("utf-8", errors="replace"), "error": str(e)},
        ) from e
