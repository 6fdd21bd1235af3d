"""
kvcache — Key Normalization

Maps caller-supplied identifiers to keys that are safe both as file names
and as Redis keys.
"""

import os
import re
from typing import Any

from ..errors import InvalidKeyError

_SEPARATORS = {"/", ".", "\\", os.sep}
_WHITESPACE = re.compile(r"\s+")
_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


def normalize_key(raw_key: Any, prefix: str = "") -> str:
    """
    Normalize a raw key and prepend the prefix.

    Args:
        raw_key: Caller identifier (anything with a string form)
        prefix: Engine prefix, applied exactly once

    Returns:
        Backend-safe key

    Raises:
        InvalidKeyError: If the key is empty or normalizes to nothing
    """
    if raw_key is None:
        raise InvalidKeyError(raw_key)
    key = str(raw_key)
    if not key:
        raise InvalidKeyError(raw_key)

    for separator in _SEPARATORS:
        key = key.replace(separator, "_")
    key = _WHITESPACE.sub("_", key.strip().lower())
    if not key:
        raise InvalidKeyError(raw_key)
    return f"{prefix}{key}"


def group_path(groups: list[str]) -> str:
    """Relative directory holding the entries of a group list."""
    return os.path.join(*groups) if groups else ""


def escape_pattern(text: str) -> str:
    """Escape Redis glob metacharacters so text matches literally."""
    return _GLOB_CHARS.sub(r"\\\1", text)
