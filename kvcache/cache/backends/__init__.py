"""
kvcache — Cache Backends

Exports available cache engine implementations.

Redis engines are lazy-loaded via factory.py so the file engine works
without the redis client installed.
"""

from .file import FileEngine

__all__ = [
    "FileEngine",
]
