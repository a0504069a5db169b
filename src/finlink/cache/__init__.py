"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/__init__.py.
"""

from .base import CacheEntry, CacheMirror, MirroredValue
from .factory import create_cache_mirror_from_env
from .inmemory import InMemoryResponseCache
from .invalidation import (
    DEFAULT_RULES,
    Invalidation,
    InvalidationRule,
    InvalidationTable,
)
from .redis import RedisCacheMirror

__all__ = [
    "CacheEntry",
    "CacheMirror",
    "MirroredValue",
    "InMemoryResponseCache",
    "RedisCacheMirror",
    "create_cache_mirror_from_env",
    "DEFAULT_RULES",
    "Invalidation",
    "InvalidationRule",
    "InvalidationTable",
]
