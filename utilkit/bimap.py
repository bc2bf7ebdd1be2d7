"""A thread-safe bidirectional map."""

from __future__ import annotations

import threading
from typing import Any, Hashable


class BiMap:
    """Map keeping a forward and an inverse mapping in step."""

    def __init__(self) -> None:
        self._forward: dict[Hashable, Any] = {}
        self._inverse: dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._forward

    def contains_inverse(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._inverse

    def get(self, key: Hashable) -> Any:
        """Return the forward value for key, or None if absent."""
        with self._lock:
            return self._forward.get(key)

    def get_inverse(self, key: Hashable) -> Any:
        """Return the inverse value for key, or None if absent."""
        with self._lock:
            return self._inverse.get(key)

    def must_get(self, key: Hashable) -> Any:
        with self._lock:
            try:
                return self._forward[key]
            except KeyError:
                raise KeyError(f"key {key!r} not found in forward map") from None

    def must_get_inverse(self, key: Hashable) -> Any:
        with self._lock:
            try:
                return self._inverse[key]
            except KeyError:
                raise KeyError(f"key {key!r} not found in inverse map") from None

    def set(self, key: Hashable, value: Hashable) -> "BiMap":
        with self._lock:
            self._forward[key] = value
            self._inverse[value] = key
        return self

    def set_inverse(self, key: Hashable, value: Hashable) -> "BiMap":
        with self._lock:
            self._inverse[key] = value
            self._forward[value] = key
        return self