"""Caches for enforcement decisions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class NoSuchKeyError(KeyError):
    """Raised when a key is not present in the cache."""

    def __init__(self, key: str = "") -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return "there's no such key existing in cache"


class Cache(ABC):
    """A store of boolean results keyed by strings."""

    @abstractmethod
    def set(self, key: str, value: bool, *extra: Any) -> None:
        """Store a value. The first extra argument may give a survival time."""

    @abstractmethod
    def get(self, key: str) -> bool:
        """Return the value for key, raising NoSuchKeyError when absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key, raising NoSuchKeyError when absent."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""


class DefaultCache(Cache):
    """An in-memory cache that keeps entries until they are deleted."""

    def __init__(self) -> None:
        self._items: dict[str, bool] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def set(self, key: str, value: bool, *extra: Any) -> None:
        self._items[key] = value

    def get(self, key: str) -> bool:
        try:
            return self._items[key]
        except KeyError:
            raise NoSuchKeyError(key) from None

    def delete(self, key: str) -> None:
        try:
            del self._items[key]
        except KeyError:
            raise NoSuchKeyError(key) from None

    def clear(self) -> None:
        self._items = {}