"""Session-scoped caches held in one arena keyed by session id."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from switchyard.types import EntityExtraction, ToolResult

DEFAULT_CACHE_ENTRIES = 128

V = TypeVar("V")


class BoundedCache(Generic[V]):
    """Small LRU mapping; the oldest entry is evicted once `max_entries` is reached."""

    def __init__(self, max_entries: int = DEFAULT_CACHE_ENTRIES) -> None:
        self._max_entries = max_entries
        self._items: OrderedDict[str, V] = OrderedDict()

    def get(self, key: str) -> V | None:
        value = self._items.get(key)
        if value is not None:
            self._items.move_to_end(key)
        return value

    def put(self, key: str, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self._max_entries:
            self._items.popitem(last=False)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()


def normalize_text(text: str) -> str:
    return " ".join(text.casefold().split())


class EntityCache(BoundedCache[EntityExtraction]):
    """Resolved entities keyed by normalized turn text."""

    def lookup(self, text: str) -> EntityExtraction | None:
        return self.get(normalize_text(text))

    def store(self, text: str, extraction: EntityExtraction) -> None:
        self.put(normalize_text(text), extraction)


class ToolResultCache(BoundedCache[ToolResult]):
    """Verified tool results keyed by tool name and normalized arguments.

    Only successful results are kept, so a failed call is retried on the next turn.
    """

    def store(self, signature: str, result: ToolResult) -> None:
        if result.ok:
            self.put(signature, result)


@dataclass
class SessionCaches:
    entities: EntityCache = field(default_factory=EntityCache)
    tool_results: ToolResultCache = field(default_factory=ToolResultCache)


class SessionCacheArena:
    """The only owner of per-session caches; nothing is shared across sessions."""

    def __init__(self) -> None:
        self._caches: dict[str, SessionCaches] = {}

    def for_session(self, session_id: str) -> SessionCaches:
        caches = self._caches.get(session_id)
        if caches is None:
            caches = self._caches[session_id] = SessionCaches()
        return caches

    def drop(self, session_id: str) -> None:
        self._caches.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._caches

    def __len__(self) -> int:
        return len(self._caches)
