from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from prodtrack.domain.ports import QueryCachePort, QueryKey

logger = logging.getLogger(__name__)

InvalidationListener = Callable[[QueryKey], None]


class InMemoryQueryCache(QueryCachePort):
    """Read cache keyed by query identity, with refetch hooks on invalidation."""

    def __init__(self) -> None:
        self._entries: dict[QueryKey, Any] = {}
        self._stale: set[QueryKey] = set()
        self._listeners: list[InvalidationListener] = []

    def get(self, query_key: QueryKey) -> Any:
        return self._entries.get(query_key)

    def contains(self, query_key: QueryKey) -> bool:
        return query_key in self._entries

    def set(self, query_key: QueryKey, data: Any) -> None:
        self._entries[query_key] = data
        self._stale.discard(query_key)

    def remove(self, query_key: QueryKey) -> None:
        self._entries.pop(query_key, None)
        self._stale.discard(query_key)

    def keys(self) -> Iterable[QueryKey]:
        return list(self._entries)

    def is_stale(self, query_key: QueryKey) -> bool:
        return query_key in self._stale

    def invalidate(self, query_key: QueryKey) -> None:
        if query_key in self._entries:
            self._stale.add(query_key)
        for listener in list(self._listeners):
            try:
                listener(query_key)
            except Exception:  # noqa: BLE001
                logger.exception("Listener de invalidación falló para %s", query_key)

    def subscribe(self, listener: InvalidationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
