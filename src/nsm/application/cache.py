from __future__ import annotations

import logging
import threading
from typing import Any, Callable

log = logging.getLogger(__name__)


class ReadCache:
    """Read-through cache keyed by resource type ("products", "services", ...).

    Writers only call `invalidate`; the next `get` reloads from the store.
    Subscribers are told which keys were dropped so open views can refresh.
    """

    def __init__(self):
        self._values: dict[str, Any] = {}
        self._subscribers: list[Callable[[tuple[str, ...]], None]] = []
        self._lock = threading.Lock()

    def get(self, key: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._values:
                return self._values[key]
        value = loader()
        with self._lock:
            self._values[key] = value
        return value

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._values.pop(key, None)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(keys)
            except Exception:
                log.exception("cache_subscriber_failed keys=%s", ",".join(keys))

    def clear(self) -> None:
        with self._lock:
            keys = tuple(self._values)
        self.invalidate(*keys)

    def subscribe(self, callback: Callable[[tuple[str, ...]], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
