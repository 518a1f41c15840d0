import json
import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    def __init__(
        self,
        *,
        max_items: int = 2000,
        ttl_s: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(1, int(ttl_s or 1))
        self._clock = clock
        self._items: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._items)

    def get(self, key: str) -> Any | None:
        entry = self._items.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._items.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._items.pop(key, None)
        self._evict_if_needed()
        self._items[key] = _Entry(expires_at=self._clock() + self._ttl_s, value=value)

    def _evict_if_needed(self) -> None:
        if len(self._items) < self._max_items:
            return
        now = self._clock()
        for k in list(self._items.keys()):
            if self._items[k].expires_at <= now:
                self._items.pop(k, None)
        # oldest insert goes first
        while len(self._items) >= self._max_items and self._items:
            self._items.pop(next(iter(self._items)), None)


def stable_json_dumps(obj: Any, *, indent: int | None = None) -> str:
    if indent:
        return json.dumps(obj, ensure_ascii=False, sort_keys=True, indent=indent)
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
