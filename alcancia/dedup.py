import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

ROUTER_DEBOUNCE_S = 3.0
ACTION_ONCE_S = 5.0
NO_ACCOUNT_WARNING_S = 10.0
DEFAULT_MAX_ENTRIES = 4096


class TimedGuard:
    """Time-windowed dedup cache.

    ``should_proceed`` answers True at most once per ``ttl_s`` for a key and
    records the hit. Expired keys are pruned on every check and the cache is
    capped at ``max_entries`` (oldest first out).
    """

    def __init__(
        self,
        ttl_s: float,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def _prune(self, now: float) -> None:
        while self._seen:
            seen_at = next(iter(self._seen.values()))
            if now - seen_at < self.ttl_s:
                break
            self._seen.popitem(last=False)
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)

    def should_proceed(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            self._prune(now)
            last = self._seen.get(key)
            if last is not None and now - last < self.ttl_s:
                return False
            self._seen.pop(key, None)
            self._seen[key] = now
            self._prune(now)
            return True

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()


def router_key(room_id: Optional[str], entity_id: str, text_lower: str) -> str:
    return f"{room_id or entity_id}:{text_lower}"


def action_key(message_id: Optional[str], entity_id: str, action_name: str, text_lower: str) -> str:
    if message_id:
        return f"{message_id}:{action_name}"
    return f"{entity_id}:{action_name}:{text_lower}"


def warning_key(entity_id: str, feature: str) -> str:
    return f"{entity_id}:{feature}"
