"""
有過期時間的 key-value cache

Token 不進關聯式資料庫，只放在這裡：
- MemoryTTLCache：單一 process 用，thread-safe
- RedisTTLCache：多台服務共用，token 在任何一台都查得到

介面：put(key, value, ttl) / get(key) / delete(key) / sweep()
"""
import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

from redis import Redis


class TTLCache:
    def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def sweep(self) -> int:
        """移除已過期的項目，回傳移除數量"""
        return 0


class MemoryTTLCache(TTLCache):
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._items: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def put(self, key, value, ttl_seconds):
        with self._lock:
            self._items[key] = (self._clock() + ttl_seconds, dict(value))

    def get(self, key):
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, value = item
            if self._clock() >= expires_at:
                # lazy eviction
                del self._items[key]
                return None
            return dict(value)

    def delete(self, key):
        with self._lock:
            self._items.pop(key, None)

    def sweep(self):
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._items.items() if now >= expires_at]
            for key in expired:
                del self._items[key]
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._items)


class RedisTTLCache(TTLCache):
    """Redis 自己處理過期，sweep 不需要做事"""

    def __init__(self, client: Redis, prefix: str = "token:"):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "token:") -> "RedisTTLCache":
        return cls(Redis.from_url(url, decode_responses=True), prefix=prefix)

    def put(self, key, value, ttl_seconds):
        self._redis.setex(f"{self._prefix}{key}", ttl_seconds, json.dumps(value))

    def get(self, key):
        raw = self._redis.get(f"{self._prefix}{key}")
        return json.loads(raw) if raw else None

    def delete(self, key):
        self._redis.delete(f"{self._prefix}{key}")
