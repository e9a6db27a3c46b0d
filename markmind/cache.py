"""
Result cache for expensive computed and provider-backed results.

Keys are derived from the operation name plus a hash of the serialized
request, so equal requests always map to the same single entry.
"""

import hashlib
import json
import time
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple
from threading import Lock

logger = logging.getLogger(__name__)


def make_cache_key(operation: str, request: Any) -> str:
    """
    Create a cache key from an operation name and its request.

    Args:
        operation: Name of the cached operation (e.g. "link_concepts")
        request: JSON-serializable request payload

    Returns:
        "<operation>:<hash>" string
    """
    serialized = json.dumps(request, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]
    return f"{operation}:{digest}"


class ResultCache:
    """
    Thread-safe mapping of cache keys to results with optional expiry.

    Entries are kept in write order; when the cache is full, expired
    entries go first and then the least recently written one.
    """

    def __init__(self, ttl: Optional[float] = None, maxsize: int = 256):
        self.ttl = ttl
        self.maxsize = maxsize
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    def _is_live(self, written_at: float) -> bool:
        return self.ttl is None or time.monotonic() - written_at <= self.ttl

    def get(self, key: str) -> Tuple[bool, Any]:
        """Return (found, value); a missing or expired key gives (False, None)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not self._is_live(entry[0]):
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
                return False, None
            self._hits += 1
            return True, entry[1]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.maxsize:
                self._prune()
            self._entries[key] = (time.monotonic(), value)

    def _prune(self) -> None:
        # Caller holds the lock
        for key in [k for k, (written_at, _) in self._entries.items() if not self._is_live(written_at)]:
            del self._entries[key]
        while len(self._entries) >= self.maxsize:
            self._entries.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry and return how many there were."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.debug(f"Cleared {count} cached results")
        return count

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "maxsize": self.maxsize,
                "ttl": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
