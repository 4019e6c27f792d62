"""
In-process result cache with per-namespace TTL and bounded size.

Namespaces and their default policies:
- conversation: conversation metadata, history snapshots (TTL 24 h)
- knowledge: knowledge answers keyed by (conversation id, query) (TTL 30 min)
- partnerSearch: partner search results keyed by criteria (TTL 10 min)

Each namespace is a ``cachetools.TLRUCache``: entries carry their own
expiry time, expired entries are purged before anything is evicted, and
eviction is least-recently-used once a namespace reaches its max size.
cachetools caches are not thread-safe, so every get/set/delete holds the
cache lock and each key is independently atomic across session workers.
"""

import copy
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cachetools import TLRUCache

from soukbot.utils.logger import get_logger

logger = get_logger("utils.result_cache")

NAMESPACE_CONVERSATION = "conversation"
NAMESPACE_KNOWLEDGE = "knowledge"
NAMESPACE_PARTNER_SEARCH = "partnerSearch"


@dataclass
class CacheEntry:
    """A cached value and the clock time after which it is stale."""
    key: str
    value: Any
    expires_at: float


@dataclass(frozen=True)
class NamespacePolicy:
    """TTL and capacity for one cache namespace."""
    ttl_seconds: float
    max_entries: int


DEFAULT_POLICIES: Dict[str, NamespacePolicy] = {
    NAMESPACE_CONVERSATION: NamespacePolicy(ttl_seconds=86400, max_entries=1000),
    NAMESPACE_KNOWLEDGE: NamespacePolicy(ttl_seconds=1800, max_entries=500),
    NAMESPACE_PARTNER_SEARCH: NamespacePolicy(ttl_seconds=600, max_entries=200),
}


def _entry_expiry(key: str, entry: CacheEntry, now: float) -> float:
    return entry.expires_at


class NamespaceCache(TLRUCache):
    """One namespace: a TLRU cache of ``CacheEntry`` that reports evictions and expirations."""

    def __init__(self, namespace: str, policy: NamespacePolicy, timer: Callable[[], float],
                 stats: Dict[str, int]):
        super().__init__(maxsize=policy.max_entries, ttu=_entry_expiry, timer=timer)
        self.namespace = namespace
        self.policy = policy
        self._stats = stats

    def popitem(self):
        key, entry = super().popitem()
        self._stats["evictions"] += 1
        logger.debug(f"Evicted {self.namespace}:{key}")
        return key, entry

    def expire(self, time=None):
        before = len(self)
        expired = super().expire(time)
        self._stats["expirations"] += before - len(self)
        return expired


class ResultCache:
    """
    Namespaced TTL + LRU cache.

    Values are deep-copied on the way in and out so callers can mutate what
    they read (e.g. bump a message counter) without touching the cached copy.

    Usage:
        cache = ResultCache()
        cache.set("knowledge", key, "answer")
        cache.get("knowledge", key)   # -> "answer", or None on miss/expiry
    """

    def __init__(
        self,
        policies: Optional[Dict[str, NamespacePolicy]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = dict(policies or DEFAULT_POLICIES)
        self._clock = clock
        self._lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "expirations": 0,
        }
        self._entries: Dict[str, NamespaceCache] = {
            namespace: self._new_namespace(namespace) for namespace in self.policies
        }

    def _new_namespace(self, namespace: str) -> NamespaceCache:
        return NamespaceCache(namespace, self.policies[namespace], self._clock, self.stats)

    def _bucket(self, namespace: str) -> NamespaceCache:
        try:
            return self._entries[namespace]
        except KeyError:
            raise ValueError(f"Unknown cache namespace: {namespace}") from None

    def get(self, namespace: str, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or after TTL expiry."""
        with self._lock:
            bucket = self._bucket(namespace)
            bucket.expire()
            entry = bucket.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return None
            self.stats["hits"] += 1
            return copy.deepcopy(entry.value)

    def set(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value; ``ttl`` overrides the namespace default (seconds)."""
        with self._lock:
            bucket = self._bucket(namespace)
            # Purge first so a full namespace drops stale entries before live ones.
            bucket.expire()
            expires_at = self._clock() + (ttl if ttl is not None else bucket.policy.ttl_seconds)
            bucket[key] = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=expires_at)
            self.stats["sets"] += 1

    def delete(self, namespace: str, key: str) -> bool:
        """Remove a key. Returns True if something was removed."""
        with self._lock:
            if self._bucket(namespace).pop(key, None) is None:
                return False
            self.stats["deletes"] += 1
            return True

    def clear(self, namespace: Optional[str] = None) -> None:
        """Drop every entry in one namespace, or in all of them."""
        with self._lock:
            targets = [namespace] if namespace else list(self._entries)
            for name in targets:
                self._bucket(name)
                self._entries[name] = self._new_namespace(name)

    def size(self, namespace: str) -> int:
        """Number of stored entries (expired ones included until the next purge)."""
        with self._lock:
            return len(self._bucket(namespace))

    # ------------------------------------------------------------------
    # Key builders
    # ------------------------------------------------------------------

    @staticmethod
    def make_knowledge_key(conversation_id: str, query: str) -> str:
        """Knowledge answers are cached per conversation, on the raw query text."""
        return f"message:{conversation_id}:{query}"

    @staticmethod
    def make_partner_search_key(criteria: Dict[str, Any]) -> str:
        """
        Serialize partner search criteria to a stable key.

        Only the five criteria fields take part, in a fixed order, so two
        criteria dicts with the same values always map to the same key.
        """
        fields = ("product_type", "budget_min", "budget_max", "city", "country")
        return json.dumps({name: criteria.get(name) for name in fields}, ensure_ascii=False)
