"""
Monitoring sink for the chat service.

Tracks:
- Conversation start/end counts, durations and message counts
- Errors by (operation, component)
- Cache hit/miss per namespace
- Out-of-context queries
- Knowledge and partner search latencies

All calls are fire-and-forget: ``SafeMonitor`` guarantees that a failing
sink only produces a log line, never a failed turn.
"""

from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Protocol

from soukbot.utils.logger import get_logger

logger = get_logger("utils.metrics")


class MonitoringSink(Protocol):
    """Counters consumed by the chat service."""

    def record_conversation_start(self) -> None: ...

    def record_conversation_end(self, duration_seconds: float, message_count: int) -> None: ...

    def record_error(self, operation: str, component: str) -> None: ...

    def record_cache_hit(self, namespace: str) -> None: ...

    def record_cache_miss(self, namespace: str) -> None: ...

    def record_out_of_context_query(self, query: str) -> None: ...

    def record_knowledge_search(self, duration_seconds: float, result_count: int, cached: bool) -> None: ...

    def record_partner_search(self, duration_seconds: float, result_count: int, cached: bool) -> None: ...


class MetricsCollector:
    """
    In-memory metrics collector.

    For production this would feed Prometheus/StatsD; here it keeps plain
    counters plus sliding latency windows for percentiles.
    """

    def __init__(self, window_size: int = 1000, recent_queries: int = 100):
        self.window_size = window_size

        self.conversations_started = 0
        self.conversations_ended = 0
        self.conversation_durations: Deque[float] = deque(maxlen=window_size)
        self.conversation_message_counts: Deque[int] = deque(maxlen=window_size)

        self.error_counts: Dict[str, int] = defaultdict(int)

        self.cache_hits: Dict[str, int] = defaultdict(int)
        self.cache_misses: Dict[str, int] = defaultdict(int)

        self.out_of_context_count = 0
        self.out_of_context_queries: Deque[str] = deque(maxlen=recent_queries)

        self.latencies: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=window_size))
        self.result_counts: Dict[str, int] = defaultdict(int)
        self.cached_searches: Dict[str, int] = defaultdict(int)

        self.start_time = datetime.now(timezone.utc)

    def record_conversation_start(self) -> None:
        self.conversations_started += 1

    def record_conversation_end(self, duration_seconds: float, message_count: int) -> None:
        self.conversations_ended += 1
        self.conversation_durations.append(duration_seconds)
        self.conversation_message_counts.append(message_count)

    def record_error(self, operation: str, component: str) -> None:
        self.error_counts[f"{component}:{operation}"] += 1

    def record_cache_hit(self, namespace: str) -> None:
        self.cache_hits[namespace] += 1

    def record_cache_miss(self, namespace: str) -> None:
        self.cache_misses[namespace] += 1

    def record_out_of_context_query(self, query: str) -> None:
        self.out_of_context_count += 1
        self.out_of_context_queries.append(query)

    def record_knowledge_search(self, duration_seconds: float, result_count: int, cached: bool) -> None:
        self._record_search("knowledge", duration_seconds, result_count, cached)

    def record_partner_search(self, duration_seconds: float, result_count: int, cached: bool) -> None:
        self._record_search("partners", duration_seconds, result_count, cached)

    def _record_search(self, kind: str, duration_seconds: float, result_count: int, cached: bool) -> None:
        if cached:
            self.cached_searches[kind] += 1
        else:
            self.latencies[kind].append(duration_seconds * 1000)
        self.result_counts[kind] += result_count

    def get_percentile(self, kind: str, percentile: float) -> Optional[float]:
        """Latency percentile in ms for ``knowledge`` or ``partners``, None without samples."""
        samples = sorted(self.latencies.get(kind, ()))
        if not samples:
            return None
        index = int(len(samples) * percentile / 100)
        return samples[min(index, len(samples) - 1)]

    def get_cache_hit_rate(self, namespace: str) -> float:
        total = self.cache_hits[namespace] + self.cache_misses[namespace]
        return self.cache_hits[namespace] / total if total else 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of every counter, suitable for a health/metrics endpoint."""
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "uptime_seconds": uptime,
            "conversations": {
                "started": self.conversations_started,
                "ended": self.conversations_ended,
                "active": self.conversations_started - self.conversations_ended,
            },
            "errors": dict(self.error_counts),
            "cache": {
                "hits": dict(self.cache_hits),
                "misses": dict(self.cache_misses),
            },
            "out_of_context": {
                "count": self.out_of_context_count,
                "recent": list(self.out_of_context_queries)[-10:],
            },
            "cached_searches": dict(self.cached_searches),
            "latency_ms": {
                kind: {
                    "p50": self.get_percentile(kind, 50),
                    "p95": self.get_percentile(kind, 95),
                }
                for kind in self.latencies
            },
        }


class SafeMonitor:
    """
    Wraps a MonitoringSink so that sink errors never reach the caller.

    Every ``record_*`` attribute is looked up on the wrapped sink and
    invoked inside a guard that logs and drops any exception.
    """

    def __init__(self, sink: Optional[MonitoringSink] = None):
        self.sink = sink if sink is not None else MetricsCollector()

    def __getattr__(self, name: str):
        if not name.startswith("record_"):
            raise AttributeError(name)
        target = getattr(self.sink, name, None)

        def _guarded(*args, **kwargs) -> None:
            if target is None:
                return
            try:
                target(*args, **kwargs)
            except Exception as e:
                logger.warning(f"Monitoring sink failed in {name}: {e}")
        return _guarded
