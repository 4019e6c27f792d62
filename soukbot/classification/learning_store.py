"""
Learning feedback store.

Every classified query is appended as a ``LearningRecord``. The store is
process-wide and shared by all session workers, so appends and reads go
through one lock.

How records influence later classification is a pluggable policy:
- NoLearningPolicy (default): write-only telemetry, bias is always 0
- FrequencyBiasPolicy: nudges the confidence of a query already seen, by
  (positive - negative) * step, clamped to +/- max_bias
"""
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple

from soukbot.utils.logger import get_logger

logger = get_logger("classification.learning_store")


def normalize_query(query: str) -> str:
    return " ".join((query or "").lower().split())


@dataclass(frozen=True)
class LearningRecord:
    query: str
    labeled_relevant: bool
    confidence: float
    knowledge_results_count: int
    semantic_evaluation: bool
    contains_general_keywords: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LearningPolicy(Protocol):
    name: str

    def bias(self, positive: int, negative: int) -> float: ...


class NoLearningPolicy:
    name = "none"

    def bias(self, positive: int, negative: int) -> float:
        return 0.0


class FrequencyBiasPolicy:
    """Shift confidence toward how the same query was labelled before."""

    name = "frequency_bias"

    def __init__(self, step: float = 5.0, max_bias: float = 15.0):
        self.step = step
        self.max_bias = max_bias

    def bias(self, positive: int, negative: int) -> float:
        raw = (positive - negative) * self.step
        return max(-self.max_bias, min(self.max_bias, raw))


class LearningStore:
    """Bounded, append-only history of classification outcomes."""

    def __init__(self, policy: Optional[LearningPolicy] = None, max_records: int = 10000):
        self.policy = policy or NoLearningPolicy()
        self.max_records = max_records
        self._records: Deque[LearningRecord] = deque()
        # normalized query -> (positive, negative)
        self._counts: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def record(self, record: LearningRecord) -> None:
        with self._lock:
            if len(self._records) >= self.max_records:
                self._forget(self._records.popleft())
            self._records.append(record)
            key = normalize_query(record.query)
            positive, negative = self._counts.get(key, (0, 0))
            if record.labeled_relevant:
                positive += 1
            else:
                negative += 1
            self._counts[key] = (positive, negative)
        logger.debug(f"Learned from query {record.query!r}: relevant={record.labeled_relevant}")

    def _forget(self, record: LearningRecord) -> None:
        # Caller holds the lock.
        key = normalize_query(record.query)
        positive, negative = self._counts.get(key, (0, 0))
        if record.labeled_relevant:
            positive -= 1
        else:
            negative -= 1
        if positive <= 0 and negative <= 0:
            self._counts.pop(key, None)
        else:
            self._counts[key] = (max(positive, 0), max(negative, 0))

    def confidence_bias(self, query: str) -> float:
        """Confidence adjustment (in points, 0-100 scale) for this query under the active policy."""
        with self._lock:
            positive, negative = self._counts.get(normalize_query(query), (0, 0))
        return self.policy.bias(positive, negative)

    def records(self) -> List[LearningRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            relevant = sum(1 for r in self._records if r.labeled_relevant)
            return {
                "policy": self.policy.name,
                "total": len(self._records),
                "relevant": relevant,
                "out_of_context": len(self._records) - relevant,
                "distinct_queries": len(self._counts),
            }


def create_learning_store(policy_name: str = "none", max_records: int = 10000,
                          bias_step: float = 5.0, max_bias: float = 15.0) -> LearningStore:
    if policy_name == NoLearningPolicy.name:
        policy: LearningPolicy = NoLearningPolicy()
    elif policy_name == FrequencyBiasPolicy.name:
        policy = FrequencyBiasPolicy(step=bias_step, max_bias=max_bias)
    else:
        raise ValueError(f"Unknown learning policy: {policy_name}")
    return LearningStore(policy=policy, max_records=max_records)
