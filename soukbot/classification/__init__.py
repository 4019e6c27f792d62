"""
Free-form query handling.

- context_classifier: accept/reject decision for a query
- knowledge_lookup: intent fast path + full-text knowledge search
- semantic_scorer: similarity against reference questions
- learning_store: outcome history feeding later decisions
"""
from soukbot.classification.context_classifier import (
    ContextClassifier,
    ContextValidationResult,
    combine_signals,
)
from soukbot.classification.learning_store import LearningRecord, LearningStore

__all__ = [
    "ContextClassifier",
    "ContextValidationResult",
    "combine_signals",
    "LearningRecord",
    "LearningStore",
]
