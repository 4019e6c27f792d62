"""
Context classifier: should SoukBot answer this free-form question?

Three signals are gathered independently (semantic score and knowledge
lookup run concurrently) and merged by ``combine_signals``. A query is
definitely out of context when ANY of these holds:
- the semantic scorer says out of context
- it contains a general-knowledge keyword without naming the brand
- confidence < low_confidence_cutoff and no relevant knowledge corroborates it
- irrelevant_similarity * irrelevant_weight > irrelevant_threshold
- it contains an off-topic term (capitale, pays) without naming the brand

Every verdict is recorded in the learning store. A query is labelled
relevant only when it was accepted and the knowledge base corroborated it.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from soukbot.classification.knowledge_lookup import KnowledgeLookup, KnowledgeLookupResult
from soukbot.classification.learning_store import LearningRecord, LearningStore
from soukbot.classification.semantic_scorer import SemanticScore, SemanticScorer
from soukbot.core.config import DEFAULT_GENERAL_KEYWORDS, DEFAULT_OFF_TOPIC_TERMS, SoukBotConfig
from soukbot.core.errors import ExternalLookupError
from soukbot.utils.logger import get_logger
from soukbot.utils.metrics import SafeMonitor
from soukbot.utils.structured_logger import StructuredLogger

logger = get_logger("classification.context_classifier")
events = StructuredLogger("context_classifier")


@dataclass
class ContextValidationResult:
    is_in_context: bool
    confidence: float
    threshold: float
    best_match: Optional[str]
    best_similarity: float
    contains_general_keywords: bool
    irrelevant_similarity: float
    irrelevant_weight: float
    has_relevant_knowledge: bool = False
    confidence_bias: float = 0.0
    is_definitely_out_of_context: bool = False
    rejection_reasons: List[str] = field(default_factory=list)
    top_irrelevant_matches: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClassifierPolicy:
    """Thresholds and term lists used to merge the signals."""
    low_confidence_cutoff: float = 30.0
    irrelevant_threshold: float = 0.4
    irrelevant_weight: float = 0.6
    general_keywords: Sequence[str] = tuple(DEFAULT_GENERAL_KEYWORDS)
    off_topic_terms: Sequence[str] = tuple(DEFAULT_OFF_TOPIC_TERMS)
    brand_name: str = "SoukBot"

    @classmethod
    def from_config(cls, config: SoukBotConfig) -> "ClassifierPolicy":
        return cls(
            low_confidence_cutoff=config.low_confidence_cutoff,
            irrelevant_threshold=config.irrelevant_threshold,
            irrelevant_weight=config.irrelevant_weight,
            general_keywords=tuple(config.general_keywords),
            off_topic_terms=tuple(config.off_topic_terms),
            brand_name=config.brand_name,
        )


@dataclass
class Classification:
    validation: ContextValidationResult
    knowledge: KnowledgeLookupResult


def _mentions_brand(normalized_query: str, brand_name: str) -> bool:
    return brand_name.lower() in normalized_query


def contains_general_keywords(query: str, keywords: Sequence[str], brand_name: str) -> bool:
    normalized = (query or "").lower()
    if _mentions_brand(normalized, brand_name):
        return False
    return any(keyword.lower() in normalized for keyword in keywords)


def mentions_off_topic_term(query: str, terms: Sequence[str], brand_name: str) -> bool:
    normalized = (query or "").lower()
    return any(term.lower() in normalized for term in terms) and not _mentions_brand(normalized, brand_name)


def combine_signals(
    query: str,
    score: SemanticScore,
    has_relevant_knowledge: bool,
    policy: ClassifierPolicy,
    confidence_bias: float = 0.0,
) -> ContextValidationResult:
    """Pure decision: the same inputs and bias always give the same verdict."""
    general = contains_general_keywords(query, policy.general_keywords, policy.brand_name)
    confidence = max(0.0, min(100.0, score.similarity * 100 + confidence_bias))

    reasons = []
    if not score.is_in_context:
        reasons.append("semantic")
    if general:
        reasons.append("general_keywords")
    if confidence < policy.low_confidence_cutoff and not has_relevant_knowledge:
        reasons.append("low_confidence")
    if score.irrelevant_similarity * policy.irrelevant_weight > policy.irrelevant_threshold:
        reasons.append("irrelevant_similarity")
    if mentions_off_topic_term(query, policy.off_topic_terms, policy.brand_name):
        reasons.append("off_topic_term")

    return ContextValidationResult(
        is_in_context=score.is_in_context,
        confidence=round(confidence, 2),
        threshold=policy.low_confidence_cutoff,
        best_match=score.best_match,
        best_similarity=score.similarity,
        contains_general_keywords=general,
        irrelevant_similarity=score.irrelevant_similarity,
        irrelevant_weight=policy.irrelevant_weight,
        has_relevant_knowledge=has_relevant_knowledge,
        confidence_bias=confidence_bias,
        is_definitely_out_of_context=bool(reasons),
        rejection_reasons=reasons,
        top_irrelevant_matches=list(score.top_irrelevant_matches),
    )


def out_of_scope_response(query: str, brand_name: str = "SoukBot") -> str:
    return (
        f"Je suis désolé, mais votre question « {query.strip()} » ne semble pas concerner {brand_name}. "
        "Je suis spécialisé dans la recherche de partenaires commerciaux et les informations "
        "sur nos services.\n\nComment puis-je vous aider dans ce domaine ?"
    )


class ContextClassifier:
    """Gathers the signals for a query, merges them and records the outcome."""

    def __init__(
        self,
        scorer: SemanticScorer,
        knowledge_lookup: KnowledgeLookup,
        learning_store: LearningStore,
        policy: Optional[ClassifierPolicy] = None,
        timeout: float = 2.0,
        monitor: Optional[SafeMonitor] = None,
    ):
        self.scorer = scorer
        self.knowledge_lookup = knowledge_lookup
        self.learning_store = learning_store
        self.policy = policy or ClassifierPolicy()
        self.timeout = timeout
        self.monitor = monitor or SafeMonitor()

    async def _score(self, query: str) -> SemanticScore:
        try:
            return await asyncio.wait_for(self.scorer.score(query), self.timeout)
        except asyncio.TimeoutError as e:
            self.monitor.record_error("context_validation", "context_classifier")
            raise ExternalLookupError("context_validation", f"timed out after {self.timeout}s", e) from e
        except Exception as e:
            self.monitor.record_error("context_validation", "context_classifier")
            raise ExternalLookupError("context_validation", str(e), e) from e

    async def classify(self, query: str) -> Classification:
        """
        Raises ExternalLookupError when the semantic scorer fails or times out.
        A knowledge store failure only removes the corroboration signal.
        """
        score, knowledge = await asyncio.gather(self._score(query), self.knowledge_lookup.lookup(query))

        bias = self.learning_store.confidence_bias(query)
        validation = combine_signals(query, score, knowledge.has_relevant_knowledge, self.policy, bias)

        self.learning_store.record(LearningRecord(
            query=query,
            labeled_relevant=(
                validation.has_relevant_knowledge and not validation.is_definitely_out_of_context
            ),
            confidence=validation.confidence,
            knowledge_results_count=len(knowledge.results),
            semantic_evaluation=validation.is_in_context,
            contains_general_keywords=validation.contains_general_keywords,
        ))

        events.info("context_validation", "Combined relevance analysis", {
            "query": query,
            "is_definitely_out_of_context": validation.is_definitely_out_of_context,
            "reasons": validation.rejection_reasons,
            "semantic_decision": "PERTINENT" if validation.is_in_context else "NON PERTINENT",
            "confidence": validation.confidence,
            "best_match": validation.best_match,
            "has_relevant_knowledge": validation.has_relevant_knowledge,
            "knowledge_results": len(knowledge.results),
            "irrelevant_similarity": validation.irrelevant_similarity,
            "top_irrelevant_matches": validation.top_irrelevant_matches,
        })
        if validation.is_definitely_out_of_context:
            logger.warning(
                f"Out-of-context query {query!r}: confidence={validation.confidence}%, "
                f"knowledge results={len(knowledge.results)}, reasons={validation.rejection_reasons}"
            )
        return Classification(validation=validation, knowledge=knowledge)

    async def validate(self, query: str) -> ContextValidationResult:
        return (await self.classify(query)).validation

    def record_cached_answer(self, query: str, confidence: float, knowledge_results_count: int,
                             labeled_relevant: bool) -> None:
        """Record a repeat of an accepted query whose answer came from the cache."""
        self.learning_store.record(LearningRecord(
            query=query,
            labeled_relevant=labeled_relevant,
            confidence=confidence,
            knowledge_results_count=knowledge_results_count,
            semantic_evaluation=True,
        ))
