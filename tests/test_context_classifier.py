"""Tests for the context classifier decision and its orchestration."""

import asyncio
from dataclasses import replace

import pytest

from soukbot.classification.context_classifier import (
    ClassifierPolicy,
    ContextClassifier,
    combine_signals,
    contains_general_keywords,
    mentions_off_topic_term,
    out_of_scope_response,
)
from soukbot.classification.knowledge_lookup import KnowledgeLookup
from soukbot.classification.learning_store import FrequencyBiasPolicy, LearningStore
from soukbot.classification.semantic_scorer import SemanticScore
from soukbot.core.config import SoukBotConfig
from soukbot.core.errors import ExternalLookupError
from soukbot.utils.metrics import MetricsCollector, SafeMonitor

from conftest import BrokenKnowledgeStore, FailingScorer, FakeScorer


def in_context(similarity=0.8, irrelevant=0.1):
    return SemanticScore(similarity=similarity, best_match="quels sont vos horaires",
                         irrelevant_similarity=irrelevant, is_in_context=True)


POLICY = ClassifierPolicy()


# ── Term checks ──────────────────────────────────────────────────────────

class TestTermChecks:
    def test_general_keyword(self):
        assert contains_general_keywords("Quelle est la CAPITALE ?", POLICY.general_keywords, "SoukBot")

    def test_brand_disables_general_keywords(self):
        assert not contains_general_keywords("la météo chez SoukBot", POLICY.general_keywords, "SoukBot")

    def test_off_topic_term(self):
        assert mentions_off_topic_term("quel pays ?", POLICY.off_topic_terms, "SoukBot")
        assert not mentions_off_topic_term("soukbot est dans quel pays ?", POLICY.off_topic_terms, "SoukBot")


# ── Decision ─────────────────────────────────────────────────────────────

class TestCombineSignals:
    def test_accepts_clear_question(self):
        result = combine_signals("quels sont vos horaires", in_context(), True, POLICY)
        assert not result.is_definitely_out_of_context
        assert result.rejection_reasons == []
        assert result.confidence == 80.0
        assert result.threshold == 30.0

    def test_semantic_rejection(self):
        score = replace(in_context(), is_in_context=False)
        result = combine_signals("quels sont vos horaires", score, True, POLICY)
        assert result.rejection_reasons == ["semantic"]

    def test_general_keyword_overrides_high_similarity(self):
        result = combine_signals("donne-moi une recette", in_context(0.99), True, POLICY)
        assert result.is_definitely_out_of_context
        assert result.contains_general_keywords
        assert "general_keywords" in result.rejection_reasons

    @pytest.mark.parametrize("similarity", [0.0, 0.3, 0.6, 0.9, 1.0])
    @pytest.mark.parametrize("knowledge", [True, False])
    def test_general_keyword_always_rejects(self, similarity, knowledge):
        result = combine_signals("le match de football", in_context(similarity, 0.0), knowledge, POLICY)
        assert result.is_definitely_out_of_context

    def test_low_confidence_needs_knowledge(self):
        score = in_context(0.2)
        assert combine_signals("vos offres", score, False, POLICY).rejection_reasons == ["low_confidence"]
        assert not combine_signals("vos offres", score, True, POLICY).is_definitely_out_of_context

    def test_irrelevant_similarity(self):
        result = combine_signals("vos offres", in_context(0.8, 0.7), True, POLICY)
        assert result.rejection_reasons == ["irrelevant_similarity"]

    def test_irrelevant_similarity_at_threshold_is_kept(self):
        policy = ClassifierPolicy(irrelevant_threshold=0.3, irrelevant_weight=0.5)
        result = combine_signals("vos offres", in_context(0.8, 0.6), True, policy)
        assert not result.is_definitely_out_of_context

    def test_off_topic_term_without_brand(self):
        result = combine_signals("quel pays livrez-vous", in_context(), True, POLICY)
        assert result.rejection_reasons == ["off_topic_term"]

    def test_bias_is_applied_and_clamped(self):
        assert combine_signals("vos offres", in_context(0.25), False, POLICY, 10.0).confidence == 35.0
        assert combine_signals("vos offres", in_context(0.95), True, POLICY, 15.0).confidence == 100.0
        assert combine_signals("vos offres", in_context(0.05), True, POLICY, -15.0).confidence == 0.0

    def test_deterministic(self):
        results = {
            combine_signals("vos offres", in_context(0.42, 0.3), False, POLICY).is_definitely_out_of_context
            for _ in range(5)
        }
        assert len(results) == 1

    def test_policy_from_config(self):
        config = SoukBotConfig(low_confidence_cutoff=50.0, brand_name="Souk", off_topic_terms=["ville"])
        policy = ClassifierPolicy.from_config(config)
        assert policy.low_confidence_cutoff == 50.0
        assert policy.brand_name == "Souk"
        assert policy.off_topic_terms == ("ville",)

    def test_out_of_scope_response(self):
        text = out_of_scope_response("  la météo ? ", "SoukBot")
        assert "« la météo ? »" in text
        assert "concerner SoukBot" in text


# ── Orchestration ────────────────────────────────────────────────────────

class SlowScorer:
    async def score(self, query):
        await asyncio.sleep(1.0)


@pytest.fixture
def learning_store():
    return LearningStore()


def make_classifier(knowledge_store, learning_store, scorer=None, timeout=2.0, metrics=None):
    monitor = SafeMonitor(metrics or MetricsCollector())
    return ContextClassifier(
        scorer or FakeScorer(),
        KnowledgeLookup(knowledge_store, monitor=monitor),
        learning_store,
        timeout=timeout,
        monitor=monitor,
    )


class TestContextClassifier:
    async def test_accepted_query_is_recorded(self, knowledge_store, learning_store):
        classifier = make_classifier(knowledge_store, learning_store)
        classification = await classifier.classify("quels sont vos horaires")
        assert not classification.validation.is_definitely_out_of_context
        assert classification.validation.has_relevant_knowledge
        assert classification.knowledge.results[0].title == "Horaires du service client"

        [record] = learning_store.records()
        assert record.query == "quels sont vos horaires"
        assert record.labeled_relevant
        assert record.confidence == 80.0
        assert record.knowledge_results_count == 1

    async def test_rejected_query_is_recorded(self, knowledge_store, learning_store):
        classifier = make_classifier(knowledge_store, learning_store)
        validation = await classifier.validate("quelle est la capitale de la France")
        assert validation.is_definitely_out_of_context
        assert not validation.has_relevant_knowledge
        assert set(validation.rejection_reasons) == {"general_keywords", "off_topic_term"}
        assert learning_store.records()[0].labeled_relevant is False
        assert learning_store.records()[0].contains_general_keywords

    async def test_accepted_without_knowledge_is_not_labelled_relevant(self, knowledge_store, learning_store):
        classifier = make_classifier(knowledge_store, learning_store)
        validation = await classifier.validate("bonjour tout le monde")
        assert not validation.is_definitely_out_of_context
        assert not validation.has_relevant_knowledge
        assert learning_store.records()[0].labeled_relevant is False

    async def test_cached_answer_is_recorded(self, knowledge_store, learning_store):
        classifier = make_classifier(knowledge_store, learning_store)
        classifier.record_cached_answer("vos horaires", 80.0, 1, True)
        [record] = learning_store.records()
        assert record.labeled_relevant
        assert record.semantic_evaluation
        assert knowledge_store.total_calls == 0

    async def test_knowledge_failure_only_drops_corroboration(self, learning_store):
        classifier = make_classifier(BrokenKnowledgeStore(), learning_store)
        classification = await classifier.classify("vos horaires")
        assert not classification.knowledge.success
        assert not classification.validation.is_definitely_out_of_context

    async def test_scorer_failure_raises(self, knowledge_store, learning_store):
        metrics = MetricsCollector()
        classifier = make_classifier(knowledge_store, learning_store, scorer=FailingScorer(), metrics=metrics)
        with pytest.raises(ExternalLookupError):
            await classifier.classify("vos horaires")
        assert len(learning_store) == 0
        assert metrics.error_counts["context_classifier:context_validation"] == 1

    async def test_scorer_timeout_raises(self, knowledge_store, learning_store):
        classifier = make_classifier(knowledge_store, learning_store, scorer=SlowScorer(), timeout=0.05)
        with pytest.raises(ExternalLookupError) as exc:
            await classifier.classify("vos horaires")
        assert "timed out" in str(exc.value)

    async def test_learning_bias_feeds_back(self, knowledge_store):
        store = LearningStore(FrequencyBiasPolicy(step=5, max_bias=15))
        scorer = FakeScorer(default=in_context(0.25))
        classifier = make_classifier(knowledge_store, store, scorer=scorer)

        first = await classifier.validate("comment devenir partenaire")
        second = await classifier.validate("comment devenir partenaire")
        assert first.confidence == 25.0
        assert second.confidence_bias == 5.0
        assert second.confidence == 30.0
