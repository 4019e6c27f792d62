"""Shared fixtures and fake collaborators for SoukBot tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from soukbot.classification.semantic_scorer import SemanticScore
from soukbot.core.chat_service import create_chat_service
from soukbot.core.config import SoukBotConfig
from soukbot.data.stores import (
    InMemoryConversationStore,
    InMemoryKnowledgeStore,
    InMemoryPartnerStore,
    KnowledgeResult,
    PartnerRecord,
)
from soukbot.utils.metrics import MetricsCollector


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeScorer:
    """Returns a fixed in-context score unless a query has its own entry."""

    def __init__(self, default: Optional[SemanticScore] = None, scores: Optional[Dict[str, SemanticScore]] = None):
        self.default = default or SemanticScore(
            similarity=0.8,
            best_match="quels sont vos horaires",
            irrelevant_similarity=0.1,
            is_in_context=True,
        )
        self.scores = scores or {}
        self.calls: List[str] = []

    async def score(self, query: str) -> SemanticScore:
        self.calls.append(query)
        return self.scores.get(query, self.default)


class FailingScorer:
    async def score(self, query: str) -> SemanticScore:
        raise RuntimeError("model unavailable")


class CountingKnowledgeStore:
    """Wraps a knowledge store and counts every external call."""

    def __init__(self, inner):
        self.inner = inner
        self.search_calls: List[str] = []
        self.category_calls: List[str] = []

    async def search(self, text: str) -> List[KnowledgeResult]:
        self.search_calls.append(text)
        return await self.inner.search(text)

    async def get_by_category(self, name: str) -> List[KnowledgeResult]:
        self.category_calls.append(name)
        return await self.inner.get_by_category(name)

    @property
    def total_calls(self) -> int:
        return len(self.search_calls) + len(self.category_calls)


class SlowKnowledgeStore:
    def __init__(self, delay: float = 1.0):
        self.delay = delay

    async def search(self, text: str) -> List[KnowledgeResult]:
        await asyncio.sleep(self.delay)
        return []

    async def get_by_category(self, name: str) -> List[KnowledgeResult]:
        await asyncio.sleep(self.delay)
        return []


class BrokenKnowledgeStore:
    async def search(self, text: str) -> List[KnowledgeResult]:
        raise ConnectionError("knowledge base offline")

    async def get_by_category(self, name: str) -> List[KnowledgeResult]:
        raise ConnectionError("knowledge base offline")


class FailingPartnerStore:
    def __init__(self):
        self.calls = 0

    async def search_partners(self, criteria):
        self.calls += 1
        raise ConnectionError("database is down")

    async def get_cities(self):
        raise ConnectionError("database is down")

    async def get_product_types(self):
        raise ConnectionError("database is down")


class SlowPartnerStore(InMemoryPartnerStore):
    def __init__(self, partners, delay: float = 0.05):
        super().__init__(partners)
        self.delay = delay

    async def search_partners(self, criteria):
        await asyncio.sleep(self.delay)
        return await super().search_partners(criteria)


class CountingPartnerStore(InMemoryPartnerStore):
    def __init__(self, partners):
        super().__init__(partners)
        self.calls = 0

    async def search_partners(self, criteria):
        self.calls += 1
        return await super().search_partners(criteria)


class FailingConversationStore(InMemoryConversationStore):
    """Conversations cannot be created; everything else works."""

    async def create(self, user_id: str):
        raise ConnectionError("conversation database is down")


class ExplodingSink:
    """A monitoring sink where every call fails."""

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise RuntimeError(f"sink down ({name})")
        return _fail


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

def make_partner(id, name, city="Casablanca", country="Maroc", product_types=("robes",),
                 price_min=100, price_max=500) -> PartnerRecord:
    return PartnerRecord(
        id=id,
        name=name,
        website=f"https://{name.lower().replace(' ', '')}.ma",
        city=city,
        country=country,
        lat=33.58,
        lng=-7.63,
        product_types=tuple(product_types),
        price_min=price_min,
        price_max=price_max,
        description=f"Boutique {name}",
    )


@pytest.fixture
def config():
    return SoukBotConfig()


@pytest.fixture
def seed_partners(config) -> List[PartnerRecord]:
    return InMemoryPartnerStore.from_yaml(config.resolve_path(config.partners_file)).partners


@pytest.fixture
def knowledge_store(config):
    return CountingKnowledgeStore(InMemoryKnowledgeStore.from_yaml(config.resolve_path(config.knowledge_file)))


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def chat(config, seed_partners, knowledge_store, scorer, metrics):
    return create_chat_service(
        config,
        partner_store=InMemoryPartnerStore(seed_partners),
        knowledge_store=knowledge_store,
        scorer=scorer,
        monitoring_sink=metrics,
    )
