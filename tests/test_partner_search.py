"""Tests for partner filtering, suggestions and the cached search service."""

import itertools

import pytest

from soukbot.data.stores import InMemoryPartnerStore
from soukbot.recommendation.partner_search import (
    DEFAULT_FILTERS,
    SUGGESTION_TEXTS,
    PartnerSearchService,
    SearchCriteria,
    apply_suggestion,
    filter_partners,
    format_partner,
    generate_search_suggestions,
    match_suggestion_action,
    validate_search_criteria,
)
from soukbot.utils.metrics import MetricsCollector, SafeMonitor
from soukbot.utils.result_cache import NAMESPACE_PARTNER_SEARCH, ResultCache

from conftest import CountingPartnerStore, FailingPartnerStore, SlowPartnerStore, make_partner


@pytest.fixture
def partners():
    return [
        make_partner(1, "Zeta Mode", product_types=("Robes", "chemises"), price_min=100, price_max=300),
        make_partner(2, "alpha store", product_types=("robes de soirée",), price_min=400, price_max=900),
        make_partner(3, "Beta Rabat", city="Rabat", product_types=("robes",), price_min=50, price_max=150),
        make_partner(4, "Gamma Paris", city="Paris", country="France", product_types=("robes",)),
        make_partner(5, "Alpha Store", product_types=("chaussures",), price_min=10, price_max=90),
    ]


# ── Filters ──────────────────────────────────────────────────────────────

class TestFilterPartners:
    def test_product_type_is_case_insensitive_substring(self, partners):
        result = filter_partners(partners, SearchCriteria(product_type="ROBE"))
        assert [p.id for p in result] == [2, 3, 4, 1]

    def test_budget_overlap(self, partners):
        result = filter_partners(partners, SearchCriteria(budget_min=310, budget_max=450))
        assert [p.id for p in result] == [2, 4]

    def test_city_and_country(self, partners):
        assert [p.id for p in filter_partners(partners, SearchCriteria(city="rabat"))] == [3]
        assert [p.id for p in filter_partners(partners, SearchCriteria(country="maroc"))] == [2, 5, 3, 1]

    def test_sorted_by_name_then_id(self, partners):
        result = filter_partners(partners, SearchCriteria())
        assert [p.name for p in result] == ["alpha store", "Alpha Store", "Beta Rabat", "Gamma Paris", "Zeta Mode"]

    def test_empty_criteria_keeps_everything(self, partners):
        assert len(filter_partners(partners, SearchCriteria())) == len(partners)

    def test_filter_order_does_not_matter(self, partners):
        criteria = SearchCriteria(product_type="robes", budget_min=0, budget_max=350, city="Casablanca",
                                  country="Maroc")
        expected = filter_partners(partners, criteria)
        assert [p.id for p in expected] == [1]
        for order in itertools.permutations(DEFAULT_FILTERS):
            assert filter_partners(partners, criteria, tuple(order)) == expected

    def test_every_result_satisfies_every_filter(self, seed_partners):
        criteria = SearchCriteria(product_type="accessoires", budget_min=100, budget_max=500, country="Maroc")
        for partner in filter_partners(seed_partners, criteria):
            assert all(f(partner, criteria) for f in DEFAULT_FILTERS)


# ── Suggestions ──────────────────────────────────────────────────────────

class TestSuggestions:
    def test_zero_results_full_criteria(self):
        criteria = SearchCriteria(product_type="vêtements", budget_min=50, budget_max=200, city="Casablanca")
        suggestions = generate_search_suggestions(criteria, 0)
        assert [s.action for s in suggestions] == ["expand_budget", "expand_location", "similar_products"]
        assert suggestions[0].new_budget_max == 300
        assert suggestions[2].product_types == ("accessoires", "chaussures")

    def test_zero_results_only_for_set_criteria(self):
        suggestions = generate_search_suggestions(SearchCriteria(product_type="sport"), 0)
        assert [s.action for s in suggestions] == ["similar_products"]

    @pytest.mark.parametrize("count", [1, 2])
    def test_few_results(self, count):
        suggestions = generate_search_suggestions(SearchCriteria(product_type="sport"), count)
        assert [s.action for s in suggestions] == ["expand_search"]

    def test_enough_results(self):
        assert generate_search_suggestions(SearchCriteria(product_type="sport"), 3) == []

    @pytest.mark.parametrize("action,text", SUGGESTION_TEXTS.items())
    def test_quick_reply_maps_back_to_action(self, action, text):
        assert match_suggestion_action(text) == action
        assert match_suggestion_action(text.split(" ", 1)[1].upper()) == action

    def test_unrelated_text_is_not_an_action(self):
        assert match_suggestion_action("bonjour") is None

    def test_apply_expand_budget(self):
        widened = apply_suggestion(SearchCriteria(budget_min=50, budget_max=200), "expand_budget")
        assert (widened.budget_min, widened.budget_max) == (50, 300)

    def test_apply_expand_budget_at_limit(self):
        assert apply_suggestion(SearchCriteria(budget_max=999999), "expand_budget") is None
        assert apply_suggestion(SearchCriteria(), "expand_budget") is None

    def test_apply_expand_location(self):
        assert apply_suggestion(SearchCriteria(city="Fès"), "expand_location").city is None
        assert apply_suggestion(SearchCriteria(), "expand_location") is None

    def test_apply_similar_products(self):
        widened = apply_suggestion(SearchCriteria(product_type="électronique"), "similar_products")
        assert widened.product_type == "informatique"
        assert apply_suggestion(SearchCriteria(product_type="bijoux"), "similar_products") is None

    def test_apply_expand_search(self):
        widened = apply_suggestion(
            SearchCriteria(product_type="sport", budget_min=10, budget_max=20, city="Fès"), "expand_search"
        )
        assert widened == SearchCriteria(product_type="sport", budget_min=0, budget_max=999999)

    def test_validate_search_criteria(self):
        assert validate_search_criteria(SearchCriteria(budget_min=10, budget_max=20)) == []
        assert len(validate_search_criteria(SearchCriteria(budget_min=30, budget_max=20))) == 1
        assert len(validate_search_criteria(SearchCriteria(budget_min=-1))) == 1


# ── Display ──────────────────────────────────────────────────────────────

class TestFormatPartner:
    def test_fields(self):
        formatted = format_partner(make_partner(7, "Souk Mode", price_min=99, price_max=1499.5))
        assert formatted["google_maps_url"] == "https://www.google.com/maps?q=33.58,-7.63"
        assert formatted["price_range"] == "99€ - 1499.5€"
        assert formatted["location"] == "Casablanca, Maroc"
        assert "🏪 **Souk Mode**" in formatted["display_text"]


# ── Service ──────────────────────────────────────────────────────────────

class TestPartnerSearchService:
    async def test_search(self, seed_partners):
        service = PartnerSearchService(InMemoryPartnerStore(seed_partners), ResultCache())
        outcome = await service.search(SearchCriteria(product_type="robes", city="Casablanca", country="Maroc"))
        assert outcome.success
        assert [p.name for p in outcome.partners] == ["Arwa Shop", "RAZANA"]
        assert outcome.count == 2
        assert not outcome.cached

    async def test_second_search_is_cached(self, seed_partners):
        store = CountingPartnerStore(seed_partners)
        metrics = MetricsCollector()
        cache = ResultCache()
        service = PartnerSearchService(store, cache, SafeMonitor(metrics))
        criteria = SearchCriteria(product_type="robes", country="Maroc")

        first = await service.search(criteria)
        second = await service.search(criteria)
        assert store.calls == 1
        assert second.cached
        assert second.partners == first.partners
        assert metrics.cache_hits[NAMESPACE_PARTNER_SEARCH] == 1
        assert metrics.cache_misses[NAMESPACE_PARTNER_SEARCH] == 1
        assert cache.size(NAMESPACE_PARTNER_SEARCH) == 1

    async def test_store_failure_is_reported(self):
        metrics = MetricsCollector()
        cache = ResultCache()
        service = PartnerSearchService(FailingPartnerStore(), cache, SafeMonitor(metrics))
        outcome = await service.search(SearchCriteria(product_type="robes"))
        assert not outcome.success
        assert "database is down" in outcome.error
        assert outcome.partners == []
        assert metrics.error_counts["partner_search:partner_search"] == 1
        assert cache.size(NAMESPACE_PARTNER_SEARCH) == 0

    async def test_timeout_is_reported(self, seed_partners):
        service = PartnerSearchService(SlowPartnerStore(seed_partners, delay=1.0), ResultCache(), timeout=0.05)
        outcome = await service.search(SearchCriteria(product_type="robes"))
        assert not outcome.success
        assert "timed out" in outcome.error

    async def test_catalogue_fallbacks(self):
        service = PartnerSearchService(FailingPartnerStore(), ResultCache())
        assert await service.available_cities() == []
        assert "vêtements" in await service.available_product_types()

    async def test_catalogue(self, seed_partners):
        service = PartnerSearchService(InMemoryPartnerStore(seed_partners), ResultCache())
        cities = await service.available_cities()
        assert {"city": "Meknès", "country": "Maroc"} in cities
        assert "robes" in await service.available_product_types()
