"""
Partner search, ranking and display formatting.

Flow:
1. Build a cache key from the five criteria fields
2. On miss, fetch candidates from the partner store (with timeout)
3. Apply the product type / budget / city / country filters (AND-combined)
4. Sort by partner name and cache the outcome

Store failures never escape ``PartnerSearchService.search``: they come back
as ``SearchOutcome(success=False, error=...)``.
"""
import asyncio
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from soukbot.core.errors import ExternalLookupError
from soukbot.data.stores import PartnerRecord, PartnerStore
from soukbot.interview.slot_extractor import (
    CANONICAL_CATEGORIES,
    NO_LIMIT_BUDGET,
    get_similar_product_types,
)
from soukbot.utils.logger import get_logger
from soukbot.utils.metrics import SafeMonitor
from soukbot.utils.result_cache import NAMESPACE_PARTNER_SEARCH, ResultCache
from soukbot.utils.structured_logger import StructuredLogger

logger = get_logger("recommendation.partner_search")
events = StructuredLogger("partner_search")


@dataclass(frozen=True)
class SearchCriteria:
    """Partner search criteria; a None field imposes no constraint."""
    product_type: Optional[str] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    city: Optional[str] = None
    country: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_type": self.product_type,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "city": self.city,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SearchCriteria":
        return cls(
            product_type=d.get("product_type"),
            budget_min=d.get("budget_min"),
            budget_max=d.get("budget_max"),
            city=d.get("city"),
            country=d.get("country"),
        )


@dataclass
class SearchOutcome:
    success: bool
    partners: List[PartnerRecord] = field(default_factory=list)
    count: int = 0
    error: Optional[str] = None
    cached: bool = False


@dataclass(frozen=True)
class Suggestion:
    """A broadening suggestion. ``action`` is machine-actionable, ``text`` is shown as a quick reply."""
    type: str
    text: str
    action: str
    new_budget_max: Optional[int] = None
    product_types: Tuple[str, ...] = ()


SUGGESTION_TEXTS = {
    "expand_budget": "💰 Élargir votre budget",
    "expand_location": "📍 Chercher dans d'autres villes",
    "similar_products": "🔄 Explorer des produits similaires",
    "expand_search": "🔍 Voir plus d'options",
}


# ----------------------------------------------------------------------
# Filters
# ----------------------------------------------------------------------

def matches_product_type(partner: PartnerRecord, criteria: SearchCriteria) -> bool:
    if not criteria.product_type:
        return True
    wanted = criteria.product_type.lower()
    return any(wanted in product_type.lower() for product_type in partner.product_types)


def matches_budget(partner: PartnerRecord, criteria: SearchCriteria) -> bool:
    if criteria.budget_min is None and criteria.budget_max is None:
        return True
    low = criteria.budget_min if criteria.budget_min is not None else 0
    high = criteria.budget_max if criteria.budget_max is not None else float("inf")
    return not (partner.price_max < low or partner.price_min > high)


def matches_city(partner: PartnerRecord, criteria: SearchCriteria) -> bool:
    if not criteria.city:
        return True
    return partner.city.lower() == criteria.city.lower()


def matches_country(partner: PartnerRecord, criteria: SearchCriteria) -> bool:
    if not criteria.country:
        return True
    return partner.country.lower() == criteria.country.lower()


PartnerFilter = Callable[[PartnerRecord, SearchCriteria], bool]

DEFAULT_FILTERS: Tuple[PartnerFilter, ...] = (
    matches_product_type,
    matches_budget,
    matches_city,
    matches_country,
)


def filter_partners(
    partners: List[PartnerRecord],
    criteria: SearchCriteria,
    filters: Tuple[PartnerFilter, ...] = DEFAULT_FILTERS,
) -> List[PartnerRecord]:
    """Keep partners passing every filter, sorted by name (id breaks ties)."""
    kept = [p for p in partners if all(f(p, criteria) for f in filters)]
    return sorted(kept, key=lambda p: (p.name.casefold(), p.id))


# ----------------------------------------------------------------------
# Display
# ----------------------------------------------------------------------

def format_partner(partner: PartnerRecord) -> Dict[str, Any]:
    maps_url = f"https://www.google.com/maps?q={partner.lat},{partner.lng}"
    price_range = f"{partner.price_min:g}€ - {partner.price_max:g}€"
    location = f"{partner.city}, {partner.country}"
    return {
        "id": partner.id,
        "name": partner.name,
        "description": partner.description,
        "website": partner.website,
        "location": location,
        "price_range": price_range,
        "product_types": list(partner.product_types),
        "google_maps_url": maps_url,
        "display_text": (
            f"🏪 **{partner.name}**\n📍 {location}\n💰 {price_range}\n📝 {partner.description}\n"
            f"🌐 [Visiter le site]({partner.website})\n🗺️ [Voir sur Google Maps]({maps_url})"
        ),
    }


def format_partners_for_display(partners: List[PartnerRecord]) -> List[Dict[str, Any]]:
    return [format_partner(p) for p in partners]


# ----------------------------------------------------------------------
# Suggestions
# ----------------------------------------------------------------------

def generate_search_suggestions(criteria: SearchCriteria, found_count: int) -> List[Suggestion]:
    """
    Broadening suggestions for a search.

    No result: up to three (budget x1.5, drop the city, similar categories),
    each only when the matching criterion was set. One or two results: a
    single "see more options". Otherwise none.
    """
    suggestions: List[Suggestion] = []
    if found_count == 0:
        if criteria.budget_max:
            suggestions.append(Suggestion(
                type="budget",
                text=SUGGESTION_TEXTS["expand_budget"],
                action="expand_budget",
                new_budget_max=round(criteria.budget_max * 1.5),
            ))
        if criteria.city:
            suggestions.append(Suggestion(
                type="location",
                text=SUGGESTION_TEXTS["expand_location"],
                action="expand_location",
            ))
        if criteria.product_type:
            suggestions.append(Suggestion(
                type="product",
                text=SUGGESTION_TEXTS["similar_products"],
                action="similar_products",
                product_types=tuple(get_similar_product_types(criteria.product_type)),
            ))
    elif found_count < 3:
        suggestions.append(Suggestion(
            type="more_options",
            text=SUGGESTION_TEXTS["expand_search"],
            action="expand_search",
        ))
    return suggestions


_NON_WORD = re.compile(r"[^\w\s']", re.UNICODE)


def _normalize_command(text: str) -> str:
    return " ".join(_NON_WORD.sub(" ", (text or "").lower()).split())


_ACTIONS_BY_TEXT = {_normalize_command(text): action for action, text in SUGGESTION_TEXTS.items()}


def match_suggestion_action(text: str) -> Optional[str]:
    """Map a suggestion quick reply (with or without its emoji) back to its action."""
    return _ACTIONS_BY_TEXT.get(_normalize_command(text))


def apply_suggestion(
    criteria: SearchCriteria,
    action: str,
    no_limit: int = NO_LIMIT_BUDGET,
) -> Optional[SearchCriteria]:
    """
    Criteria widened by a suggestion action, or None when the action
    cannot widen these criteria (e.g. no similar category is known).
    """
    if action == "expand_budget":
        if not criteria.budget_max or criteria.budget_max >= no_limit:
            return None
        return replace(criteria, budget_max=round(criteria.budget_max * 1.5))
    if action == "expand_location":
        return replace(criteria, city=None) if criteria.city else None
    if action == "similar_products":
        similar = get_similar_product_types(criteria.product_type)
        return replace(criteria, product_type=similar[0]) if similar else None
    if action == "expand_search":
        return replace(criteria, city=None, budget_min=0, budget_max=no_limit)
    return None


def validate_search_criteria(criteria: SearchCriteria) -> List[str]:
    errors = []
    if criteria.budget_min is not None and criteria.budget_max is not None \
            and criteria.budget_min > criteria.budget_max:
        errors.append("Le budget minimum ne peut pas être supérieur au budget maximum")
    if criteria.budget_min is not None and criteria.budget_min < 0:
        errors.append("Le budget minimum ne peut pas être négatif")
    return errors


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------

class PartnerSearchService:
    """Cache-checked partner search over a ``PartnerStore``."""

    def __init__(
        self,
        store: PartnerStore,
        cache: ResultCache,
        monitor: Optional[SafeMonitor] = None,
        timeout: float = 3.0,
    ):
        self.store = store
        self.cache = cache
        self.monitor = monitor or SafeMonitor()
        self.timeout = timeout

    async def search(self, criteria: SearchCriteria) -> SearchOutcome:
        key = ResultCache.make_partner_search_key(criteria.to_dict())
        cached = self.cache.get(NAMESPACE_PARTNER_SEARCH, key)
        if cached is not None:
            self.monitor.record_cache_hit(NAMESPACE_PARTNER_SEARCH)
            self.monitor.record_partner_search(0.0, cached["count"], True)
            partners = [PartnerRecord.from_dict(p) for p in cached["partners"]]
            logger.debug(f"Partners (cache): {len(partners)}")
            return SearchOutcome(success=True, partners=partners, count=len(partners), cached=True)

        self.monitor.record_cache_miss(NAMESPACE_PARTNER_SEARCH)
        start = time.perf_counter()
        try:
            candidates = await self._fetch(criteria)
        except ExternalLookupError as e:
            logger.error(f"Partner search failed: {e}")
            self.monitor.record_error("partner_search", "partner_search")
            events.error("partner_search_failed", str(e), {"criteria": criteria.to_dict()})
            return SearchOutcome(success=False, error=str(e))

        partners = filter_partners(candidates, criteria)
        duration = time.perf_counter() - start
        self.cache.set(NAMESPACE_PARTNER_SEARCH, key, {
            "partners": [p.to_dict() for p in partners],
            "count": len(partners),
        })
        self.monitor.record_partner_search(duration, len(partners), False)
        events.info("partner_search", f"{len(partners)} partner(s) found", {
            "criteria": criteria.to_dict(),
            "count": len(partners),
            "duration_ms": round(duration * 1000, 2),
        })
        return SearchOutcome(success=True, partners=partners, count=len(partners))

    async def _fetch(self, criteria: SearchCriteria) -> List[PartnerRecord]:
        try:
            return list(await asyncio.wait_for(self.store.search_partners(criteria.to_dict()), self.timeout))
        except asyncio.TimeoutError as e:
            raise ExternalLookupError("partner_search", f"timed out after {self.timeout}s", e) from e
        except Exception as e:
            raise ExternalLookupError("partner_search", str(e), e) from e

    async def available_cities(self) -> List[Dict[str, str]]:
        try:
            return await asyncio.wait_for(self.store.get_cities(), self.timeout)
        except Exception as e:
            logger.error(f"Could not load cities: {e}")
            self.monitor.record_error("get_cities", "partner_search")
            return []

    async def available_product_types(self) -> List[str]:
        try:
            return await asyncio.wait_for(self.store.get_product_types(), self.timeout)
        except Exception as e:
            logger.error(f"Could not load product types: {e}")
            self.monitor.record_error("get_product_types", "partner_search")
            return list(CANONICAL_CATEGORIES)
