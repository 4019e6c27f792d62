"""
Partner recommendation: filter, rank and format partner shops, and
suggest how to broaden a search that found too little.
"""
from soukbot.recommendation.partner_search import (
    PartnerSearchService,
    SearchCriteria,
    SearchOutcome,
    filter_partners,
    generate_search_suggestions,
)

__all__ = [
    "PartnerSearchService",
    "SearchCriteria",
    "SearchOutcome",
    "filter_partners",
    "generate_search_suggestions",
]
