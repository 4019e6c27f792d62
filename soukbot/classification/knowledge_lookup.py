"""
Knowledge-base lookup and answer formatting.

Lookup order:
1. Intent fast path: if the query contains a known intent (contact, hours,
   services, pricing, address), search each synonym of that intent until
   five results are collected, then try the intent's category.
2. Otherwise, or when the fast path found nothing, a plain full-text search.

Store errors and timeouts are returned as ``KnowledgeLookupResult(success=False)``.
"""
import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from soukbot.core.errors import ExternalLookupError
from soukbot.data.stores import KnowledgeResult, KnowledgeStore
from soukbot.utils.logger import get_logger
from soukbot.utils.metrics import SafeMonitor

logger = get_logger("classification.knowledge_lookup")

# Order matters: "contact" is tested before "nous contacter".
INTENT_KEYWORDS: Dict[str, List[str]] = {
    "contact": ["contact", "coordonnées", "adresse", "téléphone", "email"],
    "nous contacter": ["contact", "coordonnées", "adresse", "téléphone", "email"],
    "horaires": ["horaires", "ouverture", "fermeture", "disponibilité"],
    "services": ["services", "offres", "solutions", "prestations"],
    "tarifs": ["tarifs", "prix", "coût", "abonnement"],
    "adresse": ["adresse", "localisation", "bureaux", "siège"],
}

# Phrases that signal an intent without naming it.
INTENT_TRIGGERS: Dict[str, List[str]] = {
    "contact": ["numéro de téléphone", "vous joindre", "vous appeler"],
    "tarifs": ["paiement", "payer"],
}

OUT_OF_CONTEXT_TITLE = "hors contexte"

_PHONE = re.compile(r"^\+?[\d\s()-]{7,}$")


@dataclass
class KnowledgeLookupResult:
    results: List[KnowledgeResult] = field(default_factory=list)
    matched_intent: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def has_relevant_knowledge(self) -> bool:
        return has_relevant_knowledge(self.results)


def has_relevant_knowledge(results: List[KnowledgeResult]) -> bool:
    """A top result counts unless it is the out-of-context sentinel entry."""
    return bool(results) and OUT_OF_CONTEXT_TITLE not in results[0].title.lower()


def match_intent(query: str) -> Optional[str]:
    normalized = (query or "").lower().strip()
    for intent in INTENT_KEYWORDS:
        if intent in normalized:
            return intent
    for intent, phrases in INTENT_TRIGGERS.items():
        if any(phrase in normalized for phrase in phrases):
            return intent
    return None


class KnowledgeLookup:
    """Runs the intent fast path and full-text fallback against a ``KnowledgeStore``."""

    def __init__(
        self,
        store: KnowledgeStore,
        timeout: float = 5.0,
        result_limit: int = 5,
        monitor: Optional[SafeMonitor] = None,
    ):
        self.store = store
        self.timeout = timeout
        self.result_limit = result_limit
        self.monitor = monitor or SafeMonitor()

    async def lookup(self, query: str) -> KnowledgeLookupResult:
        start = time.perf_counter()
        intent = match_intent(query)
        try:
            results = await self._with_timeout(self._search(query, intent))
        except ExternalLookupError as e:
            logger.error(f"Knowledge lookup failed for {query!r}: {e}")
            self.monitor.record_error("knowledge_search", "knowledge_lookup")
            return KnowledgeLookupResult(matched_intent=intent, success=False, error=str(e))

        duration = time.perf_counter() - start
        logger.info(
            f"Knowledge results for {query!r}: {len(results)} "
            f"(intent={intent}, top={[r.title for r in results[:2]]})"
        )
        return KnowledgeLookupResult(results=results, matched_intent=intent, duration_seconds=duration)

    async def _with_timeout(self, coro):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as e:
            raise ExternalLookupError("knowledge_search", f"timed out after {self.timeout}s", e) from e
        except Exception as e:
            raise ExternalLookupError("knowledge_search", str(e), e) from e

    async def _search(self, query: str, intent: Optional[str]) -> List[KnowledgeResult]:
        results: List[KnowledgeResult] = []
        if intent is not None:
            logger.debug(f"Intent fast path: {intent!r}")
            seen = set()
            for keyword in INTENT_KEYWORDS[intent]:
                for result in await self.store.search(keyword):
                    if result.title not in seen:
                        seen.add(result.title)
                        results.append(result)
                if len(results) >= self.result_limit:
                    break
            results = results[:self.result_limit]

            if not results:
                category = intent[0].upper() + intent[1:]
                results = list(await self.store.get_by_category(category))[:self.result_limit]

        if not results:
            results = list(await self.store.search(query))
        return results


def format_knowledge_answer(results: List[KnowledgeResult], brand_name: str = "SoukBot",
                            max_results: int = 3) -> str:
    """
    Render the top result by content kind (email, phone number, plain text)
    and list up to ``max_results - 1`` other titles.
    """
    if not results:
        return (
            "Je n'ai pas trouvé d'informations spécifiques sur ce sujet dans notre base de "
            f"connaissances sur {brand_name}. Pourriez-vous reformuler votre question ou me "
            "demander autre chose concernant notre entreprise ?"
        )

    best = results[0]
    if best.content.startswith("mailto:"):
        email = best.content[len("mailto:"):]
        answer = (
            f"**{best.title}**\n\nVous pouvez nous contacter par email à l'adresse suivante: {email}"
            "\n\nNotre équipe se fera un plaisir de vous répondre dans les plus brefs délais."
        )
    elif _PHONE.match(best.content):
        answer = (
            f"**{best.title}**\n\nVous pouvez nous joindre par téléphone au {best.content}"
            "\n\nNos conseillers sont disponibles pour répondre à vos questions."
        )
    else:
        answer = f"**{best.title}**\n\n{best.content}"

    others = results[1:max_results]
    if others:
        answer += "\n\n**Autres informations pertinentes :**"
        for result in others:
            answer += f"\n- {result.title}"
    return answer
