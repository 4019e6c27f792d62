"""
Shopping interview state machine.

    welcome -> product_type -> budget -> location -> search -> welcome

``search`` is transient: the location step runs the partner search and the
session is back on ``welcome`` before the turn ends. A failed extraction
keeps the current step and re-prompts. An unknown step resets to welcome.

The machine mutates the session it is given; callers pass a working copy
and only store it once the turn succeeds.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from soukbot.classification.knowledge_lookup import match_intent
from soukbot.core.errors import SlotValidationError
from soukbot.interview import messages
from soukbot.interview.session_store import Session, Step
from soukbot.interview.slot_extractor import (
    NO_LIMIT_BUDGET,
    extract_budget,
    extract_city,
    extract_product_type,
)
from soukbot.recommendation.partner_search import (
    PartnerSearchService,
    SearchCriteria,
    SearchOutcome,
    Suggestion,
    apply_suggestion,
    format_partners_for_display,
    generate_search_suggestions,
    match_suggestion_action,
    validate_search_criteria,
)
from soukbot.utils.logger import get_logger

logger = get_logger("interview.dialogue")

MID_FLOW_STEPS = (Step.PRODUCT_TYPE, Step.BUDGET, Step.LOCATION)


@dataclass
class DialogueReply:
    text: str
    quick_replies: List[str] = field(default_factory=list)
    partners: List[Dict[str, Any]] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    search_failed: bool = False


def is_restart_command(text: str) -> bool:
    normalized = (text or "").strip().lower()
    return any(normalized == command.lower() for command in messages.RESTART_COMMANDS)


class DialogueStateMachine:
    """Drives slot filling for one session per call."""

    def __init__(
        self,
        search_service: PartnerSearchService,
        no_limit_budget: int = NO_LIMIT_BUDGET,
        max_partners_displayed: int = 3,
    ):
        self.search_service = search_service
        self.no_limit_budget = no_limit_budget
        self.max_partners_displayed = max_partners_displayed
        self._handlers = {
            Step.WELCOME: self._on_product_type,
            Step.PRODUCT_TYPE: self._on_product_type,
            Step.BUDGET: self._on_budget,
            Step.LOCATION: self._on_location,
        }

    def handles(self, session: Session, text: str) -> bool:
        """True when this message belongs to the interview rather than to free-form Q&A."""
        if session.step in MID_FLOW_STEPS or is_restart_command(text):
            return True
        if session.last_criteria and match_suggestion_action(text):
            return True
        if match_intent(text) is not None:
            return False
        return extract_product_type(text) is not None

    async def handle(self, session: Session, text: str) -> DialogueReply:
        if is_restart_command(text):
            session.clear_slots()
            session.step = Step.PRODUCT_TYPE
            return DialogueReply(messages.PRODUCT_TYPE_QUESTION, list(messages.CATEGORY_BUTTONS))

        action = match_suggestion_action(text)
        if action and session.last_criteria:
            return await self._act_on_suggestion(session, action)

        handler = self._handlers.get(session.step)
        if handler is None:
            logger.warning(f"Unexpected step {session.step!r} for user {session.user_id}, resetting")
            session.step = Step.WELCOME
            return DialogueReply(messages.welcome_message(), list(messages.CATEGORY_BUTTONS))
        return await handler(session, text)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _on_product_type(self, session: Session, text: str) -> DialogueReply:
        product_type = extract_product_type(text)
        if product_type is None:
            return DialogueReply(messages.product_type_reprompt(), list(messages.CATEGORY_BUTTONS))
        session.product_type = product_type
        session.step = Step.BUDGET
        return DialogueReply(messages.product_type_accepted(product_type), list(messages.BUDGET_BUTTONS))

    async def _on_budget(self, session: Session, text: str) -> DialogueReply:
        budget = extract_budget(text, self.no_limit_budget)
        if budget is None:
            return DialogueReply(messages.budget_reprompt(), list(messages.BUDGET_BUTTONS))
        try:
            session.set_budget(budget)
        except SlotValidationError as e:
            logger.info(f"Rejected budget {budget} for user {session.user_id}: {e}")
            return DialogueReply(messages.budget_invalid(e.errors), list(messages.BUDGET_BUTTONS))
        session.step = Step.LOCATION
        return DialogueReply(
            messages.budget_accepted(session.budget_min, session.budget_max, self.no_limit_budget),
            list(messages.CITY_BUTTONS),
        )

    async def _on_location(self, session: Session, text: str) -> DialogueReply:
        location = extract_city(text)
        if not location.is_provided:
            return DialogueReply(messages.location_reprompt(), list(messages.CITY_BUTTONS))
        session.set_location(location)
        session.step = Step.SEARCH
        try:
            return await self._search(session, SearchCriteria.from_dict(session.search_criteria()))
        finally:
            session.step = Step.WELCOME

    async def _act_on_suggestion(self, session: Session, action: str) -> DialogueReply:
        previous = SearchCriteria.from_dict(session.last_criteria)
        widened = apply_suggestion(previous, action, self.no_limit_budget)
        if widened is None:
            return DialogueReply(
                "🤔 Je ne peux pas élargir davantage cette recherche. Voulez-vous en commencer une nouvelle ?",
                [messages.NEW_SEARCH],
            )
        session.product_type = widened.product_type
        session.budget_min = widened.budget_min
        session.budget_max = widened.budget_max
        session.city = widened.city
        session.nationwide = widened.city is None
        session.step = Step.SEARCH
        try:
            return await self._search(session, widened)
        finally:
            session.step = Step.WELCOME

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _search(self, session: Session, criteria: SearchCriteria) -> DialogueReply:
        errors = validate_search_criteria(criteria)
        if errors:
            return DialogueReply(messages.budget_invalid(errors), list(messages.BUDGET_BUTTONS))

        outcome = await self.search_service.search(criteria)
        session.last_criteria = criteria.to_dict()
        if not outcome.success:
            return DialogueReply(messages.SEARCH_ERROR, [messages.NEW_SEARCH], search_failed=True)
        if outcome.count == 0:
            return self._no_results_reply(criteria)
        return self._results_reply(criteria, outcome)

    def _no_results_reply(self, criteria: SearchCriteria) -> DialogueReply:
        suggestions = generate_search_suggestions(criteria, 0)
        budget = messages.format_budget(criteria.budget_min, criteria.budget_max, self.no_limit_budget)
        text = messages.no_results(criteria.product_type, budget, criteria.city)
        for suggestion in suggestions:
            text += f"\n• {suggestion.text}"
            if suggestion.action == "similar_products" and suggestion.product_types:
                text += f" ({', '.join(suggestion.product_types)})"
        quick_replies = [s.text for s in suggestions] + [messages.NEW_SEARCH]
        return DialogueReply(text, quick_replies, suggestions=suggestions)

    def _results_reply(self, criteria: SearchCriteria, outcome: SearchOutcome) -> DialogueReply:
        displayed = format_partners_for_display(outcome.partners)
        text = messages.results_header(outcome.count)
        for index, partner in enumerate(displayed[:self.max_partners_displayed], start=1):
            text += f"{index}. {partner['display_text']}\n\n"
        if outcome.count > self.max_partners_displayed:
            text += messages.more_partners(outcome.count - self.max_partners_displayed)
        text += messages.RESULTS_FOOTER

        suggestions = generate_search_suggestions(criteria, outcome.count)
        quick_replies = [s.text for s in suggestions] + [messages.NEW_SEARCH, messages.MODIFY_SEARCH]
        return DialogueReply(text, quick_replies, partners=displayed, suggestions=suggestions)

