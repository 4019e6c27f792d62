"""
Chat service: the in-process API consumed by the route/UI layer.

- start_conversation(user_id)
- send_message(user_id, text)
- handle_image_upload(user_id, image)
- end_conversation(conversation_id)
- get_conversation_history(conversation_id)
- get_active_conversations()

Turns for the same user are serialized with a per-user lock. Each turn
works on a copy of the session which is stored only when the turn
completes, so a failed turn leaves the last good state in place.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from soukbot.classification.context_classifier import (
    ClassifierPolicy,
    ContextClassifier,
    out_of_scope_response,
)
from soukbot.classification.knowledge_lookup import KnowledgeLookup, format_knowledge_answer
from soukbot.classification.learning_store import LearningStore, create_learning_store
from soukbot.classification.semantic_scorer import (
    EmbeddingSemanticScorer,
    ReferenceCorpus,
    SemanticScorer,
    create_encoder,
)
from soukbot.core.config import SoukBotConfig, get_config
from soukbot.core.errors import ConversationNotFoundError, ExternalLookupError
from soukbot.data.stores import (
    ConversationStore,
    InMemoryConversationStore,
    InMemoryKnowledgeStore,
    InMemoryPartnerStore,
    KnowledgeStore,
    PartnerStore,
)
from soukbot.interview import messages
from soukbot.interview.dialogue import DialogueStateMachine
from soukbot.interview.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    Session,
    SessionLocks,
    SessionStore,
    Step,
)
from soukbot.recommendation.partner_search import PartnerSearchService
from soukbot.utils.logger import get_logger
from soukbot.utils.metrics import MetricsCollector, MonitoringSink, SafeMonitor
from soukbot.utils.result_cache import NAMESPACE_CONVERSATION, NAMESPACE_KNOWLEDGE, ResultCache
from soukbot.utils.structured_logger import StructuredLogger
from soukbot.vision.image_classifier import (
    ImageClassifierChain,
    ImageUpload,
    LabelDetectionBackend,
    LabelDetector,
    MetadataHintBackend,
)

logger = get_logger("core.chat_service")
events = StructuredLogger("chat_service")

ACTIVE_CONVERSATIONS_KEY = "active"
IMAGE_MESSAGE_MARKER = "📷 [image]"


class ContextValidationSummary(BaseModel):
    is_in_context: bool
    confidence: float = Field(..., ge=0, le=100)


class StartConversationResponse(BaseModel):
    conversation_id: str
    user_id: str
    initial_message: str
    quick_replies: List[str] = Field(default_factory=list)


class SendMessageResponse(BaseModel):
    conversation_id: Optional[str] = None
    reply: str
    is_out_of_context: bool = False
    context_validation: ContextValidationSummary
    quick_replies: List[str] = Field(default_factory=list)
    partners: List[Dict[str, Any]] = Field(default_factory=list)
    step: str = Step.WELCOME.value


class EndConversationResponse(BaseModel):
    conversation_id: str
    status: str
    end_time: Optional[str] = None
    duration_seconds: float = 0.0
    message_count: int = 0


class ConversationHistory(BaseModel):
    conversation_id: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)


def _history_key(conversation_id: str) -> str:
    return f"history:{conversation_id}"


class ChatService:
    """Orchestrates dialogue, classification, caching and storage for every turn."""

    def __init__(
        self,
        dialogue: DialogueStateMachine,
        classifier: ContextClassifier,
        image_classifier: ImageClassifierChain,
        session_store: SessionStore,
        conversation_store: ConversationStore,
        cache: ResultCache,
        monitor: SafeMonitor,
        config: Optional[SoukBotConfig] = None,
    ):
        self.dialogue = dialogue
        self.classifier = classifier
        self.image_classifier = image_classifier
        self.session_store = session_store
        self.conversation_store = conversation_store
        self.cache = cache
        self.monitor = monitor
        self.config = config or get_config()
        self.locks = SessionLocks()

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    async def start_conversation(self, user_id: str) -> StartConversationResponse:
        async with self.locks.for_user(user_id):
            try:
                session = await self._start(user_id)
            except Exception:
                logger.exception(f"Error starting conversation for user {user_id}")
                self.monitor.record_error("conversation_start", "chat_service")
                raise
        return StartConversationResponse(
            conversation_id=session.conversation_id,
            user_id=user_id,
            initial_message=messages.welcome_message(),
            quick_replies=list(messages.CATEGORY_BUTTONS),
        )

    async def _start(self, user_id: str) -> Session:
        # Caller holds the user's lock.
        record = await self.conversation_store.create(user_id)
        self.monitor.record_conversation_start()
        self.cache.set(NAMESPACE_CONVERSATION, record.id, {
            "user_id": user_id,
            "start_time": record.start_time.isoformat(),
            "message_count": 0,
        })
        self.cache.delete(NAMESPACE_CONVERSATION, ACTIVE_CONVERSATIONS_KEY)

        session = Session(user_id=user_id, country=self.config.default_country, conversation_id=record.id)
        await self.session_store.put(session)
        await self.conversation_store.add_message(record.id, messages.welcome_message(), "bot")
        logger.info(f"Conversation {record.id} started for user {user_id}")
        return session

    async def _current_session(self, user_id: str) -> Session:
        # Caller holds the user's lock.
        session = await self.session_store.get(user_id)
        if session is None or session.conversation_id is None:
            session = await self._start(user_id)
        return session

    async def end_conversation(self, conversation_id: str) -> EndConversationResponse:
        record = await self.conversation_store.find_by_id(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)

        async with self.locks.for_user(record.user_id):
            try:
                history = await self.conversation_store.get_messages(conversation_id)
                duration = (datetime.now(timezone.utc) - record.start_time).total_seconds()
                self.monitor.record_conversation_end(duration, len(history))
                status = await self.conversation_store.update_status(conversation_id, "closed") or {}

                self.cache.delete(NAMESPACE_CONVERSATION, conversation_id)
                self.cache.delete(NAMESPACE_CONVERSATION, _history_key(conversation_id))
                self.cache.delete(NAMESPACE_CONVERSATION, ACTIVE_CONVERSATIONS_KEY)

                session = await self.session_store.get(record.user_id)
                if session is not None and session.conversation_id == conversation_id:
                    session.conversation_id = None
                    session.step = Step.WELCOME
                    await self.session_store.put(session)
            except Exception:
                logger.exception(f"Error ending conversation {conversation_id}")
                self.monitor.record_error("conversation_end", "chat_service")
                raise

        logger.info(f"Conversation {conversation_id} closed after {duration:.1f}s, {len(history)} messages")
        return EndConversationResponse(
            conversation_id=conversation_id,
            status=status.get("status", "closed"),
            end_time=status.get("end_time"),
            duration_seconds=duration,
            message_count=len(history),
        )

    async def get_conversation_history(self, conversation_id: str) -> ConversationHistory:
        cached = self.cache.get(NAMESPACE_CONVERSATION, _history_key(conversation_id))
        if cached is not None:
            self.monitor.record_cache_hit(NAMESPACE_CONVERSATION)
            return ConversationHistory(conversation_id=conversation_id, messages=cached)

        self.monitor.record_cache_miss(NAMESPACE_CONVERSATION)
        record = await self.conversation_store.find_by_id(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        try:
            history = await self.conversation_store.get_messages(conversation_id)
        except Exception:
            logger.exception(f"Error getting history of conversation {conversation_id}")
            self.monitor.record_error("history_get", "chat_service")
            raise
        self.cache.set(NAMESPACE_CONVERSATION, _history_key(conversation_id), history)
        return ConversationHistory(conversation_id=conversation_id, messages=history)

    async def get_active_conversations(self) -> List[Dict[str, Any]]:
        cached = self.cache.get(NAMESPACE_CONVERSATION, ACTIVE_CONVERSATIONS_KEY)
        if cached is not None:
            self.monitor.record_cache_hit(NAMESPACE_CONVERSATION)
            return cached

        self.monitor.record_cache_miss(NAMESPACE_CONVERSATION)
        try:
            active = await self.conversation_store.get_active()
        except Exception:
            logger.exception("Error getting active conversations")
            self.monitor.record_error("active_conversations_get", "chat_service")
            raise
        self.cache.set(
            NAMESPACE_CONVERSATION,
            ACTIVE_CONVERSATIONS_KEY,
            active,
            ttl=self.config.cache_ttl_active_conversations,
        )
        return active

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(self, user_id: str, text: str) -> SendMessageResponse:
        async with self.locks.for_user(user_id):
            session: Optional[Session] = None
            try:
                session = await self._current_session(user_id)
                working = session.copy()
                await self._record_message(working.conversation_id, text, "user")
                response = await self._handle_turn(working, text)
                await self._record_message(working.conversation_id, response.reply, "bot")
                self._count_turn(working.conversation_id)
                await self.session_store.put(working)
            except Exception:
                snapshot = session.to_dict() if session is not None else None
                logger.exception(f"Turn failed for user {user_id}: query={text!r}, session={snapshot}")
                self.monitor.record_error("message_send", "chat_service")
                return SendMessageResponse(
                    conversation_id=session.conversation_id if session is not None else None,
                    reply=messages.INTERNAL_ERROR,
                    context_validation=ContextValidationSummary(is_in_context=True, confidence=0.0),
                    quick_replies=[messages.NEW_SEARCH],
                    step=session.step.value if session is not None else Step.WELCOME.value,
                )
        return response

    async def _handle_turn(self, session: Session, text: str) -> SendMessageResponse:
        if self.dialogue.handles(session, text):
            reply = await self.dialogue.handle(session, text)
            return SendMessageResponse(
                conversation_id=session.conversation_id,
                reply=reply.text,
                context_validation=ContextValidationSummary(is_in_context=True, confidence=100.0),
                quick_replies=reply.quick_replies,
                partners=reply.partners,
                step=session.step.value,
            )
        return await self._answer_free_text(session, text)

    async def _answer_free_text(self, session: Session, text: str) -> SendMessageResponse:
        conversation_id = session.conversation_id
        cache_key = ResultCache.make_knowledge_key(conversation_id, text)

        # Only accepted answers are ever cached, so a hit implies an earlier accept.
        cached = self.cache.get(NAMESPACE_KNOWLEDGE, cache_key)
        if cached is not None:
            self.monitor.record_cache_hit(NAMESPACE_KNOWLEDGE)
            self.monitor.record_knowledge_search(0.0, 1, True)
            events.info("cache_hit", "Knowledge answer served from cache", {"query": text})
            self.classifier.record_cached_answer(
                text, cached["confidence"], cached["knowledge_results"], cached["relevant"]
            )
            return self._free_text_response(session, cached["reply"], False, True, cached["confidence"])
        self.monitor.record_cache_miss(NAMESPACE_KNOWLEDGE)

        try:
            classification = await self.classifier.classify(text)
        except ExternalLookupError as e:
            logger.error(f"Context validation unavailable for {text!r}: {e}")
            return self._free_text_response(session, messages.KNOWLEDGE_UNAVAILABLE, False, False, 0.0)

        validation = classification.validation
        if validation.is_definitely_out_of_context:
            self.monitor.record_out_of_context_query(text)
            events.warning("out_of_context", "Out-of-context query rejected", {
                "query": text,
                "confidence": validation.confidence,
                "reasons": validation.rejection_reasons,
            })
            reply = out_of_scope_response(text, self.config.brand_name)
            return self._free_text_response(session, reply, True, False, validation.confidence)

        knowledge = classification.knowledge
        if not knowledge.success:
            return self._free_text_response(
                session, messages.KNOWLEDGE_UNAVAILABLE, False, True, validation.confidence
            )

        self.monitor.record_knowledge_search(knowledge.duration_seconds, len(knowledge.results), False)
        reply = format_knowledge_answer(
            knowledge.results, self.config.brand_name, self.config.max_knowledge_results
        )
        self.cache.set(NAMESPACE_KNOWLEDGE, cache_key, {
            "reply": reply,
            "confidence": validation.confidence,
            "knowledge_results": len(knowledge.results),
            "relevant": knowledge.has_relevant_knowledge,
        })
        return self._free_text_response(session, reply, False, True, validation.confidence)

    def _free_text_response(self, session: Session, reply: str, out_of_context: bool,
                            in_context: bool, confidence: float) -> SendMessageResponse:
        return SendMessageResponse(
            conversation_id=session.conversation_id,
            reply=reply,
            is_out_of_context=out_of_context,
            context_validation=ContextValidationSummary(is_in_context=in_context, confidence=confidence),
            step=session.step.value,
        )

    async def handle_image_upload(
        self,
        user_id: str,
        image: Union[bytes, str],
        filename: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> str:
        """Detect the product type from an image and move the interview accordingly."""
        async with self.locks.for_user(user_id):
            session: Optional[Session] = None
            try:
                session = await self._current_session(user_id)
                working = session.copy()
                try:
                    upload = ImageUpload.from_payload(image, filename=filename, caption=caption)
                except ValueError as e:
                    logger.warning(f"Rejected image upload from user {user_id}: {e}")
                    analysis = None
                else:
                    analysis = await self.image_classifier.classify(upload)

                if analysis is not None and analysis.success:
                    working.product_type = analysis.product_type
                    working.step = Step.BUDGET
                    reply = messages.image_success(analysis.product_type, analysis.confidence)
                else:
                    working.step = Step.PRODUCT_TYPE
                    reply = messages.image_failure()

                await self._record_message(working.conversation_id, IMAGE_MESSAGE_MARKER, "user")
                await self._record_message(working.conversation_id, reply, "bot")
                self._count_turn(working.conversation_id)
                await self.session_store.put(working)
            except Exception:
                snapshot = session.to_dict() if session is not None else None
                logger.exception(f"Image analysis turn failed for user {user_id}, session={snapshot}")
                self.monitor.record_error("image_upload", "chat_service")
                return f"❌ Erreur lors de l'analyse de l'image. {messages.PRODUCT_TYPE_QUESTION}"
        return reply

    async def _record_message(self, conversation_id: str, content: str, sender_type: str) -> None:
        await self.conversation_store.add_message(conversation_id, content, sender_type)
        self.cache.delete(NAMESPACE_CONVERSATION, _history_key(conversation_id))

    def _count_turn(self, conversation_id: str) -> None:
        entry = self.cache.get(NAMESPACE_CONVERSATION, conversation_id)
        if entry is not None:
            entry["message_count"] += 2
            self.cache.set(NAMESPACE_CONVERSATION, conversation_id, entry)

    # ------------------------------------------------------------------
    # Catalogue and stats
    # ------------------------------------------------------------------

    async def get_available_cities(self) -> List[Dict[str, str]]:
        return await self.dialogue.search_service.available_cities()

    async def get_available_product_types(self) -> List[str]:
        return await self.dialogue.search_service.available_product_types()

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "cache": dict(self.cache.stats),
            "learning": self.classifier.learning_store.stats(),
        }
        summary = getattr(self.monitor.sink, "get_summary", None)
        if callable(summary):
            stats["metrics"] = summary()
        return stats


def create_session_store(config: SoukBotConfig) -> SessionStore:
    if config.session_backend == "memory":
        return InMemorySessionStore()
    if config.session_backend == "redis":
        return RedisSessionStore(redis_url=config.redis_url, ttl=config.session_ttl)
    raise ValueError(f"Unknown session backend: {config.session_backend}")


def create_chat_service(
    config: Optional[SoukBotConfig] = None,
    *,
    partner_store: Optional[PartnerStore] = None,
    knowledge_store: Optional[KnowledgeStore] = None,
    conversation_store: Optional[ConversationStore] = None,
    session_store: Optional[SessionStore] = None,
    scorer: Optional[SemanticScorer] = None,
    learning_store: Optional[LearningStore] = None,
    label_detector: Optional[LabelDetector] = None,
    monitoring_sink: Optional[MonitoringSink] = None,
    cache: Optional[ResultCache] = None,
) -> ChatService:
    """
    Build a ChatService and its collaborators once, at process start.

    Anything not passed in is built from the configuration: YAML-seeded
    in-memory stores, the embedding scorer, the configured session backend.
    """
    config = config or get_config()
    monitor = SafeMonitor(monitoring_sink if monitoring_sink is not None else MetricsCollector())
    cache = cache or ResultCache(policies=config.cache_policies())

    partner_store = partner_store or InMemoryPartnerStore.from_yaml(config.resolve_path(config.partners_file))
    knowledge_store = knowledge_store or InMemoryKnowledgeStore.from_yaml(
        config.resolve_path(config.knowledge_file)
    )
    conversation_store = conversation_store or InMemoryConversationStore()
    session_store = session_store or create_session_store(config)

    if scorer is None:
        scorer = EmbeddingSemanticScorer(
            ReferenceCorpus.from_yaml(config.resolve_path(config.reference_questions_file)),
            encoder=create_encoder(config.semantic_encoder, config.semantic_model),
            in_context_threshold=config.in_context_threshold,
            max_core_concepts=config.max_core_concepts,
            max_relevant_questions=config.max_relevant_questions,
            max_irrelevant_questions=config.max_irrelevant_questions,
        )
    learning_store = learning_store or create_learning_store(
        config.learning_policy,
        max_records=config.learning_max_records,
        bias_step=config.learning_bias_step,
        max_bias=config.learning_max_bias,
    )

    search_service = PartnerSearchService(partner_store, cache, monitor, timeout=config.partner_timeout)
    dialogue = DialogueStateMachine(
        search_service,
        no_limit_budget=config.no_limit_budget,
        max_partners_displayed=config.max_partners_displayed,
    )
    knowledge_lookup = KnowledgeLookup(
        knowledge_store,
        timeout=config.knowledge_timeout,
        result_limit=config.intent_result_limit,
        monitor=monitor,
    )
    classifier = ContextClassifier(
        scorer,
        knowledge_lookup,
        learning_store,
        policy=ClassifierPolicy.from_config(config),
        timeout=config.context_validation_timeout,
        monitor=monitor,
    )
    image_classifier = ImageClassifierChain(
        [LabelDetectionBackend(label_detector), MetadataHintBackend()],
        timeout=config.image_analysis_timeout,
    )
    return ChatService(
        dialogue=dialogue,
        classifier=classifier,
        image_classifier=image_classifier,
        session_store=session_store,
        conversation_store=conversation_store,
        cache=cache,
        monitor=monitor,
        config=config,
    )
