"""
Configuration management for SoukBot.

Loads settings from YAML config file and provides typed access.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of soukbot package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"

DEFAULT_GENERAL_KEYWORDS = [
    "capitale", "président", "premier ministre", "météo", "recette",
    "population", "géographie", "histoire de", "football", "match",
    "élection", "politique", "film", "chanson", "blague",
]

DEFAULT_OFF_TOPIC_TERMS = ["capitale", "pays"]


@dataclass
class SoukBotConfig:
    """Configuration for the chat core."""

    # Product identity
    brand_name: str = "SoukBot"
    default_country: str = "Maroc"
    no_limit_budget: int = 999999

    # Cache TTLs (seconds) and max entries per namespace
    cache_ttl_conversation: int = 86400
    cache_ttl_knowledge: int = 1800
    cache_ttl_partner_search: int = 600
    cache_ttl_active_conversations: int = 60
    cache_max_conversation: int = 1000
    cache_max_knowledge: int = 500
    cache_max_partner_search: int = 200

    # Context validation
    in_context_threshold: float = 0.3        # similarity needed to be in context
    irrelevant_threshold: float = 0.4        # irrelevant_similarity * weight above this rejects
    low_confidence_cutoff: float = 30.0      # confidence (0-100) below this needs knowledge corroboration
    irrelevant_weight: float = 0.6
    max_core_concepts: int = 3
    max_relevant_questions: int = 5
    max_irrelevant_questions: int = 3
    general_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_GENERAL_KEYWORDS))
    off_topic_terms: List[str] = field(default_factory=lambda: list(DEFAULT_OFF_TOPIC_TERMS))
    semantic_encoder: str = "hashing"        # "hashing" or "sentence_transformers"
    semantic_model: str = "paraphrase-multilingual-MiniLM-L12-v2"

    # Search
    max_knowledge_results: int = 3
    intent_result_limit: int = 5
    max_partners_displayed: int = 3
    knowledge_timeout: float = 5.0
    partner_timeout: float = 3.0
    context_validation_timeout: float = 2.0
    image_analysis_timeout: float = 10.0

    # Learning feedback
    learning_policy: str = "none"            # "none" or "frequency_bias"
    learning_max_records: int = 10000
    learning_bias_step: float = 5.0
    learning_max_bias: float = 15.0

    # Session storage
    session_backend: str = "memory"          # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    session_ttl: int = 86400

    # Data files (relative to project root)
    partners_file: str = "config/partners.yaml"
    knowledge_file: str = "config/knowledge.yaml"
    reference_questions_file: str = "config/reference_questions.yaml"

    def resolve_path(self, relative: str) -> Path:
        """Resolve a data file path against the project root."""
        path = Path(relative)
        return path if path.is_absolute() else _project_root() / path

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "SoukBotConfig":
        """Load configuration from YAML file."""
        path = config_path or DEFAULT_CONFIG_PATH
        if not path.exists():
            return cls()

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        bot_config = data.get('soukbot', {})
        cache_config = data.get('cache', {})
        validation_config = data.get('context_validation', {})
        search_config = data.get('search', {})
        learning_config = data.get('learning', {})
        session_config = data.get('session', {})
        data_config = data.get('data', {})

        ttl = cache_config.get('ttl', {})
        max_size = cache_config.get('max_size', {})
        thresholds = validation_config.get('thresholds', {})
        comparisons = validation_config.get('max_comparisons', {})
        max_results = search_config.get('max_results', {})
        timeout = search_config.get('timeout', {})

        defaults = cls()
        return cls(
            brand_name=bot_config.get('brand_name', defaults.brand_name),
            default_country=bot_config.get('default_country', defaults.default_country),
            no_limit_budget=bot_config.get('no_limit_budget', defaults.no_limit_budget),
            cache_ttl_conversation=ttl.get('conversation', defaults.cache_ttl_conversation),
            cache_ttl_knowledge=ttl.get('knowledge', defaults.cache_ttl_knowledge),
            cache_ttl_partner_search=ttl.get('partner_search', defaults.cache_ttl_partner_search),
            cache_ttl_active_conversations=ttl.get('active_conversations', defaults.cache_ttl_active_conversations),
            cache_max_conversation=max_size.get('conversation', defaults.cache_max_conversation),
            cache_max_knowledge=max_size.get('knowledge', defaults.cache_max_knowledge),
            cache_max_partner_search=max_size.get('partner_search', defaults.cache_max_partner_search),
            in_context_threshold=thresholds.get('in_context', defaults.in_context_threshold),
            irrelevant_threshold=thresholds.get('irrelevant', defaults.irrelevant_threshold),
            low_confidence_cutoff=validation_config.get('low_confidence_cutoff', defaults.low_confidence_cutoff),
            irrelevant_weight=validation_config.get('irrelevant_weight', defaults.irrelevant_weight),
            max_core_concepts=comparisons.get('core_concepts', defaults.max_core_concepts),
            max_relevant_questions=comparisons.get('relevant_questions', defaults.max_relevant_questions),
            max_irrelevant_questions=comparisons.get('irrelevant_questions', defaults.max_irrelevant_questions),
            general_keywords=validation_config.get('general_keywords', defaults.general_keywords),
            off_topic_terms=validation_config.get('off_topic_terms', defaults.off_topic_terms),
            semantic_encoder=validation_config.get('encoder', defaults.semantic_encoder),
            semantic_model=validation_config.get('model', defaults.semantic_model),
            max_knowledge_results=max_results.get('knowledge', defaults.max_knowledge_results),
            intent_result_limit=search_config.get('intent_result_limit', defaults.intent_result_limit),
            max_partners_displayed=max_results.get('partners', defaults.max_partners_displayed),
            knowledge_timeout=timeout.get('knowledge', defaults.knowledge_timeout),
            partner_timeout=timeout.get('partners', defaults.partner_timeout),
            context_validation_timeout=timeout.get('context_validation', defaults.context_validation_timeout),
            image_analysis_timeout=timeout.get('image_analysis', defaults.image_analysis_timeout),
            learning_policy=learning_config.get('policy', defaults.learning_policy),
            learning_max_records=learning_config.get('max_records', defaults.learning_max_records),
            learning_bias_step=learning_config.get('bias_step', defaults.learning_bias_step),
            learning_max_bias=learning_config.get('max_bias', defaults.learning_max_bias),
            session_backend=session_config.get('backend', defaults.session_backend),
            redis_url=os.getenv('REDIS_URL', session_config.get('redis_url', defaults.redis_url)),
            session_ttl=session_config.get('ttl', defaults.session_ttl),
            partners_file=data_config.get('partners_file', defaults.partners_file),
            knowledge_file=data_config.get('knowledge_file', defaults.knowledge_file),
            reference_questions_file=data_config.get('reference_questions_file', defaults.reference_questions_file),
        )

    def cache_policies(self) -> Dict[str, Any]:
        """Namespace policies for ResultCache."""
        from soukbot.utils.result_cache import (
            NamespacePolicy,
            NAMESPACE_CONVERSATION,
            NAMESPACE_KNOWLEDGE,
            NAMESPACE_PARTNER_SEARCH,
        )
        return {
            NAMESPACE_CONVERSATION: NamespacePolicy(self.cache_ttl_conversation, self.cache_max_conversation),
            NAMESPACE_KNOWLEDGE: NamespacePolicy(self.cache_ttl_knowledge, self.cache_max_knowledge),
            NAMESPACE_PARTNER_SEARCH: NamespacePolicy(self.cache_ttl_partner_search, self.cache_max_partner_search),
        }


# Global config instance
_config: Optional[SoukBotConfig] = None


def get_config() -> SoukBotConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SoukBotConfig.from_yaml()
    return _config


def set_config(config: SoukBotConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
