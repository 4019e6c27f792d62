"""
Semantic scorer: how close is a query to what SoukBot talks about?

The query is embedded and compared (cosine) against three reference sets:
- core concepts and relevant questions -> similarity, best match
- irrelevant questions                 -> irrelevant similarity

Each set is capped by the max-comparison settings. Encoders are pluggable:
- HashingEncoder: character n-gram hashing into a fixed numpy vector,
  deterministic and dependency-free beyond numpy
- SentenceTransformerEncoder: multilingual sentence embeddings, loaded lazily
  (install the ``embeddings`` extra)
"""
import asyncio
import unicodedata
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np
import yaml

from soukbot.utils.logger import get_logger

logger = get_logger("classification.semantic_scorer")

DEFAULT_SENTENCE_MODEL = "paraphrase-multilingual-MiniLM-L12-v2"


@dataclass
class SemanticScore:
    """Scorer output; similarities are in [0, 1]."""
    similarity: float
    best_match: Optional[str]
    irrelevant_similarity: float
    is_in_context: bool
    top_irrelevant_matches: List[str] = field(default_factory=list)


class SemanticScorer(Protocol):
    async def score(self, query: str) -> SemanticScore: ...


class TextEncoder(Protocol):
    def encode(self, texts: List[str]) -> np.ndarray: ...


# ----------------------------------------------------------------------
# Encoders
# ----------------------------------------------------------------------

def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _l2_normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class HashingEncoder:
    """Bag of character n-grams hashed into ``dimensions`` buckets (crc32, so stable across runs)."""

    def __init__(self, dimensions: int = 2048, ngram: int = 3):
        self.dimensions = dimensions
        self.ngram = ngram

    def encode(self, texts: List[str]) -> np.ndarray:
        matrix = np.zeros((len(texts), self.dimensions), dtype=np.float32)
        for row, text in enumerate(texts):
            padded = f" {' '.join(_fold(text).split())} "
            for i in range(max(len(padded) - self.ngram + 1, 0)):
                gram = padded[i:i + self.ngram]
                matrix[row, zlib.crc32(gram.encode("utf-8")) % self.dimensions] += 1.0
        return _l2_normalize(matrix)


class SentenceTransformerEncoder:
    """Sentence-transformers encoder, model loaded on first use."""

    def __init__(self, model_name: str = DEFAULT_SENTENCE_MODEL):
        self.model_name = model_name
        self._encoder = None

    def _get_encoder(self):
        if self._encoder is None:
            from sentence_transformers import SentenceTransformer
            logger.info(f"Loading sentence transformer: {self.model_name}")
            self._encoder = SentenceTransformer(self.model_name)
        return self._encoder

    def encode(self, texts: List[str]) -> np.ndarray:
        embeddings = self._get_encoder().encode(texts, convert_to_numpy=True, show_progress_bar=False)
        return _l2_normalize(np.asarray(embeddings, dtype=np.float32))


def create_encoder(name: str = "hashing", model_name: str = DEFAULT_SENTENCE_MODEL) -> TextEncoder:
    if name == "hashing":
        return HashingEncoder()
    if name == "sentence_transformers":
        return SentenceTransformerEncoder(model_name)
    raise ValueError(f"Unknown semantic encoder: {name}")


# ----------------------------------------------------------------------
# Reference corpus
# ----------------------------------------------------------------------

@dataclass
class ReferenceCorpus:
    core_concepts: List[str] = field(default_factory=list)
    relevant_questions: List[str] = field(default_factory=list)
    irrelevant_questions: List[str] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Path) -> "ReferenceCorpus":
        if not path.exists():
            raise FileNotFoundError(f"Reference questions not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(
            core_concepts=list(data.get("core_concepts", [])),
            relevant_questions=list(data.get("relevant_questions", [])),
            irrelevant_questions=list(data.get("irrelevant_questions", [])),
        )


class EmbeddingSemanticScorer:
    """
    Cosine similarity against the reference corpus.

    A query is in context when its best relevant similarity reaches
    ``in_context_threshold`` and is not beaten by the closest irrelevant
    question.
    """

    def __init__(
        self,
        corpus: ReferenceCorpus,
        encoder: Optional[TextEncoder] = None,
        in_context_threshold: float = 0.3,
        max_core_concepts: int = 3,
        max_relevant_questions: int = 5,
        max_irrelevant_questions: int = 3,
    ):
        self.encoder = encoder or HashingEncoder()
        self.in_context_threshold = in_context_threshold
        self.relevant_texts = (
            corpus.core_concepts[:max_core_concepts] + corpus.relevant_questions[:max_relevant_questions]
        )
        self.irrelevant_texts = corpus.irrelevant_questions[:max_irrelevant_questions]
        self._relevant_matrix: Optional[np.ndarray] = None
        self._irrelevant_matrix: Optional[np.ndarray] = None
        self._indexed = False

    def _ensure_index(self) -> None:
        if self._indexed:
            return
        if self.relevant_texts:
            self._relevant_matrix = self.encoder.encode(self.relevant_texts)
        if self.irrelevant_texts:
            self._irrelevant_matrix = self.encoder.encode(self.irrelevant_texts)
        self._indexed = True
        logger.info(
            f"Semantic index ready: {len(self.relevant_texts)} relevant, "
            f"{len(self.irrelevant_texts)} irrelevant references"
        )

    def score_sync(self, query: str) -> SemanticScore:
        self._ensure_index()
        vector = self.encoder.encode([query])[0]

        similarity, best_match = 0.0, None
        if self.relevant_texts:
            sims = self._relevant_matrix @ vector
            best = int(np.argmax(sims))
            similarity, best_match = float(max(sims[best], 0.0)), self.relevant_texts[best]

        irrelevant_similarity, top_irrelevant = 0.0, []
        if self.irrelevant_texts:
            sims = self._irrelevant_matrix @ vector
            order = np.argsort(-sims)
            irrelevant_similarity = float(max(sims[order[0]], 0.0))
            top_irrelevant = [self.irrelevant_texts[i] for i in order[:3]]

        similarity = min(similarity, 1.0)
        irrelevant_similarity = min(irrelevant_similarity, 1.0)
        return SemanticScore(
            similarity=similarity,
            best_match=best_match,
            irrelevant_similarity=irrelevant_similarity,
            is_in_context=similarity >= self.in_context_threshold and similarity >= irrelevant_similarity,
            top_irrelevant_matches=top_irrelevant,
        )

    async def score(self, query: str) -> SemanticScore:
        return await asyncio.to_thread(self.score_sync, query)
