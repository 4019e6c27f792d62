"""
Storage collaborators consumed by the chat core.

The core only depends on the three protocols below. The in-memory
implementations back local runs and tests; they are seeded from the YAML
files under ``config/`` the same way the catalogue scripts seed SQLite.
"""
from __future__ import annotations

import re
import unicodedata
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import yaml

from soukbot.utils.logger import get_logger

logger = get_logger("data.stores")


# ----------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PartnerRecord:
    """A partner shop. Read-only from the core's point of view."""
    id: int
    name: str
    website: str
    city: str
    country: str
    lat: Optional[float]
    lng: Optional[float]
    product_types: Tuple[str, ...]
    price_min: float
    price_max: float
    description: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PartnerRecord":
        return cls(
            id=d["id"],
            name=d["name"],
            website=d.get("website", ""),
            city=d.get("city", ""),
            country=d.get("country", ""),
            lat=d.get("lat"),
            lng=d.get("lng"),
            product_types=tuple(d.get("product_types", [])),
            price_min=d.get("price_min", 0),
            price_max=d.get("price_max", 999999),
            description=d.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "website": self.website,
            "city": self.city,
            "country": self.country,
            "lat": self.lat,
            "lng": self.lng,
            "product_types": list(self.product_types),
            "price_min": self.price_min,
            "price_max": self.price_max,
            "description": self.description,
        }


@dataclass(frozen=True)
class KnowledgeResult:
    """One knowledge-base hit."""
    title: str
    content: str
    category: Optional[str] = None


@dataclass
class ConversationRecord:
    """A stored conversation with its messages."""
    id: str
    user_id: str
    status: str = "active"
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "message_count": len(self.messages),
        }


# ----------------------------------------------------------------------
# Protocols
# ----------------------------------------------------------------------

class KnowledgeStore(Protocol):
    async def search(self, text: str) -> List[KnowledgeResult]: ...

    async def get_by_category(self, name: str) -> List[KnowledgeResult]: ...


class PartnerStore(Protocol):
    async def search_partners(self, criteria: Dict[str, Any]) -> List[PartnerRecord]: ...

    async def get_cities(self) -> List[Dict[str, str]]: ...

    async def get_product_types(self) -> List[str]: ...


class ConversationStore(Protocol):
    async def create(self, user_id: str) -> ConversationRecord: ...

    async def find_by_id(self, conversation_id: str) -> Optional[ConversationRecord]: ...

    async def add_message(self, conversation_id: str, content: str, sender_type: str) -> Dict[str, Any]: ...

    async def get_messages(self, conversation_id: str) -> List[Dict[str, Any]]: ...

    async def update_status(self, conversation_id: str, status: str) -> Optional[Dict[str, Any]]: ...

    async def get_active(self) -> List[Dict[str, Any]]: ...


# ----------------------------------------------------------------------
# In-memory implementations
# ----------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class InMemoryPartnerStore:
    """Partner catalogue held in a list; filters by country only, like a coarse SQL prefilter."""

    def __init__(self, partners: Optional[List[PartnerRecord]] = None):
        self.partners: List[PartnerRecord] = list(partners or [])

    @classmethod
    def from_yaml(cls, path: Path) -> "InMemoryPartnerStore":
        data = _load_yaml(path)
        partners = [PartnerRecord.from_dict(p) for p in data.get("partners", [])]
        logger.info(f"Loaded {len(partners)} partners from {path}")
        return cls(partners)

    async def search_partners(self, criteria: Dict[str, Any]) -> List[PartnerRecord]:
        country = (criteria.get("country") or "").lower()
        if not country:
            return list(self.partners)
        return [p for p in self.partners if p.country.lower() == country]

    async def get_cities(self) -> List[Dict[str, str]]:
        pairs = sorted({(p.country, p.city) for p in self.partners})
        return [{"city": city, "country": country} for country, city in pairs]

    async def get_product_types(self) -> List[str]:
        return sorted({t for p in self.partners for t in p.product_types})


_STOPWORDS = {
    "les", "des", "une", "est", "sont", "vos", "votre", "pour", "avec", "dans",
    "que", "qui", "quel", "quelle", "quels", "quelles", "comment", "sur", "par",
    "pas", "mon", "mes", "nous", "vous", "the",
}
_WORD = re.compile(r"[\w'-]+", re.UNICODE)


def _fold(text: str) -> str:
    """Lowercase and strip accents for tolerant matching."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _terms(text: str) -> List[str]:
    return [w for w in _WORD.findall(_fold(text)) if len(w) > 2 and w not in _STOPWORDS]


class InMemoryKnowledgeStore:
    """Keyword search over a small list of knowledge entries."""

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None):
        self.entries = list(entries or [])
        self._haystacks = [
            _fold(" ".join([e.get("title", ""), e.get("content", ""), " ".join(e.get("keywords", []))]))
            for e in self.entries
        ]

    @classmethod
    def from_yaml(cls, path: Path) -> "InMemoryKnowledgeStore":
        data = _load_yaml(path)
        entries = data.get("entries", [])
        logger.info(f"Loaded {len(entries)} knowledge entries from {path}")
        return cls(entries)

    @staticmethod
    def _to_result(entry: Dict[str, Any]) -> KnowledgeResult:
        return KnowledgeResult(
            title=entry.get("title", ""),
            content=entry.get("content", ""),
            category=entry.get("category"),
        )

    async def search(self, text: str) -> List[KnowledgeResult]:
        terms = _terms(text)
        if not terms:
            return []
        scored = []
        for position, haystack in enumerate(self._haystacks):
            hits = sum(1 for term in terms if term in haystack)
            if hits:
                scored.append((-hits, position))
        scored.sort()
        return [self._to_result(self.entries[position]) for _, position in scored]

    async def get_by_category(self, name: str) -> List[KnowledgeResult]:
        wanted = _fold(name)
        return [self._to_result(e) for e in self.entries if _fold(e.get("category") or "") == wanted]


class InMemoryConversationStore:
    """Conversations and their messages, kept for the process lifetime."""

    def __init__(self):
        self.conversations: Dict[str, ConversationRecord] = {}

    async def create(self, user_id: str) -> ConversationRecord:
        record = ConversationRecord(id=str(uuid.uuid4()), user_id=user_id)
        self.conversations[record.id] = record
        return record

    async def find_by_id(self, conversation_id: str) -> Optional[ConversationRecord]:
        return self.conversations.get(conversation_id)

    async def add_message(self, conversation_id: str, content: str, sender_type: str) -> Dict[str, Any]:
        record = self.conversations.get(conversation_id)
        if record is None:
            raise KeyError(conversation_id)
        message = {
            "id": len(record.messages) + 1,
            "content": content,
            "sender_type": sender_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        record.messages.append(message)
        return message

    async def get_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        record = self.conversations.get(conversation_id)
        return list(record.messages) if record else []

    async def update_status(self, conversation_id: str, status: str) -> Optional[Dict[str, Any]]:
        record = self.conversations.get(conversation_id)
        if record is None:
            return None
        record.status = status
        if status == "closed":
            record.end_time = datetime.now(timezone.utc)
        return {
            "id": record.id,
            "status": record.status,
            "end_time": record.end_time.isoformat() if record.end_time else None,
        }

    async def get_active(self) -> List[Dict[str, Any]]:
        active = [c for c in self.conversations.values() if c.status == "active"]
        active.sort(key=lambda c: c.start_time, reverse=True)
        return [c.summary() for c in active]
