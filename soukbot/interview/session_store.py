"""
Per-user interview session state.

A session tracks the dialogue step and the slots collected so far
(product type, budget, location). Stores are swappable behind the
``SessionStore`` protocol:
- InMemorySessionStore: dict keyed by user id (single process)
- RedisSessionStore: JSON blobs under ``soukbot:session:{user_id}`` with TTL

``SessionLocks`` serializes turns for the same user; different users run
concurrently.
"""
import asyncio
import copy
import json
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from soukbot.core.errors import SlotValidationError
from soukbot.interview.slot_extractor import BudgetRange, LocationExtraction, LocationKind
from soukbot.utils.logger import get_logger

logger = get_logger("interview.session_store")


class Step(str, Enum):
    WELCOME = "welcome"
    PRODUCT_TYPE = "product_type"
    BUDGET = "budget"
    LOCATION = "location"
    SEARCH = "search"


@dataclass
class Session:
    """State for one user's interview."""
    user_id: str
    step: Step = Step.WELCOME
    product_type: Optional[str] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    city: Optional[str] = None
    nationwide: bool = False
    country: str = "Maroc"
    conversation_id: Optional[str] = None
    # Criteria of the last completed search, used to act on suggestions
    last_criteria: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def set_budget(self, budget: BudgetRange) -> None:
        """Store both bounds, or raise SlotValidationError and leave the session untouched."""
        errors = budget.validation_errors()
        if errors:
            raise SlotValidationError(errors)
        self.budget_min = budget.minimum
        self.budget_max = budget.maximum

    def set_location(self, location: LocationExtraction) -> None:
        if location.kind == LocationKind.NOT_PROVIDED:
            raise SlotValidationError(["Aucune ville reconnue"])
        self.nationwide = location.kind == LocationKind.NATIONWIDE
        self.city = location.city if not self.nationwide else None

    def clear_slots(self) -> None:
        """Forget collected slots; conversation id, country and last criteria survive."""
        self.product_type = None
        self.budget_min = None
        self.budget_max = None
        self.city = None
        self.nationwide = False

    def search_criteria(self) -> Dict[str, Any]:
        return {
            "product_type": self.product_type,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "city": self.city,
            "country": self.country,
        }

    def copy(self) -> "Session":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["step"] = self.step.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Session":
        try:
            step = Step(d.get("step", Step.WELCOME.value))
        except ValueError:
            logger.warning(f"Unknown step {d.get('step')!r} for user {d.get('user_id')}, resetting to welcome")
            step = Step.WELCOME
        return cls(
            user_id=d["user_id"],
            step=step,
            product_type=d.get("product_type"),
            budget_min=d.get("budget_min"),
            budget_max=d.get("budget_max"),
            city=d.get("city"),
            nationwide=d.get("nationwide", False),
            country=d.get("country", "Maroc"),
            conversation_id=d.get("conversation_id"),
            last_criteria=d.get("last_criteria"),
            extra=d.get("extra", {}),
        )


class SessionStore(Protocol):
    async def get(self, user_id: str) -> Optional[Session]: ...

    async def put(self, session: Session) -> None: ...

    async def delete(self, user_id: str) -> None: ...


class InMemorySessionStore:
    """At most one session per user id, for the process lifetime."""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}

    async def get(self, user_id: str) -> Optional[Session]:
        session = self.sessions.get(user_id)
        return session.copy() if session else None

    async def put(self, session: Session) -> None:
        self.sessions[session.user_id] = session.copy()

    async def delete(self, user_id: str) -> None:
        self.sessions.pop(user_id, None)


class RedisSessionStore:
    """Sessions persisted as JSON in Redis so several workers can share them."""

    KEY_PREFIX = "soukbot:session"

    def __init__(self, redis_url: str = "redis://localhost:6379/0", ttl: int = 86400, client=None):
        if client is None:
            import redis.asyncio as redis_asyncio
            client = redis_asyncio.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        self.client = client
        self.ttl = ttl

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def get(self, user_id: str) -> Optional[Session]:
        raw = await self.client.get(self._key(user_id))
        if not raw:
            return None
        return Session.from_dict(json.loads(raw))

    async def put(self, session: Session) -> None:
        payload = json.dumps(session.to_dict(), ensure_ascii=False)
        await self.client.setex(self._key(session.user_id), self.ttl, payload)

    async def delete(self, user_id: str) -> None:
        await self.client.delete(self._key(user_id))


class SessionLocks:
    """
    One asyncio.Lock per user id so two turns of the same user never interleave.

    A user's lock is dropped as soon as no turn holds or waits for it, so
    the map only holds users with a turn in flight.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def for_user(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                del self._holders[user_id]
                del self._locks[user_id]

    def __len__(self) -> int:
        return len(self._locks)
