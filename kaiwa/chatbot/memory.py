"""
Conversation Context Store
==========================

Per-user conversational context with TTL expiry and topic-change reset.

The store owns every Context; callers receive a copy, mutate it through the
store's operations, and hand it back with ``save``. A turn that fails before
``save`` leaves the stored context untouched. Requests for the same user are
serialized with ``lock_for``; expired contexts and idle locks are swept
every ``purge_interval`` saves.
"""

import asyncio
import copy
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from .intent_recognizer import IntentTag

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 6 * 60 * 60
DEFAULT_MAX_HISTORY = 80
DEFAULT_MAX_ENTITIES = 10
DEFAULT_PERSONA = "neutral"
DEFAULT_PURGE_INTERVAL = 256

# Turns with these intents carry no topic of their own
TOPIC_NEUTRAL_INTENTS = frozenset({
    IntentTag.GREETING, IntentTag.THANKS, IntentTag.JOKE, IntentTag.ADVICE, IntentTag.QUESTION,
})


class Role(Enum):
    """Author of a history entry."""
    USER = "user"
    BOT = "bot"


@dataclass
class HistoryEntry:
    """Represents a chat message."""
    role: Role
    text: str
    timestamp: float


@dataclass
class EntityRef:
    """A title resolved on an earlier turn."""
    title: str
    timestamp: float


@dataclass
class Context:
    """Conversational state for one user."""
    user_id: str
    history: List[HistoryEntry] = field(default_factory=list)
    last_keyword: Optional[str] = None
    last_entities: List[EntityRef] = field(default_factory=list)
    persona: str = DEFAULT_PERSONA
    updated_at: float = 0.0

    def last_bot_text(self) -> Optional[str]:
        for entry in reversed(self.history):
            if entry.role == Role.BOT and entry.text:
                return entry.text
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'user_id': self.user_id,
            'history': [
                {'role': e.role.value, 'text': e.text, 'timestamp': e.timestamp}
                for e in self.history
            ],
            'last_keyword': self.last_keyword,
            'last_entities': [
                {'title': e.title, 'timestamp': e.timestamp} for e in self.last_entities
            ],
            'persona': self.persona,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any, user_id: str = "anon") -> "Context":
        """Build a Context from loosely-shaped data; missing or bad fields are treated as absent."""
        if isinstance(data, Context):
            return data
        if not isinstance(data, dict):
            return cls(user_id=user_id)

        history = []
        for item in data.get('history') or []:
            if not isinstance(item, dict) or not item.get('text'):
                continue
            try:
                role = Role(item.get('role'))
            except ValueError:
                continue
            history.append(HistoryEntry(role, str(item['text']), _as_float(item.get('timestamp'))))

        entities = []
        for item in data.get('last_entities') or []:
            if isinstance(item, dict) and item.get('title'):
                entities.append(EntityRef(str(item['title']), _as_float(item.get('timestamp'))))

        last_keyword = data.get('last_keyword')
        return cls(
            user_id=str(data.get('user_id') or user_id),
            history=history,
            last_keyword=str(last_keyword) if last_keyword else None,
            last_entities=entities,
            persona=str(data.get('persona') or DEFAULT_PERSONA),
            updated_at=_as_float(data.get('updated_at')),
        )


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class KeyValueStore(ABC):
    """Storage interface behind the context store."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> Iterable[str]:
        pass

    def __len__(self) -> int:
        return 0


class InMemoryStore(KeyValueStore):
    """Process-local dictionary store."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return self._data.keys()

    def __len__(self) -> int:
        return len(self._data)


class ContextStore:
    """Context lifecycle manager."""

    def __init__(self, store: Optional[KeyValueStore] = None,
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 max_history: int = DEFAULT_MAX_HISTORY,
                 max_entities: int = DEFAULT_MAX_ENTITIES,
                 clock: Callable[[], float] = time.time,
                 purge_interval: int = DEFAULT_PURGE_INTERVAL):
        self.store = store if store is not None else InMemoryStore()
        self.ttl_seconds = ttl_seconds
        self.max_history = max_history
        self.max_entities = max_entities
        self.clock = clock
        self.purge_interval = purge_interval
        self._locks: Dict[str, asyncio.Lock] = {}
        self._saves = 0

    def lock_for(self, user_id: str) -> asyncio.Lock:
        """Per-user lock; requests for different users never contend."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def new_context(self, user_id: str, persona: Optional[str] = None) -> Context:
        return Context(user_id=user_id, persona=persona or DEFAULT_PERSONA, updated_at=self.clock())

    def peek(self, user_id: str) -> Optional[Context]:
        """Copy of the stored context regardless of expiry, or None."""
        raw = self.store.get(user_id)
        if raw is None:
            return None
        if isinstance(raw, Context):
            return copy.deepcopy(raw)
        return Context.from_dict(raw, user_id)

    def get_or_create(self, user_id: str, persona: Optional[str] = None) -> Context:
        """
        Get a live context for the user.

        Returns the stored context when ``now - updated_at <= ttl``; otherwise a
        fresh context that is not persisted until ``save`` is called.
        """
        ctx = self.peek(user_id)
        if ctx is None or self.clock() - ctx.updated_at > self.ttl_seconds:
            if ctx is not None:
                logger.info(f"Context for {user_id} expired, starting fresh")
            return self.new_context(user_id, persona)
        if persona:
            ctx.persona = persona
        return ctx

    def push_history(self, ctx: Context, role: Role, text: str) -> None:
        now = self.clock()
        ctx.history.append(HistoryEntry(role=role, text=text, timestamp=now))
        if len(ctx.history) > self.max_history:
            del ctx.history[:len(ctx.history) - self.max_history]
        ctx.updated_at = now

    def record_entity(self, ctx: Context, title: str, keyword: Optional[str] = None) -> None:
        """Put ``title`` at the front of the entity pool and remember the keyword that found it."""
        if not title:
            return
        now = self.clock()
        entities: Deque[EntityRef] = deque(ctx.last_entities, maxlen=self.max_entities)
        entities.appendleft(EntityRef(title=title, timestamp=now))
        ctx.last_entities = list(entities)
        ctx.last_keyword = keyword or title
        ctx.updated_at = now

    def maybe_reset_for_new_topic(self, ctx: Context, keywords: Iterable[str],
                                  intent: IntentTag, has_reference: bool = False) -> Context:
        """
        Discard the context when the user has clearly moved on.

        Fires only when there is a previous keyword, the current turn produced
        keywords and none of them overlaps the previous keyword or any
        remembered entity title. Turns that refer back with a pronoun and
        intents in ``TOPIC_NEUTRAL_INTENTS`` never reset.
        """
        previous = ctx.last_keyword
        current = [k for k in keywords if k]
        if not previous or not current or intent in TOPIC_NEUTRAL_INTENTS or has_reference:
            return ctx

        known = [previous, *(e.title for e in ctx.last_entities if e.title)]
        if any(k in t or t in k for k in current for t in known):
            return ctx

        logger.info(f"Topic changed for {ctx.user_id} ({previous!r} -> {current[0]!r}), resetting context")
        return self.new_context(ctx.user_id, ctx.persona)

    def save(self, ctx: Context) -> None:
        self.store.put(ctx.user_id, ctx.to_dict())
        self._saves += 1
        if self.purge_interval and self._saves % self.purge_interval == 0:
            self.purge_expired()

    def delete(self, user_id: str) -> None:
        self.store.delete(user_id)
        self._locks.pop(user_id, None)

    def purge_expired(self) -> int:
        """
        Drop expired contexts and idle locks.

        Returns:
            int: Number of contexts removed
        """
        now = self.clock()
        removed = 0
        for user_id in list(self.store.keys()):
            ctx = self.peek(user_id)
            if ctx is None or now - ctx.updated_at > self.ttl_seconds:
                self.store.delete(user_id)
                removed += 1

        for user_id, lock in list(self._locks.items()):
            if not lock.locked() and self.store.get(user_id) is None:
                del self._locks[user_id]

        if removed:
            logger.info(f"Purged {removed} expired contexts")
        return removed

    def __len__(self) -> int:
        return len(self.store)
