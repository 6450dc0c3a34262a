"""
Knowledge Backend Base
======================

Normalized answer shape, the outcome sum type every backend call returns,
and the base class that applies timeouts, circuit breaking and error
normalization around each lookup.

A backend call never raises to its caller: timeouts, transport errors and
malformed payloads all come back as ``TransientError``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import aiohttp

from kaiwa.error_handling import BackendError, BackendTimeoutError, CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_USER_AGENT = "kaiwa/1.0"
MAX_TEXT_LENGTH = 600


@dataclass
class KnowledgeAnswer:
    """Normalized result every backend produces."""
    source_tag: str
    title: str
    text: str
    meta: Dict[str, Any] = field(default_factory=dict)
    source_kind: str = "answer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source_tag,
            'title': self.title,
            'text': self.text,
            'meta': dict(self.meta),
        }


@dataclass
class Answer:
    answer: KnowledgeAnswer


@dataclass
class NoAnswer:
    reason: str = "not found"


@dataclass
class TransientError:
    error: Exception


Outcome = Union[Answer, NoAnswer, TransientError]


def clip(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    """Trim long snippets to ``limit`` characters plus an ellipsis."""
    text = (text or "").strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class BaseBackend(ABC):
    """
    Base class for knowledge backends.

    Subclasses implement ``_lookup`` and return a KnowledgeAnswer or None.
    """

    name = "backend"
    kind = "answer"
    requires_query = True
    default_base_url = ""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 user_agent: str = DEFAULT_USER_AGENT,
                 base_url: Optional[str] = None,
                 max_text_length: int = MAX_TEXT_LENGTH,
                 breaker: Optional[CircuitBreaker] = None):
        self.timeout = timeout
        self.user_agent = user_agent
        self.base_url = (base_url or self.default_base_url).rstrip('/')
        self.max_text_length = max_text_length
        self.breaker = breaker or CircuitBreaker(self.name)

    async def query(self, q: Optional[str] = None, **kwargs) -> Outcome:
        """
        Run one lookup.

        Args:
            q: Query string (ignored by backends that take no query)

        Returns:
            Answer, NoAnswer or TransientError
        """
        if self.requires_query and (not q or not str(q).strip()):
            return NoAnswer("empty query")

        try:
            result = await self.breaker.call(self._bounded_lookup, q, **kwargs)
        except CircuitOpenError as e:
            logger.debug(f"{self.name}: circuit open, skipping")
            return TransientError(e)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name}: timed out after {self.timeout}s (q={q!r})")
            return TransientError(BackendTimeoutError(self.name, f"timed out after {self.timeout}s"))
        except Exception as e:
            logger.warning(f"{self.name}: lookup failed (q={q!r}): {type(e).__name__}: {e}")
            return TransientError(e)

        if result is None:
            return NoAnswer()
        return Answer(result)

    async def _bounded_lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        return await asyncio.wait_for(self._lookup(q, **kwargs), timeout=self.timeout)

    @abstractmethod
    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        pass

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                        headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        """GET a JSON document; None on 400/404, BackendError on other failures."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params, headers=self._headers(headers)) as response:
                if response.status in (400, 404):
                    return None
                if response.status >= 400:
                    raise BackendError(self.name, f"HTTP {response.status}")
                return await response.json(content_type=None)

    async def _get_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """GET a plain-text body; None on 400/404."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params, headers=self._headers({"Accept": "text/plain"})) as response:
                if response.status in (400, 404):
                    return None
                if response.status >= 400:
                    raise BackendError(self.name, f"HTTP {response.status}")
                return await response.text()

    def _clip(self, text: str) -> str:
        return clip(text, self.max_text_length)

    def get_stats(self) -> Dict[str, Any]:
        return self.breaker.get_stats()
