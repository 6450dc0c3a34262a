"""
Knowledge Router
================

Tries knowledge backends in a fixed, intent-prioritized order and stops at
the first answer. Calls are strictly sequential: the order decides which
source wins, so nothing is fanned out in parallel.

Order:
    1. recipe      (RECIPE, query stripped of trigger words)
    2. calculator  (MATH, raw message)
    3. weather     (WEATHER, place entity, then each candidate, then a place regex)
    4. joke        (JOKE, advice as the joke backend's own fallback)
    5. advice      (ADVICE)
    6. general     (any intent: whole message against web summaries, then per
                    candidate the encyclopedia and the web summaries)
    7. weather-failed (WEATHER with no place or forecast found)
    8. clarify     (QUESTION, no backend)
    9. smalltalk   (default)
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from kaiwa.knowledge import Answer, BaseBackend, KnowledgeAnswer, KnowledgeBackends

from .intent_recognizer import IntentResult, IntentTag, strip_recipe_triggers
from .memory import Context, ContextStore

logger = logging.getLogger(__name__)

_PLACE_FALLBACK = re.compile(
    r'[^\s　、。！？!?のはで]+?(?:市|都|道|府|県|町|村|区)|東京|大阪|京都'
)


class RouteMode:
    ANSWER = "answer"
    CLARIFY = "clarify"
    WEATHER_FAILED = "weather-failed"
    SMALLTALK = "smalltalk"


@dataclass
class RouteResult:
    """Outcome of one routing pass."""
    mode: str
    answer: Optional[KnowledgeAnswer] = None
    used_keyword: Optional[str] = None
    tried: List[str] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return self.answer is not None


class KnowledgeRouter:
    """Priority-ordered backend dispatcher."""

    def __init__(self, backends: KnowledgeBackends, store: ContextStore):
        self.backends = backends
        self.store = store

    async def _try(self, backend: Optional[BaseBackend], q: Optional[str],
                   tried: List[str], **kwargs) -> Optional[KnowledgeAnswer]:
        if backend is None:
            return None
        tried.append(f"{backend.name}:{q}" if q else backend.name)
        outcome = await backend.query(q, **kwargs)
        if isinstance(outcome, Answer):
            logger.debug(f"{backend.name} answered for {q!r}")
            return outcome.answer
        return None

    async def route(self, intent: IntentResult, candidates: Sequence[str],
                    context: Context, message: str) -> RouteResult:
        """
        Find an answer for the message.

        Args:
            intent: Classified intent
            candidates: Ordered query strings (most specific first)
            context: The user's context; successful lookups record entities into it
            message: Raw user message

        Returns:
            RouteResult with an answer, or the clarify/smalltalk mode
        """
        tried: List[str] = []
        tag = intent.tag
        b = self.backends

        if tag == IntentTag.RECIPE:
            query = strip_recipe_triggers(message) or intent.main_keyword
            answer = await self._try(b.recipe, query, tried)
            if answer:
                return RouteResult(RouteMode.ANSWER, answer, query, tried)

        if tag == IntentTag.MATH:
            answer = await self._try(b.calculator, message, tried)
            if answer:
                return RouteResult(RouteMode.ANSWER, answer, None, tried)

        if tag == IntentTag.WEATHER:
            result = await self._route_weather(intent, candidates, context, message, tried)
            if result:
                return result

        if tag == IntentTag.JOKE:
            answer = await self._try(b.joke, None, tried)
            if answer:
                return RouteResult(RouteMode.ANSWER, answer, None, tried)

        if tag == IntentTag.ADVICE:
            answer = await self._try(b.advice, None, tried)
            if answer:
                return RouteResult(RouteMode.ANSWER, answer, None, tried)

        result = await self._route_general(candidates, context, message, tried)
        if result:
            return result

        if tag == IntentTag.WEATHER:
            return RouteResult(RouteMode.WEATHER_FAILED, tried=tried)
        if tag == IntentTag.QUESTION:
            return RouteResult(RouteMode.CLARIFY, tried=tried)
        return RouteResult(RouteMode.SMALLTALK, tried=tried)

    async def _route_weather(self, intent: IntentResult, candidates: Sequence[str],
                             context: Context, message: str,
                             tried: List[str]) -> Optional[RouteResult]:
        options = {"timeframe": intent.timeframe}
        if intent.forecast_day:
            options["forecast_day"] = intent.forecast_day

        places: List[str] = []
        for place in [intent.place_entity, *candidates]:
            if place and place not in places:
                places.append(place)

        for place in places:
            answer = await self._try(self.backends.weather, place, tried, **options)
            if answer:
                self.store.record_entity(context, place, keyword=place)
                return RouteResult(RouteMode.ANSWER, answer, place, tried)

        m = _PLACE_FALLBACK.search(message or "")
        if m and m.group(0) not in places:
            place = m.group(0)
            answer = await self._try(self.backends.weather, place, tried, **options)
            if answer:
                self.store.record_entity(context, place, keyword=place)
                return RouteResult(RouteMode.ANSWER, answer, place, tried)
        return None

    async def _route_general(self, candidates: Sequence[str], context: Context,
                             message: str, tried: List[str]) -> Optional[RouteResult]:
        for provider in self.backends.web_summary:
            answer = await self._try(provider, message, tried)
            if answer:
                self.store.record_entity(context, answer.title)
                return RouteResult(RouteMode.ANSWER, answer, message, tried)

        for candidate in candidates:
            if not candidate or not str(candidate).strip():
                continue
            answer = await self._try(self.backends.encyclopedia, candidate, tried)
            if answer:
                self.store.record_entity(context, answer.title, keyword=candidate)
                return RouteResult(RouteMode.ANSWER, answer, candidate, tried)
            for provider in self.backends.web_summary:
                answer = await self._try(provider, candidate, tried)
                if answer:
                    self.store.record_entity(context, answer.title, keyword=candidate)
                    return RouteResult(RouteMode.ANSWER, answer, candidate, tried)
        return None
