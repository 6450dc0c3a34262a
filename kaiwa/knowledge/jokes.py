"""
Joke and Advice Backends
========================
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)

# share of the lookup timeout the joke request may use; advice gets the rest
JOKE_BUDGET = 0.5


class AdviceBackend(BaseBackend):
    """Advice Slip API."""

    name = "advice"
    kind = "advice"
    requires_query = False
    default_base_url = "https://api.adviceslip.com"

    async def fetch(self) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"{self.base_url}/advice")
        slip = data.get("slip") if isinstance(data, dict) else None
        if not slip or not slip.get("advice"):
            return None
        return {"text": slip["advice"]}

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        advice = await self.fetch()
        if not advice:
            return None
        return KnowledgeAnswer(self.name, "advice", advice["text"], source_kind=self.kind)


class JokeBackend(BaseBackend):
    """Official Joke API, falling back to an advice slip."""

    name = "joke"
    kind = "joke"
    requires_query = False
    default_base_url = "https://official-joke-api.appspot.com"

    def __init__(self, *args, advice: Optional[AdviceBackend] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.advice = advice

    async def fetch(self) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"{self.base_url}/random_joke")
        if not isinstance(data, dict) or not data.get("setup"):
            return None
        return {"text": f"{data['setup']} — {data.get('punchline') or ''}".strip()}

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        try:
            joke = await asyncio.wait_for(self.fetch(), timeout=self.timeout * JOKE_BUDGET)
        except asyncio.TimeoutError:
            logger.warning(f"joke fetch timed out after {self.timeout * JOKE_BUDGET:.2f}s, trying advice")
            joke = None
        except Exception as e:
            logger.warning(f"joke fetch failed, trying advice: {e}")
            joke = None
        if joke:
            return KnowledgeAnswer(self.name, "joke", joke["text"], source_kind=self.kind)

        if self.advice is None:
            return None
        advice = await self.advice.fetch()
        if not advice:
            return None
        return KnowledgeAnswer("advice-slip", "advice", advice["text"], source_kind="advice")
