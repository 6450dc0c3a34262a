"""
General Web Summary Backends
============================

Two interchangeable providers of a one-paragraph summary for a free-text
query: DuckDuckGo Instant Answer and Wikidata entity descriptions.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote_plus

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)


class DuckDuckGoBackend(BaseBackend):
    """DuckDuckGo Instant Answer API."""

    name = "duckduckgo"
    kind = "web_summary"
    default_base_url = "https://api.duckduckgo.com"

    async def search(self, q: str) -> Optional[Dict[str, Any]]:
        """Returns ``{"heading", "abstract_text"}`` or None."""
        data = await self._get_json(
            f"{self.base_url}/",
            params={"q": q, "format": "json", "no_html": "1", "skip_disambig": "1"},
        )
        if not isinstance(data, dict) or not data.get("AbstractText"):
            return None
        return {"heading": data.get("Heading") or q, "abstract_text": data["AbstractText"]}

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        result = await self.search(q)
        if not result:
            return None
        return KnowledgeAnswer(
            source_tag=self.name,
            title=result["heading"],
            text=self._clip(result["abstract_text"]),
            meta={"url": f"https://duckduckgo.com/?q={quote_plus(q)}"},
            source_kind=self.kind,
        )


class WikidataBackend(BaseBackend):
    """Wikidata entity search; label plus short description."""

    name = "wikidata"
    kind = "web_summary"
    default_base_url = "https://www.wikidata.org"
    language = "ja"

    async def search(self, q: str) -> Optional[Dict[str, Any]]:
        """Returns ``{"heading", "abstract_text", "id"}`` or None."""
        data = await self._get_json(
            f"{self.base_url}/w/api.php",
            params={
                "action": "wbsearchentities",
                "search": q,
                "language": self.language,
                "uselang": self.language,
                "limit": "1",
                "format": "json",
            },
        )
        hits = data.get("search") if isinstance(data, dict) else None
        if not hits:
            return None
        top = hits[0]
        description = top.get("description")
        if not description:
            return None
        return {
            "heading": top.get("label") or q,
            "abstract_text": description,
            "id": top.get("id"),
        }

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        result = await self.search(q)
        if not result:
            return None
        return KnowledgeAnswer(
            source_tag=self.name,
            title=result["heading"],
            text=self._clip(result["abstract_text"]),
            meta={"id": result["id"]},
            source_kind=self.kind,
        )
