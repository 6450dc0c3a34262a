"""
Encyclopedia Backend
====================

Japanese Wikipedia: OpenSearch for candidate titles, then the REST summary
of each title until one has an extract.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)


class WikipediaBackend(BaseBackend):
    """Structured knowledge base lookup."""

    name = "wikipedia"
    kind = "encyclopedia"
    default_base_url = "https://ja.wikipedia.org"
    search_limit = 5

    async def lookup(self, title: str) -> Optional[Dict[str, Any]]:
        """
        Look up an article.

        Returns:
            ``{"title", "extract"}`` for the first matching article, or None
        """
        found = await self._get_json(
            f"{self.base_url}/w/api.php",
            params={
                "action": "opensearch",
                "limit": str(self.search_limit),
                "format": "json",
                "search": title,
            },
        )
        titles = found[1] if isinstance(found, list) and len(found) > 1 else []

        for candidate in titles:
            summary = await self._get_json(
                f"{self.base_url}/api/rest_v1/page/summary/{quote(str(candidate), safe='')}"
            )
            if isinstance(summary, dict) and summary.get("extract"):
                return {"title": summary.get("title") or candidate, "extract": summary["extract"]}
        return None

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        article = await self.lookup(q)
        if not article:
            return None
        return KnowledgeAnswer(
            source_tag=self.name,
            title=article["title"],
            text=self._clip(article["extract"]),
            source_kind=self.kind,
        )
