"""
Recipe Backend
==============

TheMealDB search: first meal matching the query, its ingredients and the
first few steps of the instructions.
"""

import re
import logging
from typing import Any, Dict, List, Optional

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)

_STEP_SPLIT = re.compile(r'(?:\r?\n)+|(?<=[.。])\s+')


class RecipeBackend(BaseBackend):
    """Recipe search."""

    name = "themealdb"
    kind = "recipe"
    default_base_url = "https://www.themealdb.com"
    max_ingredients = 8
    max_steps = 3

    async def search(self, query: str) -> Optional[Dict[str, Any]]:
        """Returns ``{"title", "ingredients", "steps"}`` or None."""
        data = await self._get_json(f"{self.base_url}/api/json/v1/1/search.php", params={"s": query})
        meals = data.get("meals") if isinstance(data, dict) else None
        if not meals:
            return None
        meal = meals[0]

        ingredients: List[str] = []
        for i in range(1, 21):
            name = (meal.get(f"strIngredient{i}") or "").strip()
            if not name:
                continue
            measure = (meal.get(f"strMeasure{i}") or "").strip()
            ingredients.append(f"{name} {measure}".strip())

        steps = [s.strip() for s in _STEP_SPLIT.split(meal.get("strInstructions") or "") if s.strip()]
        return {"title": meal.get("strMeal") or query, "ingredients": ingredients, "steps": steps}

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        recipe = await self.search(q)
        if not recipe:
            return None

        parts = []
        if recipe["ingredients"]:
            parts.append("材料: " + "、".join(recipe["ingredients"][:self.max_ingredients]))
        if recipe["steps"]:
            parts.append("手順: " + " ".join(
                f"{n}. {step}" for n, step in enumerate(recipe["steps"][:self.max_steps], 1)
            ))
        return KnowledgeAnswer(
            source_tag=self.name,
            title=recipe["title"],
            text=self._clip(" / ".join(parts)),
            meta={"ingredients": recipe["ingredients"], "step_count": len(recipe["steps"])},
            source_kind=self.kind,
        )
