"""
Calculator Backend
==================

Evaluates arithmetic through the mathjs web API. The raw chat message is
normalized to a bare expression first; messages with no operator are not
sent at all.
"""

import re
import logging
import unicodedata
from typing import Any, Dict, Optional

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)

_WORD_OPERATORS = [
    (re.compile(r'(\d+(?:\.\d+)?)の平方根'), r'sqrt(\1)'),
    (re.compile(r'平方根'), 'sqrt'),
    (re.compile(r'足す|たす|プラス'), '+'),
    (re.compile(r'引く|ひく|マイナス'), '-'),
    (re.compile(r'掛ける|かける'), '*'),
    (re.compile(r'割る|わる'), '/'),
    (re.compile(r'の(\d+)乗'), r'^\1'),
]
_SYMBOLS = str.maketrans({'×': '*', '÷': '/', '−': '-', '＾': '^'})
_EXPRESSION = re.compile(r'(?:sqrt|[0-9.+\-*/()^%\s])+')
_OPERATOR = re.compile(r'[+\-*/^%]|sqrt')


def normalize_expression(text: str) -> Optional[str]:
    """
    Turn a chat message into an arithmetic expression.

    Returns:
        The longest expression-looking run that has a digit and an operator,
        or None
    """
    if not text:
        return None
    s = unicodedata.normalize('NFKC', text).translate(_SYMBOLS)
    for pattern, replacement in _WORD_OPERATORS:
        s = pattern.sub(replacement, s)

    runs = [r.strip() for r in _EXPRESSION.findall(s)]
    runs = [r for r in runs if re.search(r'\d', r) and _OPERATOR.search(r)]
    if not runs:
        return None
    return max(runs, key=len).rstrip('=').strip() or None


class CalculatorBackend(BaseBackend):
    """Arithmetic evaluation."""

    name = "mathjs"
    kind = "calculator"
    default_base_url = "https://api.mathjs.org"

    async def evaluate(self, query: str) -> Optional[Dict[str, Any]]:
        """Returns ``{"result_text", "expression"}`` or None."""
        expression = normalize_expression(query)
        if not expression:
            return None
        result = await self._get_text(f"{self.base_url}/v4/", params={"expr": expression})
        if result is None or not result.strip():
            return None
        return {"result_text": result.strip(), "expression": expression}

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        evaluated = await self.evaluate(q)
        if not evaluated:
            return None
        return KnowledgeAnswer(
            source_tag=self.name,
            title=evaluated["expression"],
            text=f"{evaluated['expression']} = {evaluated['result_text']}",
            meta={"expression": evaluated["expression"], "result": evaluated["result_text"]},
            source_kind=self.kind,
        )
