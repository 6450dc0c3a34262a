"""
Coreference Resolution
======================

Maps demonstratives and pronouns to an entity from earlier turns.
Most recent wins; there is no further ambiguity resolution.
"""

import re
from typing import Optional, Sequence

from .memory import Context

DEFAULT_PRONOUNS = ('それ', 'あれ', 'これ', 'ここ', 'そこ', 'あそこ', 'この', 'その', 'あの')

# demonstrative + noun; the noun stops at whitespace, punctuation or a particle
_DEMONSTRATIVE_NOUN = re.compile(
    r'(この|その|あの)([^\s　、。！？!?はがをにでともへのや]+)'
)


class CoreferenceResolver:
    """Single decision-tree resolver."""

    def __init__(self, pronouns: Sequence[str] = DEFAULT_PRONOUNS):
        self.pronouns = tuple(pronouns)

    def has_reference(self, text: Optional[str]) -> bool:
        return bool(text) and any(p in text for p in self.pronouns)

    def resolve(self, text: Optional[str], context: Optional[Context]) -> Optional[str]:
        """
        Resolve a reference in ``text`` against ``context``.

        Returns:
            The referent string, or None when the text has no pronoun or
            nothing in the context can stand in for it
        """
        if not self.has_reference(text):
            return None

        entities = context.last_entities if context is not None else []
        m = _DEMONSTRATIVE_NOUN.search(text)
        if m:
            noun = m.group(2)
            for entity in entities:
                if noun in entity.title:
                    return entity.title
            return noun

        if entities:
            return entities[0].title
        if context is not None and context.last_keyword:
            return context.last_keyword
        return None
