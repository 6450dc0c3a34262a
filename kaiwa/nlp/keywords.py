"""
Keyword Extraction
==================

Groups contiguous runs of content tokens into compound keywords. Longer
compounds come first since they are more likely to match a specific
encyclopedia title than their parts.
"""

import re
from typing import Iterable, List, Sequence, Tuple

from .tokenizer import BASE_FORM, PartOfSpeech, SubCategory, Token, TokenizerService

_KATAKANA_RE = re.compile(r"^[\u30A0-\u30FF]+$")
_ALNUM_RE = re.compile(r"^[A-Za-z0-9\-_]+$")

DEFAULT_CONNECTING_PARTICLES: Tuple[str, ...] = ("の",)


class KeywordExtractor:
    """Part-of-speech driven compound keyword extractor."""

    def __init__(self, enriched: bool = False,
                 connecting_particles: Iterable[str] = DEFAULT_CONNECTING_PARTICLES,
                 min_length: int = 2):
        self.enriched = enriched
        self.connecting_particles = frozenset(connecting_particles)
        self.min_length = min_length

    def _is_content(self, token: Token) -> bool:
        if token.sub_category == SubCategory.PRONOUN:
            return False
        surface = token.surface or ""
        if token.part_of_speech == PartOfSpeech.NOUN:
            return True
        if _KATAKANA_RE.match(surface) or _ALNUM_RE.match(surface):
            return True
        if self.enriched:
            if token.part_of_speech == PartOfSpeech.ADJECTIVE:
                return True
            if token.part_of_speech == PartOfSpeech.VERB and token.conjugated_form == BASE_FORM:
                return True
        return False

    def _is_connector(self, token: Token) -> bool:
        return (self.enriched
                and token.part_of_speech == PartOfSpeech.PARTICLE
                and token.surface in self.connecting_particles)

    def extract(self, tokens: Sequence[Token]) -> List[str]:
        """
        Extract compound keywords.

        Args:
            tokens: Tokens in text order

        Returns:
            Unique keywords of at least ``min_length`` characters, longest first
        """
        keywords: List[str] = []
        buf: List[Tuple[str, bool]] = []  # (surface, is_connector)

        def flush():
            # a connector only joins two content runs
            while buf and buf[-1][1]:
                buf.pop()
            if buf:
                keywords.append("".join(surface for surface, _ in buf))
            buf.clear()

        for token in tokens:
            if self._is_content(token):
                buf.append((token.surface, False))
            elif buf and self._is_connector(token):
                buf.append((token.surface, True))
            else:
                flush()
        flush()

        unique = [k for k in dict.fromkeys(keywords) if len(k) >= self.min_length]
        return sorted(unique, key=len, reverse=True)

    async def extract_from_text(self, text: str, tokenizer: TokenizerService) -> List[str]:
        return self.extract(await tokenizer.tokenize(text))
