"""
Tokenization Adapter
====================

Wraps the Japanese morphological analyzer (janome) behind a small async
interface. The analyzer is built once, in a worker thread; every caller that
arrives before the build finishes awaits the same task. Analysis runs on the
same thread so long messages never block the event loop.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from kaiwa.error_handling import TokenizerUnavailableError

logger = logging.getLogger(__name__)


class PartOfSpeech(str, Enum):
    """Top-level part-of-speech tags (IPA dictionary)."""
    NOUN = "名詞"
    VERB = "動詞"
    ADJECTIVE = "形容詞"
    PARTICLE = "助詞"
    AUXILIARY = "助動詞"
    ADVERB = "副詞"
    SYMBOL = "記号"


class SubCategory(str, Enum):
    """Part-of-speech sub-tags the keyword extractor cares about."""
    PROPER_NOUN = "固有名詞"
    PRONOUN = "代名詞"


BASE_FORM = "基本形"


@dataclass(frozen=True)
class Token:
    """One analyzed token."""
    surface: str
    part_of_speech: str
    sub_category: str = "*"
    conjugated_form: Optional[str] = None
    base_form: Optional[str] = None

    @classmethod
    def from_janome(cls, raw: Any) -> "Token":
        """Convert a janome token (comma-joined POS string) into a Token."""
        parts = (raw.part_of_speech or "").split(",")
        infl_form = getattr(raw, "infl_form", None)
        return cls(
            surface=raw.surface,
            part_of_speech=parts[0] if parts else "",
            sub_category=parts[1] if len(parts) > 1 else "*",
            conjugated_form=None if infl_form in (None, "*") else infl_form,
            base_form=getattr(raw, "base_form", None),
        )


def build_janome_tokenizer() -> Callable[[str], List[Token]]:
    """Build a janome tokenizer and return a text -> tokens callable."""
    try:
        from janome.tokenizer import Tokenizer
        analyzer = Tokenizer()
    except (ImportError, OSError) as e:
        raise TokenizerUnavailableError(f"janome analyzer could not be loaded: {e}") from e

    def tokenize(text: str) -> List[Token]:
        return [Token.from_janome(t) for t in analyzer.tokenize(text)]

    return tokenize


class TokenizerService:
    """
    Shared, lazily-initialized tokenizer.

    ``builder`` is a blocking callable returning a text -> tokens function; it
    runs at most once per service instance. The build and every analysis run
    on one worker thread, off the event loop.
    """

    def __init__(self, builder: Optional[Callable[[], Callable[[str], List[Token]]]] = None):
        self._builder = builder or build_janome_tokenizer
        self._tokenize: Optional[Callable[[str], List[Token]]] = None
        self._init_task: Optional[asyncio.Task] = None
        self._error: Optional[str] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kaiwa-tokenizer")

    @property
    def available(self) -> bool:
        return self._tokenize is not None

    async def initialize(self) -> bool:
        """
        Build the analyzer once.

        Returns:
            bool: True if the tokenizer is ready, False if the build failed
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._build())
        return await asyncio.shield(self._init_task)

    async def _build(self) -> bool:
        loop = asyncio.get_running_loop()
        try:
            logger.info("Building tokenizer...")
            self._tokenize = await loop.run_in_executor(self._executor, self._builder)
            logger.info("Tokenizer ready")
            return True
        except Exception as e:
            self._error = str(e)
            logger.error(f"Tokenizer initialization failed, keyword extraction disabled: {e}")
            return False

    async def tokenize(self, text: str) -> List[Token]:
        """Tokenize text; returns an empty list when the analyzer is unavailable."""
        if not text:
            return []
        if not await self.initialize():
            return []
        try:
            return await asyncio.get_running_loop().run_in_executor(self._executor, self._analyze, text)
        except Exception as e:
            logger.warning(f"tokenize failed: {e}")
            return []

    def _analyze(self, text: str) -> List[Token]:
        return list(self._tokenize(text))

    def status(self) -> Dict[str, Any]:
        if self._init_task is None:
            state = "not_started"
        elif not self._init_task.done():
            state = "building"
        else:
            state = "ready" if self.available else "unavailable"
        return {"state": state, "error": self._error}
