"""
Unit Tests for the NLP Module
=============================

Covers the tokenizer adapter (one-time initialization, degraded mode) and the
part-of-speech keyword extractor (compounding, filtering, ordering).
"""

import asyncio
import sys
import threading
from unittest.mock import Mock, patch

import pytest

from kaiwa.error_handling import TokenizerUnavailableError
from kaiwa.nlp import (
    KeywordExtractor, PartOfSpeech, SubCategory, Token, TokenizerService, build_janome_tokenizer,
)


def noun(surface, sub="一般"):
    return Token(surface, PartOfSpeech.NOUN.value, sub)


def particle(surface):
    return Token(surface, PartOfSpeech.PARTICLE.value, "連体化")


def symbol(surface):
    return Token(surface, PartOfSpeech.SYMBOL.value, "句点")


class TestToken:
    """Conversion from the analyzer's token objects."""

    def test_from_janome_splits_pos(self):
        raw = Mock(surface="東京", part_of_speech="名詞,固有名詞,地域,一般",
                   infl_form="*", base_form="東京")
        token = Token.from_janome(raw)

        assert token.surface == "東京"
        assert token.part_of_speech == "名詞"
        assert token.sub_category == "固有名詞"
        assert token.conjugated_form is None
        assert token.base_form == "東京"

    def test_from_janome_keeps_inflection(self):
        raw = Mock(surface="走る", part_of_speech="動詞,自立,*,*",
                   infl_form="基本形", base_form="走る")
        assert Token.from_janome(raw).conjugated_form == "基本形"


class TestKeywordExtractor:
    """Compound keyword extraction."""

    @pytest.fixture
    def extractor(self):
        return KeywordExtractor()

    def test_contiguous_nouns_form_one_compound(self, extractor):
        tokens = [noun("量子"), noun("コンピュータ"), particle("と"), noun("AI"),
                  particle("の"), noun("未来")]
        assert extractor.extract(tokens) == ["量子コンピュータ", "AI", "未来"]

    def test_longest_first_and_stable_for_equal_lengths(self, extractor):
        tokens = [noun("犬"), noun("小屋"), particle("と"), noun("猫"), noun("カフェ"),
                  particle("と"), noun("京都"), particle("と"), noun("大阪")]
        assert extractor.extract(tokens) == ["猫カフェ", "犬小屋", "京都", "大阪"]

    def test_pronouns_are_excluded(self, extractor):
        tokens = [noun("それ", SubCategory.PRONOUN.value), particle("の"), noun("意味")]
        assert extractor.extract(tokens) == ["意味"]

    def test_single_character_keywords_dropped(self, extractor):
        assert extractor.extract([noun("雨"), particle("が"), noun("好き")]) == ["好き"]

    def test_duplicates_removed(self, extractor):
        tokens = [noun("東京"), particle("と"), noun("東京")]
        assert extractor.extract(tokens) == ["東京"]

    def test_katakana_and_ascii_surfaces_count_as_content(self, extractor):
        tokens = [Token("キラキラ", PartOfSpeech.ADVERB.value), particle("と"),
                  Token("GPT-4", PartOfSpeech.SYMBOL.value)]
        assert extractor.extract(tokens) == ["GPT-4", "キラキラ"]

    def test_default_mode_ignores_verbs_and_particles(self, extractor):
        tokens = [noun("東京"), particle("の"), noun("天気"),
                  Token("走る", PartOfSpeech.VERB.value, "自立", "基本形")]
        assert extractor.extract(tokens) == ["東京", "天気"]

    def test_empty_input(self, extractor):
        assert extractor.extract([]) == []

    def test_enriched_mode_fuses_connecting_particle(self):
        extractor = KeywordExtractor(enriched=True)
        tokens = [noun("東京"), particle("の"), noun("天気")]
        assert extractor.extract(tokens) == ["東京の天気"]

    def test_enriched_mode_trims_dangling_particle(self):
        extractor = KeywordExtractor(enriched=True)
        tokens = [noun("東京"), particle("の"), symbol("。")]
        assert extractor.extract(tokens) == ["東京"]

    def test_enriched_mode_admits_base_form_verbs_and_adjectives(self):
        extractor = KeywordExtractor(enriched=True)
        tokens = [Token("走る", PartOfSpeech.VERB.value, "自立", "基本形"), symbol("、"),
                  Token("走っ", PartOfSpeech.VERB.value, "自立", "連用タ接続"), symbol("、"),
                  Token("美しい", PartOfSpeech.ADJECTIVE.value, "自立", "基本形")]
        assert extractor.extract(tokens) == ["美しい", "走る"]

    def test_particle_never_starts_a_compound(self):
        extractor = KeywordExtractor(enriched=True)
        assert extractor.extract([particle("の"), noun("天気")]) == ["天気"]

    @pytest.mark.asyncio
    async def test_extract_from_text(self, extractor):
        service = TokenizerService(builder=lambda: (lambda text: [noun("富士"), noun("山")]))
        assert await extractor.extract_from_text("富士山", service) == ["富士山"]


class TestTokenizerService:
    """One-time initialization and degraded mode."""

    @pytest.mark.asyncio
    async def test_concurrent_initialization_builds_once(self):
        calls = []
        gate = threading.Event()

        def builder():
            calls.append(1)
            gate.wait(timeout=5)
            return lambda text: [noun(text)]

        service = TokenizerService(builder=builder)
        pending = asyncio.gather(*(service.initialize() for _ in range(5)),
                                 service.tokenize("東京"))
        await asyncio.sleep(0.05)
        assert service.status()["state"] == "building"
        gate.set()
        results = await pending

        assert calls == [1]
        assert results[:5] == [True] * 5
        assert results[5] == [noun("東京")]
        assert service.available
        assert service.status()["state"] == "ready"

    @pytest.mark.asyncio
    async def test_reinitialize_is_a_no_op(self):
        builder = Mock(return_value=lambda text: [])
        service = TokenizerService(builder=builder)

        assert await service.initialize() is True
        assert await service.initialize() is True
        builder.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_build_degrades(self):
        builder = Mock(side_effect=RuntimeError("dictionary missing"))
        service = TokenizerService(builder=builder)

        assert await service.initialize() is False
        assert await service.tokenize("東京の天気") == []
        assert not service.available
        assert service.status() == {"state": "unavailable", "error": "dictionary missing"}
        builder.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_janome_degrades(self):
        with patch.dict(sys.modules, {"janome.tokenizer": None}):
            with pytest.raises(TokenizerUnavailableError):
                build_janome_tokenizer()

            service = TokenizerService()
            assert await service.initialize() is False
        assert service.status()["state"] == "unavailable"

    @pytest.mark.asyncio
    async def test_tokenize_error_returns_empty(self):
        def explode(text):
            raise ValueError("bad input")

        service = TokenizerService(builder=lambda: explode)
        assert await service.tokenize("何か") == []

    @pytest.mark.asyncio
    async def test_empty_text_skips_analyzer(self):
        builder = Mock()
        service = TokenizerService(builder=builder)

        assert await service.tokenize("") == []
        builder.assert_not_called()
        assert service.status()["state"] == "not_started"

    @pytest.mark.asyncio
    async def test_analysis_runs_off_the_event_loop(self):
        threads = []

        def analyze(text):
            threads.append(threading.current_thread())
            return [noun(text)]

        service = TokenizerService(builder=lambda: analyze)

        assert await service.tokenize("東京") == [noun("東京")]
        assert threads[0] is not threading.main_thread()
        assert threads[0].name.startswith("kaiwa-tokenizer")
