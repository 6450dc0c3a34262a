"""
NLP Module
==========

Tokenizer adapter and part-of-speech driven keyword extraction.
"""

from .tokenizer import Token, PartOfSpeech, SubCategory, TokenizerService, build_janome_tokenizer
from .keywords import KeywordExtractor

__all__ = [
    'Token',
    'PartOfSpeech',
    'SubCategory',
    'TokenizerService',
    'build_janome_tokenizer',
    'KeywordExtractor'
]
