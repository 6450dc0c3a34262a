"""
Intent Recognition
==================

Priority-ordered, first-match-wins intent rules.

Order is a behavioral contract: a weather question also contains question
particles, so WEATHER must be checked before QUESTION, and so on down the
list. Rules are plain data and can be replaced from configuration.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Sequence

from kaiwa.knowledge.weather import ForecastDay

logger = logging.getLogger(__name__)


class IntentTag(Enum):
    """Closed set of intents."""
    GREETING = "greeting"
    THANKS = "thanks"
    WEATHER = "weather"
    JOKE = "joke"
    ADVICE = "advice"
    RECIPE = "recipe"
    MATH = "math"
    QUESTION = "question"
    UNKNOWN = "unknown"


class MatchMode(Enum):
    SEARCH = "search"
    PREFIX = "prefix"


@dataclass
class IntentRule:
    """One (predicate, intent) pair."""
    tag: IntentTag
    patterns: List[str]
    mode: MatchMode = MatchMode.SEARCH
    _compiled: List[Pattern] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, text: str) -> bool:
        if self.mode == MatchMode.PREFIX:
            return any(p.match(text) for p in self._compiled)
        return any(p.search(text) for p in self._compiled)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentRule":
        patterns = data.get('patterns') or []
        if isinstance(patterns, str):
            patterns = [patterns]
        return cls(
            tag=IntentTag(data['intent']),
            patterns=list(patterns),
            mode=MatchMode(data.get('mode', MatchMode.SEARCH.value)),
        )


@dataclass
class IntentResult:
    """Intent recognition result."""
    tag: IntentTag
    place_entity: Optional[str] = None
    main_keyword: Optional[str] = None
    timeframe: str = "now"
    forecast_day: Optional[str] = None
    matched_rule: Optional[int] = None

    @property
    def intent(self) -> str:
        return self.tag.value


DEFAULT_INTENT_RULES: List[IntentRule] = [
    IntentRule(IntentTag.GREETING,
               [r'(おはよう|こんにちは|こんばんは|やあ|もしもし|おっす|はじめまして)',
                r'(hello|hi|hey)\b'],
               MatchMode.PREFIX),
    IntentRule(IntentTag.THANKS, [r'ありがとう|助かった|感謝|サンキュー|thanks|thank you']),
    IntentRule(IntentTag.WEATHER, [r'天気|気温|降水|雨|晴れ|天候|予報']),
    IntentRule(IntentTag.JOKE, [r'ジョーク|おもしろ|笑わせて|ネタ|冗談']),
    IntentRule(IntentTag.ADVICE, [r'助言|アドバイス|どうすれば|どうしたら']),
    IntentRule(IntentTag.RECIPE, [r'レシピ|作り方|献立|料理|材料']),
    IntentRule(IntentTag.MATH, [r'\d\s*[-+*/×÷^%＋－＊／]\s*[\d(（]',
                                r'計算|平方根|sqrt|足す|引く|掛ける|割る']),
    IntentRule(IntentTag.QUESTION, [r'\?|？|かな|かも|だろう|とは',
                                    r'なぜ|なに|何|どう|どの|いつ|どこ|誰|だれ']),
]

# first match wins: 明後日 before 明日, and 来週末 reads as the weekend
_FORECAST_DAYS = [
    (re.compile(r"明後日|あさって"), ForecastDay.DAY_AFTER_TOMORROW),
    (re.compile(r"週末"), ForecastDay.WEEKEND),
    (re.compile(r"来週"), ForecastDay.NEXT_WEEK),
    (re.compile(r"今後"), ForecastDay.OUTLOOK),
    (re.compile(r"明日|あした"), ForecastDay.TOMORROW),
]
_TIME_WORDS = re.compile(r'^(今日|きょう|今|いま|明日|あした|明後日|あさって|来週|週末|今週末|今後)+')
_PLACE_PATTERNS = [
    re.compile(r'([^\s　、。！？!?の]+)(?:の|で)(?:天気|気温|降水|天候|予報)'),
    re.compile(r'([^\s　、。！？!?のは]+)は(?:晴れ|雨|曇り|雪)'),
]
_RECIPE_TRIGGERS = re.compile(
    r'(?:の)?(?:レシピ|作り方|献立|料理|材料)(?:を|が|は)?(?:教えて|知りたい|ください|下さい)?'
)
_TRAILING_NOISE = re.compile(r'[\s　、。！？!?]+$|^[\s　、。！？!?]+')


def strip_recipe_triggers(text: str) -> str:
    """Remove recipe trigger phrases, leaving the dish name."""
    stripped = _RECIPE_TRIGGERS.sub('', text or '')
    return _TRAILING_NOISE.sub('', stripped)


def forecast_day(text: str) -> Optional[str]:
    """Future day a weather question refers to, or None for the present."""
    for pattern, day in _FORECAST_DAYS:
        if pattern.search(text or ""):
            return day
    return None


def extract_place(text: str) -> Optional[str]:
    """Pull a place name out of a weather question."""
    for pattern in _PLACE_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        place = _TIME_WORDS.sub('', m.group(1))
        if place:
            return place
    return None


class IntentRecognizer:
    """Rule-based intent recognizer."""

    def __init__(self, rules: Optional[Sequence[IntentRule]] = None):
        self._rules: List[IntentRule] = list(rules if rules is not None else DEFAULT_INTENT_RULES)

    @classmethod
    def from_config(cls, entries: Optional[Sequence[Dict[str, Any]]]) -> "IntentRecognizer":
        """Build from a list of ``{intent, patterns, mode}`` mappings; falls back to defaults when empty."""
        if not entries:
            return cls()
        rules = [IntentRule.from_dict(entry) for entry in entries]
        logger.info(f"Loaded {len(rules)} intent rules from configuration")
        return cls(rules)

    @property
    def rules(self) -> List[IntentRule]:
        return list(self._rules)

    def classify(self, text: Optional[str]) -> IntentResult:
        """
        Classify text.

        Args:
            text: Raw user message

        Returns:
            IntentResult of the first matching rule, UNKNOWN otherwise
        """
        if not text:
            return IntentResult(IntentTag.UNKNOWN)

        for index, rule in enumerate(self._rules):
            if not rule.matches(text):
                continue
            result = IntentResult(rule.tag, matched_rule=index)
            if rule.tag == IntentTag.WEATHER:
                result.place_entity = extract_place(text)
                result.forecast_day = forecast_day(text)
                if result.forecast_day:
                    result.timeframe = "future"
            elif rule.tag == IntentTag.RECIPE:
                result.main_keyword = strip_recipe_triggers(text) or None
            return result

        return IntentResult(IntentTag.UNKNOWN)

    def get_supported_intents(self) -> List[str]:
        """Get list of supported intents, in priority order."""
        return [rule.tag.value for rule in self._rules]
