"""
Response Composer
=================

Phrasing pools and reply assembly. Pools are data keyed by persona and pool
name; any missing or empty pool falls back to the neutral persona and then to
the built-in defaults, so a pick never comes up empty.
"""

import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from kaiwa.knowledge.base import KnowledgeAnswer

logger = logging.getLogger(__name__)

NEUTRAL = "neutral"

DEFAULT_POOLS: Dict[str, Dict[str, List[str]]] = {
    NEUTRAL: {
        'welcome': ['何か質問はありますか？'],
        'greeting': [
            'こんにちは！今日どうする？',
            'やあ！何か知りたい？',
            'おっす、調べ・雑談どっちがいい？',
        ],
        'thanks': ['どういたしまして！', 'いつでも聞いてね。'],
        'clarify': [
            'いい質問だね…少し考えさせて。',
            'その点については色々な見方があるよ。具体的にはどの部分が気になる？',
            'なるほど、もう少し背景を教えてくれる？',
        ],
        'smalltalk': [
            'ふむ、なるほどね。',
            'へえ、そうなんだ！',
            '面白いね。もっと聞かせて？',
            'いいね、その話。',
        ],
        'weather-failed': [
            'ごめん、場所の特定ができなかったか、天気情報を取得できませんでした。地名を教えてもらえる？',
        ],
        'answer:encyclopedia': ['お調べしました：「{title}」 — {text} 他にも知りたい？'],
        'answer:web_summary': [
            'ちょっと調べたら：「{title}」 — {text}。どうする？',
            '{title} に関する情報です： {text} もっと詳しく？',
        ],
        'answer:weather': ['{text} 何か他に知りたい？'],
        'answer:joke': ['{text}'],
        'answer:advice': ['{text}'],
        'answer:recipe': ['「{title}」の作り方だよ。{text}'],
        'answer:calculator': ['計算結果は {text} だよ。'],
        'answer': ['{text}'],
    },
    'snarky': {
        'smalltalk': [
            'そう？でも本気で言ってるの？',
            'おや、それは意外（としか言えない）',
            'ふーん、君は勇気あるね。',
        ],
    },
    'kind': {
        'smalltalk': [
            'いいね、よくやったね。',
            '素敵な話だね。ありがとう。',
            'そういうの聞けて嬉しいよ。',
        ],
    },
}


class PhrasePools:
    """Persona-tagged phrase pools with neutral fallback."""

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, Sequence[str]]]] = None):
        self._pools: Dict[str, Dict[str, List[str]]] = {
            persona: {name: list(phrases) for name, phrases in pools.items()}
            for persona, pools in DEFAULT_POOLS.items()
        }
        for persona, pools in (overrides or {}).items():
            if not isinstance(pools, Mapping):
                logger.warning(f"Ignoring malformed phrase pools for persona {persona!r}")
                continue
            target = self._pools.setdefault(persona, {})
            for name, phrases in pools.items():
                target[name] = [str(p) for p in (phrases or []) if p]

    @property
    def personas(self) -> List[str]:
        return list(self._pools.keys())

    def has_persona(self, persona: Optional[str]) -> bool:
        return bool(persona) and persona in self._pools

    def get(self, name: str, persona: Optional[str] = None,
            fallback: Optional[str] = None) -> List[str]:
        """Non-empty phrase list for ``name``, or for ``fallback`` when no pool has it."""
        for candidate in (persona, NEUTRAL):
            phrases = self._pools.get(candidate or NEUTRAL, {}).get(name)
            if phrases:
                return phrases
        phrases = DEFAULT_POOLS[NEUTRAL].get(name)
        if phrases:
            return phrases
        if fallback:
            return self.get(fallback, persona)
        logger.warning(f"No phrase pool named {name!r}, using neutral smalltalk")
        return DEFAULT_POOLS[NEUTRAL]['smalltalk']


class ResponseComposer:
    """Builds reply text from answers and phrase pools."""

    def __init__(self, pools: Optional[PhrasePools] = None, rng: Optional[random.Random] = None):
        self.pools = pools or PhrasePools()
        self.rng = rng or random.Random()

    def pick(self, pool: str, persona: Optional[str] = None) -> str:
        """Uniformly random phrase from the named pool."""
        return self.rng.choice(self.pools.get(pool, persona))

    def welcome(self, persona: Optional[str] = None) -> str:
        return self.pick('welcome', persona)

    def smalltalk(self, persona: Optional[str] = None) -> str:
        return self.pick('smalltalk', persona)

    def compose(self, answer: KnowledgeAnswer, persona: Optional[str] = None) -> str:
        """Wrap a backend answer in a source-specific template."""
        pool = self.pools.get(f"answer:{answer.source_kind}", persona, fallback="answer")
        template = self.rng.choice(pool)
        values: Dict[str, Any] = {'title': answer.title, 'text': answer.text}
        try:
            return template.format(**values)
        except (KeyError, IndexError, ValueError) as e:
            logger.warning(f"Bad answer template {template!r}: {e}")
            return answer.text
