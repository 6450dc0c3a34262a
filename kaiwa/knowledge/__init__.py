"""
Knowledge Backends
==================

External knowledge providers behind one normalized interface, and the
factory that wires them from configuration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kaiwa.error_handling import CircuitBreaker

from .base import (
    Answer, BaseBackend, KnowledgeAnswer, NoAnswer, Outcome, TransientError,
    DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, MAX_TEXT_LENGTH,
)
from .calculator import CalculatorBackend
from .encyclopedia import WikipediaBackend
from .jokes import AdviceBackend, JokeBackend
from .recipe import RecipeBackend
from .weather import ForecastDay, WeatherBackend
from .web_summary import DuckDuckGoBackend, WikidataBackend

WEB_SUMMARY_PROVIDERS = {
    'duckduckgo': DuckDuckGoBackend,
    'wikidata': WikidataBackend,
}


@dataclass
class KnowledgeBackends:
    """The set of backends the router may try."""
    encyclopedia: Optional[BaseBackend] = None
    web_summary: List[BaseBackend] = field(default_factory=list)
    weather: Optional[BaseBackend] = None
    joke: Optional[BaseBackend] = None
    advice: Optional[BaseBackend] = None
    recipe: Optional[BaseBackend] = None
    calculator: Optional[BaseBackend] = None

    def all(self) -> List[BaseBackend]:
        singles = [self.encyclopedia, self.weather, self.joke, self.advice, self.recipe, self.calculator]
        return [b for b in singles if b is not None] + list(self.web_summary)

    def get_stats(self) -> Dict[str, Any]:
        return {backend.name: backend.get_stats() for backend in self.all()}


def build_backends(config: Any = None) -> KnowledgeBackends:
    """
    Create backends from a KnowledgeConfig (or defaults when None).

    Args:
        config: Object with ``timeout``, ``user_agent``, ``max_text_length``,
            ``circuit_failure_threshold``, ``circuit_recovery_timeout``,
            ``web_summary_providers`` and ``endpoints`` attributes
    """
    timeout = getattr(config, 'timeout', DEFAULT_TIMEOUT)
    user_agent = getattr(config, 'user_agent', DEFAULT_USER_AGENT)
    max_text_length = getattr(config, 'max_text_length', MAX_TEXT_LENGTH)
    threshold = getattr(config, 'circuit_failure_threshold', 5)
    recovery = getattr(config, 'circuit_recovery_timeout', 60.0)
    endpoints: Dict[str, str] = getattr(config, 'endpoints', None) or {}
    providers = getattr(config, 'web_summary_providers', None) or list(WEB_SUMMARY_PROVIDERS)

    def make(cls, **extra):
        return cls(
            timeout=timeout,
            user_agent=user_agent,
            base_url=endpoints.get(cls.name),
            max_text_length=max_text_length,
            breaker=CircuitBreaker(cls.name, failure_threshold=threshold, recovery_timeout=recovery),
            **extra,
        )

    advice = make(AdviceBackend)
    return KnowledgeBackends(
        encyclopedia=make(WikipediaBackend),
        web_summary=[make(WEB_SUMMARY_PROVIDERS[p]) for p in providers if p in WEB_SUMMARY_PROVIDERS],
        weather=make(WeatherBackend, geocoder_url=endpoints.get('nominatim')),
        joke=make(JokeBackend, advice=advice),
        advice=advice,
        recipe=make(RecipeBackend),
        calculator=make(CalculatorBackend),
    )


__all__ = [
    'Answer', 'NoAnswer', 'TransientError', 'Outcome', 'KnowledgeAnswer', 'BaseBackend',
    'WikipediaBackend', 'DuckDuckGoBackend', 'WikidataBackend', 'WeatherBackend',
    'ForecastDay', 'JokeBackend', 'AdviceBackend', 'RecipeBackend', 'CalculatorBackend',
    'KnowledgeBackends', 'build_backends', 'WEB_SUMMARY_PROVIDERS',
]
