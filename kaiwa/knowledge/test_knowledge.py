"""
Unit Tests for Knowledge Backends
=================================

Each backend is exercised with its HTTP helpers (``_get_json`` /
``_get_text``) patched, so payload parsing, normalization into
KnowledgeAnswer and error handling are covered without network access.
"""

import asyncio
import datetime
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest

from kaiwa.config import KnowledgeConfig
from kaiwa.error_handling import (
    BackendError, BackendTimeoutError, CircuitBreaker, CircuitOpenError, CircuitState,
)
from kaiwa.knowledge import (
    AdviceBackend, Answer, BaseBackend, CalculatorBackend, DuckDuckGoBackend, JokeBackend,
    KnowledgeAnswer, NoAnswer, RecipeBackend, TransientError, WeatherBackend, WikidataBackend,
    WikipediaBackend, build_backends,
)
from kaiwa.knowledge.calculator import normalize_expression
from kaiwa.knowledge.weather import ForecastDay, describe_code, select_days


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedBackend(BaseBackend):
    """Backend whose lookup behaviour is set per test."""

    name = "scripted"

    def __init__(self, behaviour, **kwargs):
        super().__init__(**kwargs)
        self.behaviour = behaviour
        self.calls = 0

    async def _lookup(self, q: Optional[str], **kwargs) -> Optional[KnowledgeAnswer]:
        self.calls += 1
        return await self.behaviour(q)


async def answer(q):
    return KnowledgeAnswer("scripted", q, "ok")


async def explode(q):
    raise BackendError("scripted", "HTTP 503")


async def hang(q):
    await asyncio.sleep(5)


class TestBaseBackend:
    """Error normalization, timeouts and circuit breaking."""

    @pytest.mark.asyncio
    async def test_answer_and_no_answer(self):
        async def nothing(q):
            return None

        assert isinstance(await ScriptedBackend(answer).query("x"), Answer)
        assert isinstance(await ScriptedBackend(nothing).query("x"), NoAnswer)

    @pytest.mark.asyncio
    async def test_empty_query_skips_lookup(self):
        backend = ScriptedBackend(answer)
        outcome = await backend.query("   ")
        assert isinstance(outcome, NoAnswer)
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_exception_becomes_transient_error(self):
        outcome = await ScriptedBackend(explode).query("x")
        assert isinstance(outcome, TransientError)
        assert isinstance(outcome.error, BackendError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_transient_error(self):
        outcome = await ScriptedBackend(hang, timeout=0.01).query("x")
        assert isinstance(outcome, TransientError)
        assert isinstance(outcome.error, BackendTimeoutError)

    @pytest.mark.asyncio
    async def test_circuit_opens_and_recovers(self):
        clock = FakeClock()
        breaker = CircuitBreaker("scripted", failure_threshold=2, recovery_timeout=30, clock=clock)
        backend = ScriptedBackend(explode, breaker=breaker)

        await backend.query("x")
        await backend.query("x")
        assert breaker.state == CircuitState.OPEN

        rejected = await backend.query("x")
        assert isinstance(rejected.error, CircuitOpenError)
        assert backend.calls == 2

        clock.now += 30
        backend.behaviour = answer
        assert isinstance(await backend.query("x"), Answer)
        assert breaker.state == CircuitState.CLOSED
        assert backend.get_stats()["total_rejections"] == 1

    @pytest.mark.asyncio
    async def test_failed_trial_call_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("scripted", failure_threshold=1, recovery_timeout=10, clock=clock)
        backend = ScriptedBackend(explode, breaker=breaker)

        await backend.query("x")
        clock.now += 10
        await backend.query("x")

        assert breaker.state == CircuitState.OPEN
        assert backend.calls == 2


class TestWikipediaBackend:
    """OpenSearch then REST summary."""

    @pytest.mark.asyncio
    async def test_first_title_with_extract_wins(self):
        backend = WikipediaBackend()
        responses = [
            ["東京", ["東京 (曖昧さ回避)", "東京都"], [], []],
            {"title": "東京 (曖昧さ回避)"},
            {"title": "東京都", "extract": "日本の首都。"},
        ]
        with patch.object(backend, "_get_json", AsyncMock(side_effect=responses)) as get_json:
            outcome = await backend.query("東京")

        assert outcome.answer.title == "東京都"
        assert outcome.answer.text == "日本の首都。"
        assert outcome.answer.source_kind == "encyclopedia"
        assert get_json.await_args_list[0].kwargs["params"]["search"] == "東京"
        assert get_json.await_args_list[2].args[0].endswith("/api/rest_v1/page/summary/%E6%9D%B1%E4%BA%AC%E9%83%BD")

    @pytest.mark.asyncio
    async def test_no_titles(self):
        backend = WikipediaBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value=["zzz", [], [], []])):
            assert isinstance(await backend.query("zzz"), NoAnswer)

    @pytest.mark.asyncio
    async def test_long_extract_is_clipped(self):
        backend = WikipediaBackend(max_text_length=10)
        responses = [["q", ["T"], [], []], {"title": "T", "extract": "あ" * 50}]
        with patch.object(backend, "_get_json", AsyncMock(side_effect=responses)):
            outcome = await backend.query("q")
        assert outcome.answer.text == "あ" * 10 + "..."

    @pytest.mark.asyncio
    async def test_malformed_payload_is_transient(self):
        backend = WikipediaBackend()
        responses = [["q", ["T"], [], []], ValueError("bad json")]
        with patch.object(backend, "_get_json", AsyncMock(side_effect=responses)):
            assert isinstance(await backend.query("q"), TransientError)


class TestWebSummaryBackends:
    """DuckDuckGo and Wikidata."""

    @pytest.mark.asyncio
    async def test_duckduckgo(self):
        backend = DuckDuckGoBackend()
        payload = {"Heading": "Python", "AbstractText": "A programming language."}
        with patch.object(backend, "_get_json", AsyncMock(return_value=payload)):
            outcome = await backend.query("python")

        assert outcome.answer.title == "Python"
        assert outcome.answer.source_tag == "duckduckgo"
        assert outcome.answer.meta["url"] == "https://duckduckgo.com/?q=python"

    @pytest.mark.asyncio
    async def test_duckduckgo_empty_abstract(self):
        backend = DuckDuckGoBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value={"Heading": "x", "AbstractText": ""})):
            assert isinstance(await backend.query("x"), NoAnswer)

    @pytest.mark.asyncio
    async def test_wikidata(self):
        backend = WikidataBackend()
        payload = {"search": [{"id": "Q1490", "label": "東京都", "description": "日本の首都"}]}
        with patch.object(backend, "_get_json", AsyncMock(return_value=payload)):
            outcome = await backend.query("東京")

        assert outcome.answer.title == "東京都"
        assert outcome.answer.text == "日本の首都"
        assert outcome.answer.meta == {"id": "Q1490"}

    @pytest.mark.asyncio
    async def test_wikidata_without_description(self):
        backend = WikidataBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value={"search": [{"label": "X"}]})):
            assert isinstance(await backend.query("X"), NoAnswer)


class TestWeatherBackend:
    """Geocoding plus current or next-day forecast."""

    GEOCODE = [{"lat": "35.68", "lon": "139.76", "display_name": "東京都"}]

    @pytest.mark.asyncio
    async def test_current_weather(self):
        backend = WeatherBackend()
        forecast = {"current_weather": {"temperature": 21.5, "windspeed": 3.2, "weathercode": 1}}
        with patch.object(backend, "_get_json", AsyncMock(side_effect=[self.GEOCODE, forecast])) as get_json:
            outcome = await backend.query("東京", timeframe="now")

        assert outcome.answer.title == "東京"
        assert outcome.answer.text == "東京都 の現在の天気: 晴れ、気温 21.5°C、風速 3.2 m/s（取得元: Open-Meteo）"
        params = get_json.await_args_list[1].kwargs["params"]
        assert params["latitude"] == 35.68 and params["current_weather"] == "true"

    @pytest.mark.asyncio
    async def test_tomorrow_forecast(self):
        backend = WeatherBackend()
        forecast = {"daily": {"weathercode": [0, 61], "temperature_2m_max": [20, 25],
                              "temperature_2m_min": [12, 18]}}
        with patch.object(backend, "_get_json", AsyncMock(side_effect=[self.GEOCODE, forecast])) as get_json:
            outcome = await backend.query("東京", timeframe="future")

        assert "明日の天気: 弱い雨" in outcome.answer.text
        assert "最高 25°C／最低 18°C" in outcome.answer.text
        assert "daily" in get_json.await_args_list[1].kwargs["params"]

    @pytest.mark.asyncio
    async def test_unknown_place(self):
        backend = WeatherBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value=[])) as get_json:
            assert isinstance(await backend.query("どこでもない"), NoAnswer)
        get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_daily_series(self):
        backend = WeatherBackend()
        forecast = {"daily": {"weathercode": [0], "temperature_2m_max": [20], "temperature_2m_min": [12]}}
        with patch.object(backend, "_get_json", AsyncMock(side_effect=[self.GEOCODE, forecast])):
            assert isinstance(await backend.query("東京", timeframe="future"), NoAnswer)

    # eight days starting on Thursday 2026-06-11
    WEEK = {"daily": {
        "time": [f"2026-06-{day}" for day in range(11, 19)],
        "weathercode": [0, 1, 2, 3, 61, 63, 71, 95],
        "temperature_2m_max": [20, 21, 22, 23, 24, 25, 26, 27],
        "temperature_2m_min": [10, 11, 12, 13, 14, 15, 16, 17],
    }}

    async def _future(self, day):
        backend = WeatherBackend()
        with patch.object(backend, "_get_json", AsyncMock(side_effect=[self.GEOCODE, self.WEEK])) as get_json:
            outcome = await backend.query("東京", timeframe="future", forecast_day=day)
        return outcome, get_json.await_args_list[1].kwargs["params"]

    @pytest.mark.asyncio
    async def test_day_after_tomorrow(self):
        outcome, params = await self._future(ForecastDay.DAY_AFTER_TOMORROW)

        assert outcome.answer.text == "東京都 の明後日の天気: 晴れ時々曇り、最高 22°C／最低 12°C（取得元: Open-Meteo）"
        assert params["forecast_days"] == "3"

    @pytest.mark.asyncio
    async def test_weekend(self):
        outcome, params = await self._future(ForecastDay.WEEKEND)

        assert outcome.answer.text == (
            "東京都 の週末の天気: 6/13(土)は晴れ時々曇り（最高 22°C／最低 12°C）、"
            "6/14(日)は曇り（最高 23°C／最低 13°C）（取得元: Open-Meteo）"
        )
        assert [d["date"] for d in outcome.answer.meta["days"]] == ["6/13(土)", "6/14(日)"]
        assert params["forecast_days"] == "8"

    @pytest.mark.asyncio
    async def test_next_week(self):
        outcome, _ = await self._future(ForecastDay.NEXT_WEEK)
        assert outcome.answer.text == "東京都 の来週 6/18(木)の天気: 雷雨、最高 27°C／最低 17°C（取得元: Open-Meteo）"

    @pytest.mark.asyncio
    async def test_outlook(self):
        outcome, params = await self._future(ForecastDay.OUTLOOK)

        assert outcome.answer.meta["label"] == "今後3日間"
        assert [d["date"] for d in outcome.answer.meta["days"]] == ["6/12(金)", "6/13(土)", "6/14(日)"]
        assert outcome.answer.text.startswith("東京都 の今後3日間の天気: 6/12(金)は晴れ（最高 21°C／最低 11°C）、")
        assert params["forecast_days"] == "4"

    @pytest.mark.asyncio
    async def test_weekend_without_dates(self):
        backend = WeatherBackend()
        forecast = {"daily": {key: value for key, value in self.WEEK["daily"].items() if key != "time"}}
        with patch.object(backend, "_get_json", AsyncMock(side_effect=[self.GEOCODE, forecast])):
            outcome = await backend.query("東京", timeframe="future", forecast_day=ForecastDay.WEEKEND)
        assert isinstance(outcome, NoAnswer)

    def test_select_days(self):
        sunday = [datetime.date(2026, 6, 14) + datetime.timedelta(days=i) for i in range(8)]
        friday = [datetime.date(2026, 6, 12) + datetime.timedelta(days=i) for i in range(2)]

        assert select_days(ForecastDay.TOMORROW, [], 2) == [1]
        assert select_days(ForecastDay.WEEKEND, sunday, 8) == [0]
        assert select_days(ForecastDay.WEEKEND, sunday[:7], 7) == [0]
        assert select_days(ForecastDay.WEEKEND, friday, 2) == [1]
        assert select_days(ForecastDay.NEXT_WEEK, sunday[:7], 7) == []
        assert select_days(ForecastDay.OUTLOOK, sunday[:3], 3) == []

    def test_custom_geocoder_url(self):
        assert WeatherBackend(geocoder_url="http://geo.local/").geocoder_url == "http://geo.local"

    def test_describe_code(self):
        assert describe_code(3) == "曇り"
        assert describe_code("95") == "雷雨"
        assert describe_code(42) == "天気コード42"
        assert describe_code(None) == "不明"


class TestJokeAndAdvice:
    """Joke with advice fallback."""

    @pytest.mark.asyncio
    async def test_joke(self):
        backend = JokeBackend()
        payload = {"setup": "Why?", "punchline": "Because."}
        with patch.object(backend, "_get_json", AsyncMock(return_value=payload)):
            outcome = await backend.query()

        assert outcome.answer.source_tag == "joke"
        assert outcome.answer.text.startswith("Why?")
        assert outcome.answer.text.endswith("Because.")

    @pytest.mark.asyncio
    async def test_joke_failure_falls_back_to_advice(self):
        advice = AdviceBackend()
        backend = JokeBackend(advice=advice)
        with patch.object(backend, "_get_json", AsyncMock(side_effect=BackendError("joke", "HTTP 500"))), \
                patch.object(advice, "_get_json", AsyncMock(return_value={"slip": {"id": 1, "advice": "Sleep."}})):
            outcome = await backend.query()

        assert outcome.answer.source_tag == "advice-slip"
        assert outcome.answer.text == "Sleep."
        assert outcome.answer.source_kind == "advice"

    @pytest.mark.asyncio
    async def test_slow_joke_still_leaves_time_for_advice(self):
        async def stall(*args, **kwargs):
            await asyncio.sleep(5)

        advice = AdviceBackend(timeout=0.2)
        backend = JokeBackend(advice=advice, timeout=0.2)
        with patch.object(backend, "_get_json", AsyncMock(side_effect=stall)), \
                patch.object(advice, "_get_json", AsyncMock(return_value={"slip": {"advice": "Relax."}})):
            outcome = await backend.query()

        assert isinstance(outcome, Answer)
        assert outcome.answer.source_tag == "advice-slip"
        assert outcome.answer.text == "Relax."

    @pytest.mark.asyncio
    async def test_joke_without_advice(self):
        backend = JokeBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value={})):
            assert isinstance(await backend.query(), NoAnswer)

    @pytest.mark.asyncio
    async def test_advice(self):
        backend = AdviceBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value={"slip": {"advice": "Drink water."}})):
            outcome = await backend.query()
        assert outcome.answer.text == "Drink water."


class TestRecipeBackend:
    """TheMealDB parsing."""

    @pytest.mark.asyncio
    async def test_recipe(self):
        backend = RecipeBackend()
        meal = {
            "strMeal": "Chicken Curry",
            "strInstructions": "Cut the chicken.\r\nCook the rice. Serve hot. Enjoy.",
            "strIngredient1": "Chicken", "strMeasure1": "500g",
            "strIngredient2": "Rice", "strMeasure2": " ",
            "strIngredient3": "", "strMeasure3": "",
        }
        with patch.object(backend, "_get_json", AsyncMock(return_value={"meals": [meal]})) as get_json:
            outcome = await backend.query("curry")

        assert outcome.answer.title == "Chicken Curry"
        assert outcome.answer.text == (
            "材料: Chicken 500g、Rice / 手順: 1. Cut the chicken. 2. Cook the rice. 3. Serve hot."
        )
        assert outcome.answer.meta["step_count"] == 4
        assert get_json.await_args.kwargs["params"] == {"s": "curry"}

    @pytest.mark.asyncio
    async def test_no_meals(self):
        backend = RecipeBackend()
        with patch.object(backend, "_get_json", AsyncMock(return_value={"meals": None})):
            assert isinstance(await backend.query("zzz"), NoAnswer)


class TestCalculatorBackend:
    """Expression normalization and evaluation."""

    @pytest.mark.parametrize("text,expected", [
        ("3+4は？", "3+4"),
        ("２×３を計算して", "2*3"),
        ("10割る2", "10/2"),
        ("2の平方根", "sqrt(2)"),
        ("(1 + 2) * 3 =", "(1 + 2) * 3"),
        ("こんにちは", None),
        ("2024年", None),
    ])
    def test_normalize_expression(self, text, expected):
        assert normalize_expression(text) == expected

    @pytest.mark.asyncio
    async def test_evaluate(self):
        backend = CalculatorBackend()
        with patch.object(backend, "_get_text", AsyncMock(return_value="7\n")) as get_text:
            outcome = await backend.query("3+4は？")

        assert outcome.answer.text == "3+4 = 7"
        assert outcome.answer.meta == {"expression": "3+4", "result": "7"}
        assert get_text.await_args.kwargs["params"] == {"expr": "3+4"}

    @pytest.mark.asyncio
    async def test_no_expression_skips_request(self):
        backend = CalculatorBackend()
        with patch.object(backend, "_get_text", AsyncMock()) as get_text:
            assert isinstance(await backend.query("計算して"), NoAnswer)
        get_text.assert_not_awaited()


class TestBuildBackends:
    """Factory wiring from configuration."""

    def test_defaults(self):
        backends = build_backends()
        assert backends.encyclopedia.base_url == "https://ja.wikipedia.org"
        assert [b.name for b in backends.web_summary] == ["duckduckgo", "wikidata"]
        assert backends.joke.advice is backends.advice
        assert set(backends.get_stats()) == {
            "wikipedia", "open-meteo", "joke", "advice", "themealdb", "mathjs", "duckduckgo", "wikidata",
        }

    def test_from_config(self):
        config = KnowledgeConfig(
            timeout=2.0,
            user_agent="test-agent",
            circuit_failure_threshold=3,
            web_summary_providers=["wikidata", "unknown"],
            endpoints={"wikipedia": "https://wiki.example.org/", "nominatim": "https://geo.example.org"},
        )
        backends = build_backends(config)

        assert backends.encyclopedia.base_url == "https://wiki.example.org"
        assert backends.weather.geocoder_url == "https://geo.example.org"
        assert [b.name for b in backends.web_summary] == ["wikidata"]
        assert all(b.timeout == 2.0 and b.user_agent == "test-agent" for b in backends.all())
        assert backends.recipe.breaker.failure_threshold == 3
