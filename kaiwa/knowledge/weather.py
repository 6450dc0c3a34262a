"""
Weather Backend
===============

Two-step lookup: Nominatim geocoding, then an Open-Meteo forecast. "now"
reads the current conditions; "future" reads the daily summary for the day
(or days) named by ``forecast_day``: tomorrow, the day after, the coming
weekend, the same weekday next week, or a three-day outlook.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import BaseBackend, KnowledgeAnswer

logger = logging.getLogger(__name__)

# WMO weather interpretation codes
WEATHER_CODES: Dict[int, str] = {
    0: "快晴",
    1: "晴れ",
    2: "晴れ時々曇り",
    3: "曇り",
    45: "霧",
    48: "霧氷",
    51: "弱い霧雨",
    53: "霧雨",
    55: "強い霧雨",
    56: "着氷性の霧雨",
    57: "強い着氷性の霧雨",
    61: "弱い雨",
    63: "雨",
    65: "強い雨",
    66: "着氷性の雨",
    67: "強い着氷性の雨",
    71: "弱い雪",
    73: "雪",
    75: "強い雪",
    77: "霧雪",
    80: "にわか雨",
    81: "強いにわか雨",
    82: "激しいにわか雨",
    85: "にわか雪",
    86: "強いにわか雪",
    95: "雷雨",
    96: "雷雨（ひょう）",
    99: "激しい雷雨（ひょう）",
}


def describe_code(code: Any) -> str:
    try:
        return WEATHER_CODES.get(int(code), f"天気コード{int(code)}")
    except (TypeError, ValueError):
        return "不明"


WEEKDAYS = "月火水木金土日"


class ForecastDay:
    """Which future day(s) a weather question asks about."""
    TOMORROW = "tomorrow"
    DAY_AFTER_TOMORROW = "day_after_tomorrow"
    WEEKEND = "weekend"
    NEXT_WEEK = "next_week"
    OUTLOOK = "outlook"


FORECAST_LABELS: Dict[str, str] = {
    ForecastDay.TOMORROW: "明日",
    ForecastDay.DAY_AFTER_TOMORROW: "明後日",
    ForecastDay.WEEKEND: "週末",
    ForecastDay.NEXT_WEEK: "来週",
    ForecastDay.OUTLOOK: "今後3日間",
}

# days of daily data to request, today included
FORECAST_SPAN: Dict[str, int] = {
    ForecastDay.TOMORROW: 2,
    ForecastDay.DAY_AFTER_TOMORROW: 3,
    ForecastDay.WEEKEND: 8,
    ForecastDay.NEXT_WEEK: 8,
    ForecastDay.OUTLOOK: 4,
}


def _parse_date(value: Any) -> Optional[datetime.date]:
    try:
        return datetime.date.fromisoformat(str(value))
    except (TypeError, ValueError):
        return None


def date_label(date: Optional[datetime.date], index: int) -> str:
    """``6/13(土)``, or ``N日後`` when the date is unknown."""
    if date is None:
        return f"{index}日後"
    return f"{date.month}/{date.day}({WEEKDAYS[date.weekday()]})"


def select_days(day: str, dates: Sequence[Optional[datetime.date]], available: int) -> List[int]:
    """
    Indices into the daily series (0 is today) that answer ``day``.

    Returns an empty list when the series is too short or, for the weekend,
    carries no dates.
    """
    if day == ForecastDay.DAY_AFTER_TOMORROW:
        wanted = [2]
    elif day == ForecastDay.NEXT_WEEK:
        wanted = [7]
    elif day == ForecastDay.OUTLOOK:
        wanted = [1, 2, 3]
    elif day == ForecastDay.WEEKEND:
        weekend = [i for i, d in enumerate(dates) if d is not None and d.weekday() >= 5]
        if not weekend:
            return []
        first = weekend[0]
        wanted = [first, first + 1] if dates[first].weekday() == 5 and first + 1 < available else [first]
    else:
        wanted = [1]
    if any(i >= available for i in wanted):
        return []
    return wanted


class WeatherBackend(BaseBackend):
    """Geocode-then-forecast weather lookup."""

    name = "open-meteo"
    kind = "weather"
    default_base_url = "https://api.open-meteo.com"
    geocoder_url = "https://nominatim.openstreetmap.org"

    def __init__(self, *args, geocoder_url: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        if geocoder_url:
            self.geocoder_url = geocoder_url.rstrip('/')

    async def geocode(self, place: str) -> Optional[Dict[str, Any]]:
        """Returns ``{"lat", "lon", "display_name"}`` for the best match, or None."""
        results = await self._get_json(
            f"{self.geocoder_url}/search",
            params={"format": "json", "q": place, "limit": "1", "accept-language": "ja"},
        )
        if not isinstance(results, list) or not results:
            return None
        top = results[0]
        return {
            "lat": float(top["lat"]),
            "lon": float(top["lon"]),
            "display_name": top.get("display_name") or place,
        }

    async def forecast(self, lat: float, lon: float, timeframe: str = "now",
                       forecast_day: str = ForecastDay.TOMORROW) -> Optional[Dict[str, Any]]:
        """
        Fetch conditions for a coordinate.

        Returns:
            ``{"temperature", "windspeed", "code"}`` for "now", or
            ``{"day", "label", "days"}`` for "future", where ``days`` lists
            ``{"date", "code", "temperature_max", "temperature_min"}``
        """
        params: Dict[str, Any] = {
            "latitude": lat,
            "longitude": lon,
            "timezone": "auto",
        }
        if timeframe == "future":
            params.update({
                "daily": "weathercode,temperature_2m_max,temperature_2m_min",
                "forecast_days": str(FORECAST_SPAN.get(forecast_day, 2)),
            })
        else:
            params.update({"current_weather": "true", "windspeed_unit": "ms"})

        data = await self._get_json(f"{self.base_url}/v1/forecast", params=params)
        if not isinstance(data, dict):
            return None

        if timeframe == "future":
            return self._daily_report(data.get("daily") or {}, forecast_day)

        current = data.get("current_weather")
        if not current:
            return None
        return {
            "temperature": current.get("temperature"),
            "windspeed": current.get("windspeed"),
            "code": current.get("weathercode"),
        }

    @staticmethod
    def _daily_report(daily: Dict[str, Any], forecast_day: str) -> Optional[Dict[str, Any]]:
        codes = daily.get("weathercode") or []
        highs = daily.get("temperature_2m_max") or []
        lows = daily.get("temperature_2m_min") or []
        dates = [_parse_date(d) for d in daily.get("time") or []]
        available = min(len(codes), len(highs), len(lows))
        dates += [None] * (available - len(dates))

        indices = select_days(forecast_day, dates, available)
        if not indices:
            logger.debug(f"No daily data for {forecast_day!r} ({available} days returned)")
            return None

        label = FORECAST_LABELS.get(forecast_day, FORECAST_LABELS[ForecastDay.TOMORROW])
        if forecast_day == ForecastDay.NEXT_WEEK:
            label = f"{label} {date_label(dates[indices[0]], indices[0])}"
        days = [
            {
                "date": date_label(dates[i], i),
                "code": codes[i],
                "temperature_max": highs[i],
                "temperature_min": lows[i],
            }
            for i in indices
        ]
        return {"day": forecast_day, "label": label, "days": days}

    async def _lookup(self, q: Optional[str], timeframe: str = "now",
                      forecast_day: str = ForecastDay.TOMORROW, **kwargs) -> Optional[KnowledgeAnswer]:
        place = await self.geocode(q)
        if not place:
            return None
        report = await self.forecast(place["lat"], place["lon"], timeframe, forecast_day)
        if not report:
            return None

        display = place["display_name"]
        if timeframe == "future":
            days = report["days"]
            if len(days) == 1:
                summary = (f"{describe_code(days[0]['code'])}、"
                           f"最高 {days[0]['temperature_max']}°C／最低 {days[0]['temperature_min']}°C")
            else:
                summary = "、".join(
                    f"{d['date']}は{describe_code(d['code'])}"
                    f"（最高 {d['temperature_max']}°C／最低 {d['temperature_min']}°C）"
                    for d in days
                )
            text = f"{display} の{report['label']}の天気: {summary}（取得元: Open-Meteo）"
        else:
            condition = describe_code(report["code"])
            text = (f"{display} の現在の天気: {condition}、"
                    f"気温 {report['temperature']}°C、風速 {report['windspeed']} m/s"
                    f"（取得元: Open-Meteo）")

        return KnowledgeAnswer(
            source_tag=self.name,
            title=q,
            text=text,
            meta={"lat": place["lat"], "lon": place["lon"], "timeframe": timeframe, **report},
            source_kind=self.kind,
        )
