"""
Weather lookups against the OpenWeather API.

With the ``demo`` key no network call is made: reports are simulated from a
hash of the city name, so the same city always yields the same numbers.
"""
import zlib
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

import aiohttp
import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger(__name__)

OPENWEATHER_BASE_URL = "https://api.openweathermap.org/data/2.5"
DEMO_API_KEY = "demo"
UNITS = ("metric", "imperial", "standard")
_DEMO_CONDITIONS = ("clear sky", "few clouds", "scattered clouds", "light rain", "overcast clouds", "mist")


class WeatherServiceError(Exception):
    """Raised when a weather report cannot be produced (bad city, API failure)."""
    pass


class _Condition(BaseModel):
    main: str = ""
    description: str = "Unknown"

class _MainData(BaseModel):
    temp: float
    feels_like: float
    temp_min: float
    temp_max: float
    pressure: int
    humidity: int

class _Wind(BaseModel):
    speed: float = 0.0
    deg: int | None = None

class _Sys(BaseModel):
    country: str | None = None

class _CurrentWeather(BaseModel):
    name: str
    weather: list[_Condition] = Field(default_factory=list)
    main: _MainData
    wind: _Wind = Field(default_factory=_Wind)
    sys: _Sys | None = None

class _ForecastItem(BaseModel):
    dt_txt: str
    main: _MainData
    weather: list[_Condition] = Field(default_factory=list)

class _City(BaseModel):
    name: str
    country: str = ""

class _Forecast(BaseModel):
    model_config = {"populate_by_name": True}

    items: list[_ForecastItem] = Field(..., alias="list")
    city: _City


def unit_symbol(units: str) -> str:
    return {"metric": "°C", "imperial": "°F"}.get(units, "K")


def _convert_celsius(value: float, units: str) -> float:
    if units == "imperial":
        return round(value * 9 / 5 + 32, 1)
    if units == "standard":
        return round(value + 273.15, 2)
    return round(value, 1)


class WeatherService:
    """OpenWeather client. Creates its own aiohttp session lazily unless one is passed in."""

    def __init__(
        self,
        api_key: str = DEMO_API_KEY,
        base_url: str = OPENWEATHER_BASE_URL,
        request_timeout_seconds: float = 10.0,
        aiohttp_session: aiohttp.ClientSession | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.request_timeout_seconds = request_timeout_seconds
        self._session = aiohttp_session
        self._owns_session = aiohttp_session is None

    @property
    def demo_mode(self) -> bool:
        return not self.api_key or self.api_key == DEMO_API_KEY

    async def get_current_weather(self, city: str, units: str = "metric") -> str:
        units = units if units in UNITS else "metric"
        logger.info("Fetching current weather.", city=city, units=units, demo=self.demo_mode)
        if self.demo_mode:
            return self._simulated_current(city, units)
        payload = await self._get_json("weather", {"q": city, "units": units})
        try:
            data = _CurrentWeather.model_validate(payload)
        except ValidationError as e:
            raise WeatherServiceError(f"Unexpected weather response for {city}") from e
        return self._format_current(data, units)

    async def get_weather_forecast(self, city: str, units: str = "metric", days: int = 3) -> str:
        units = units if units in UNITS else "metric"
        days = max(1, min(5, days))
        logger.info("Fetching weather forecast.", city=city, units=units, days=days, demo=self.demo_mode)
        if self.demo_mode:
            return self._simulated_forecast(city, units, days)
        # 8 forecasts per day (3-hour intervals)
        payload = await self._get_json("forecast", {"q": city, "units": units, "cnt": str(days * 8)})
        try:
            data = _Forecast.model_validate(payload)
        except ValidationError as e:
            raise WeatherServiceError(f"Unexpected forecast response for {city}") from e
        return self._format_forecast(data, units, days)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get_json(self, endpoint: str, params: dict[str, str]) -> object:
        url = f"{self.base_url}/{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout_seconds)
        try:
            async with self._get_session().get(url, params={**params, "appid": self.api_key}, timeout=timeout) as response:
                if response.status != 200:
                    logger.error("Weather API error.", status=response.status, endpoint=endpoint)
                    raise WeatherServiceError(
                        f"Failed to fetch {endpoint}: HTTP {response.status}. Please check if the city name is correct."
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error("Weather API request failed.", endpoint=endpoint, error=str(e))
            raise WeatherServiceError(f"Weather service unavailable: {e}") from e
        except TimeoutError as e:
            raise WeatherServiceError(f"Weather service timed out after {self.request_timeout_seconds}s") from e

    @staticmethod
    def _format_current(data: _CurrentWeather, units: str) -> str:
        symbol = unit_symbol(units)
        wind_unit = "m/s" if units in ("metric", "standard") else "mph"
        location = data.name + (f", {data.sys.country}" if data.sys and data.sys.country else "")
        condition = data.weather[0].description if data.weather else "Unknown"
        wind = f"{data.wind.speed} {wind_unit}" + (f" from {data.wind.deg}°" if data.wind.deg is not None else "")
        return "\n".join([
            f"Weather in {location}",
            "",
            f"Temperature: {data.main.temp}{symbol} (feels like {data.main.feels_like}{symbol})",
            f"Conditions: {condition}",
            f"Humidity: {data.main.humidity}%",
            f"Pressure: {data.main.pressure} hPa",
            f"Wind: {wind}",
            f"Min/Max: {data.main.temp_min}{symbol} / {data.main.temp_max}{symbol}",
        ])

    @staticmethod
    def _format_forecast(data: _Forecast, units: str, days: int) -> str:
        symbol = unit_symbol(units)
        location = data.city.name + (f", {data.city.country}" if data.city.country else "")
        by_day: OrderedDict[str, list[_ForecastItem]] = OrderedDict()
        for item in data.items:
            by_day.setdefault(item.dt_txt[:10], []).append(item)

        lines = [f"{days}-Day Weather Forecast for {location}", ""]
        for date, items in list(by_day.items())[:days]:
            lines.append(date)
            for item in items[:4]: # at most four slots per day
                condition = item.weather[0].description if item.weather else "Unknown"
                lines.append(f"  {item.dt_txt[11:16]} - {item.main.temp}{symbol}, {condition}")
            lines.append("")
        return "\n".join(lines).rstrip()

    @staticmethod
    def _seed(city: str) -> int:
        return zlib.crc32(city.strip().lower().encode("utf-8"))

    def _simulated_current(self, city: str, units: str) -> str:
        seed = self._seed(city)
        celsius = (seed % 350) / 10 - 5 # -5.0 .. 29.9
        data = _CurrentWeather(
            name=city.strip(),
            weather=[_Condition(description=_DEMO_CONDITIONS[seed % len(_DEMO_CONDITIONS)])],
            main=_MainData(
                temp=_convert_celsius(celsius, units),
                feels_like=_convert_celsius(celsius - 1.5, units),
                temp_min=_convert_celsius(celsius - 3, units),
                temp_max=_convert_celsius(celsius + 3, units),
                pressure=990 + seed % 40,
                humidity=35 + seed % 60,
            ),
            wind=_Wind(speed=round((seed % 120) / 10, 1), deg=seed % 360),
        )
        return self._format_current(data, units) + "\n\n(Simulated data: no OpenWeather API key configured)"

    def _simulated_forecast(self, city: str, units: str, days: int) -> str:
        seed = self._seed(city)
        start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        items = []
        for day in range(days):
            for slot, hour in enumerate((0, 6, 12, 18)):
                celsius = (seed % 250) / 10 + (day * 7 + slot * 3) % 9 - 4
                when = start + timedelta(days=day, hours=hour)
                items.append(_ForecastItem(
                    dt_txt=when.strftime("%Y-%m-%d %H:%M:%S"),
                    main=_MainData(
                        temp=_convert_celsius(celsius, units),
                        feels_like=_convert_celsius(celsius - 1, units),
                        temp_min=_convert_celsius(celsius - 2, units),
                        temp_max=_convert_celsius(celsius + 2, units),
                        pressure=1000 + (seed + day) % 25,
                        humidity=40 + (seed + slot) % 50,
                    ),
                    weather=[_Condition(description=_DEMO_CONDITIONS[(seed + day + slot) % len(_DEMO_CONDITIONS)])],
                ))
        data = _Forecast(items=items, city=_City(name=city.strip()))
        return self._format_forecast(data, units, days) + "\n\n(Simulated data: no OpenWeather API key configured)"
