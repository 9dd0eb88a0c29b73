# Notus: aggregate nearby air quality and weather sensor readings
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
OpenWeather Data Source.

Current weather (temperature, humidity and wind) for a location from the
OpenWeather current weather endpoint. Weather is recorded alongside the air
quality summaries so a reader can see which way the wind was blowing.

API Documentation: https://openweathermap.org/current
"""

import os
from logging import getLogger
from typing import Any

import requests

from ..decorators import retry_on_network_error
from ..errors import ProviderConfigurationError
from ..registry import register_provider
from ..settings import get_settings
from ..types import BBox, FetchResult, WeatherObservation

logger = getLogger(__name__)

PROVIDER_NAME = "OPENWEATHER"

API_URL = "https://api.openweathermap.org/data/2.5/weather"


def _get_api_key() -> str:
    api_key = os.getenv("OPENWEATHER_API_KEY")
    if not api_key:
        raise ProviderConfigurationError(
            "OpenWeather",
            "API key required. Set OPENWEATHER_API_KEY. "
            "Get your key at: https://home.openweathermap.org/api_keys",
        )
    return api_key


@retry_on_network_error
def _call_openweather_api(params: dict, timeout: float | None = None) -> dict:
    params = dict(params)
    params["appid"] = _get_api_key()

    if timeout is None:
        timeout = get_settings().request_timeout_seconds

    response = requests.get(API_URL, params=params, timeout=timeout)
    if response.status_code == 401:
        raise ProviderConfigurationError(
            "OpenWeather", "API authentication failed. Check your OPENWEATHER_API_KEY."
        )
    response.raise_for_status()
    return response.json()


def _number(value: Any) -> float | None:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def parse_weather(payload: dict) -> WeatherObservation:
    """
    Read a current-weather payload by field name.

    Missing sections leave the matching attributes as None.
    """
    main = payload.get("main") or {}
    wind = payload.get("wind") or {}
    conditions = payload.get("weather") or []
    description = conditions[0].get("description") if conditions else None

    return WeatherObservation(
        temperature_f=_number(main.get("temp")),
        humidity=_number(main.get("humidity")),
        wind_speed=_number(wind.get("speed")),
        wind_deg=_number(wind.get("deg")),
        description=description,
    )


def fetch_openweather_readings(
    latitude: float,
    longitude: float,
    bbox: BBox | None = None,
    sensor_ids: list[str] | None = None,
) -> FetchResult:
    """
    Fetch current weather for a point.

    Returns:
        FetchResult: `weather` set on success; on failure `weather` is None
            and `errors` holds the reason

    Raises:
        ProviderConfigurationError: If OPENWEATHER_API_KEY is missing or rejected
    """
    params = {"lat": latitude, "lon": longitude, "units": "imperial"}

    try:
        payload = _call_openweather_api(params)
    except ProviderConfigurationError:
        raise
    except requests.exceptions.RequestException as e:
        logger.warning(f"OpenWeather request failed: {e}")
        return FetchResult(params=params, errors=[f"OpenWeather request failed: {e}"])
    except ValueError as e:
        logger.warning(f"Failed to parse OpenWeather response: {e}")
        return FetchResult(
            params=params, errors=[f"OpenWeather response unreadable: {e}"]
        )

    if not isinstance(payload, dict):
        return FetchResult(params=params, errors=["OpenWeather response was not an object"])

    return FetchResult(weather=parse_weather(payload), params=params)


register_provider(
    PROVIDER_NAME,
    {
        "name": "OpenWeather",
        "type": "weather",
        "pollutant": "",
        "fetch_readings": fetch_openweather_readings,
        "requires_api_key": True,
    },
)
