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
AirNow Data Source.

AirNow is the US EPA's real-time air quality network, fed by regulatory
monitors run by state, local and tribal agencies. Observations arrive
already converted to an AQI, so readings from this provider skip the
concentration-to-index conversion unless the AQI is missing.

AirNow is a bounding-box provider: every run queries the box around the
location directly, and the aggregator keeps the monitors within the
location's search radius.

API Documentation: https://docs.airnowapi.org/
Data License: Public domain (US Government data)
"""

import os
from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import Any

import pandas as pd
import requests

from ..decorators import retry_on_network_error
from ..errors import ProviderConfigurationError
from ..metrics import concentration_to_index
from ..registry import register_provider
from ..settings import get_settings
from ..transforms import (
    add_column,
    coalesce_columns,
    compose,
    convert_timestamps,
    ensure_columns,
    filter_rows,
)
from ..types import BBox, FetchResult, SensorReading

logger = getLogger(__name__)

PROVIDER_NAME = "AIRNOW"

API_BASE = "https://www.airnowapi.org/aq"

# AirNow's marker for a missing value
MISSING_VALUE = -999

# Length of each AirNow observation period
AVERAGING_PERIOD = timedelta(hours=1)

# Response field holding the concentration converted locally to an AQI
CONVERTED_FIELD = "Value_AQI"

# AirNow parameter names to standard pollutant names
PARAMETER_MAP = {
    "PM2.5": "PM2.5",
    "PM10": "PM10",
    "OZONE": "O3",
    "O3": "O3",
    "NO2": "NO2",
    "CO": "CO",
    "SO2": "SO2",
}


# ============================================================================
# API CLIENT
# ============================================================================


def _get_api_key() -> str:
    """
    Get AirNow API key from environment.

    Raises:
        ProviderConfigurationError: If API key is not configured
    """
    api_key = os.getenv("AIRNOW_API_KEY")
    if not api_key:
        raise ProviderConfigurationError(
            "AirNow",
            "API key required. Set AIRNOW_API_KEY. "
            "Get your free key at: https://docs.airnowapi.org/account/request/",
        )
    return api_key


@retry_on_network_error
def _call_airnow_api(
    endpoint: str, params: dict | None = None, timeout: float | None = None
) -> list[dict]:
    """
    Make a request to the AirNow API.

    Args:
        endpoint: API endpoint path (e.g., "data")
        params: Query parameters (API key added automatically)
        timeout: Request timeout in seconds (defaults to the configured value)

    Returns:
        list: JSON response rows

    Raises:
        ProviderConfigurationError: If the key is missing or rejected
        requests.exceptions.RequestException: On transport or HTTP errors
    """
    params = dict(params or {})
    params["API_KEY"] = _get_api_key()
    params["format"] = "application/json"

    if timeout is None:
        timeout = get_settings().request_timeout_seconds

    url = f"{API_BASE}/{endpoint}/"
    response = requests.get(url, params=params, timeout=timeout)

    if response.status_code in (401, 403):
        raise ProviderConfigurationError(
            "AirNow", "API authentication failed. Check your AIRNOW_API_KEY."
        )

    if response.status_code == 429:
        logger.warning("AirNow rate limit exceeded")

    response.raise_for_status()
    return response.json() or []


# ============================================================================
# NORMALISATION
# ============================================================================


def _convert_values(df: pd.DataFrame) -> pd.Series:
    """Convert the raw concentration in `Value` to an AQI, row by row."""
    return pd.Series(
        [
            concentration_to_index(pollutant, value)
            for pollutant, value in zip(df["pollutant"], df["Value"])
        ],
        index=df.index,
        dtype="float64",
    )


def _sensor_ids(df: pd.DataFrame) -> pd.Series:
    """Monitor codes where present, otherwise the rounded coordinates."""
    coordinates = (
        df["Latitude"].map(lambda lat: f"{lat:.4f}")
        + ","
        + df["Longitude"].map(lambda lon: f"{lon:.4f}")
    )
    return df["IntlAQSCode"].where(df["IntlAQSCode"].notna(), coordinates).astype(str)


def _create_normaliser():
    """
    Create normalisation pipeline for AirNow observations.

    Fields are read by name. AQI is the primary value; when it is missing
    the raw concentration is converted locally.
    """

    def mark_missing(df: pd.DataFrame) -> pd.DataFrame:
        return df.assign(
            AQI=df["AQI"].where(df["AQI"] != MISSING_VALUE),
            Value=df["Value"].where(df["Value"] != MISSING_VALUE),
        )

    def latest_per_monitor(df: pd.DataFrame) -> pd.DataFrame:
        if df.empty:
            return df
        return df.sort_values("UTC").drop_duplicates("sensor_id", keep="last")

    def name_converted_field(df: pd.DataFrame) -> pd.DataFrame:
        return df.assign(
            value_field=df["value_field"].replace({CONVERTED_FIELD: "Value"})
        )

    return compose(
        ensure_columns(
            "Latitude", "Longitude", "UTC", "Parameter", "AQI", "Value", "IntlAQSCode"
        ),
        mark_missing,
        filter_rows(lambda df: df["Latitude"].notna() & df["Longitude"].notna()),
        add_column(
            "pollutant",
            lambda df: df["Parameter"].map(
                lambda p: PARAMETER_MAP.get(str(p).upper(), p)
            ),
        ),
        add_column(CONVERTED_FIELD, _convert_values),
        coalesce_columns("value", "AQI", CONVERTED_FIELD),
        name_converted_field,
        filter_rows(lambda df: df["value"].notna()),
        add_column("sensor_id", _sensor_ids),
        convert_timestamps("UTC", errors="coerce"),
        latest_per_monitor,
    )


def _observed_at(value) -> datetime | None:
    # UTC marks the start of the hourly average
    if pd.isna(value):
        return None
    return value.to_pydatetime() + AVERAGING_PERIOD


def _to_readings(df: pd.DataFrame) -> list[SensorReading]:
    readings = []
    for row in df.to_dict("records"):
        readings.append(
            SensorReading(
                sensor_id=row["sensor_id"],
                latitude=float(row["Latitude"]),
                longitude=float(row["Longitude"]),
                observed_at=_observed_at(row.get("UTC")),
                value=float(row["value"]),
                measure="index",
                pollutant=row["pollutant"],
                source_field=row["value_field"],
            )
        )
    return readings


# ============================================================================
# DATA FETCHER
# ============================================================================


def fetch_airnow_readings(
    latitude: float,
    longitude: float,
    bbox: BBox | None = None,
    sensor_ids: list[str] | None = None,
    now: datetime | None = None,
) -> FetchResult:
    """
    Fetch the latest PM2.5 observations inside a bounding box.

    Queries the last two hours, since AirNow publishes each hour with a
    delay, and keeps the most recent observation per monitor.

    Args:
        latitude: Location latitude
        longitude: Location longitude
        bbox: Search box as (min_lon, min_lat, max_lon, max_lat)
        sensor_ids: Ignored for bounding-box providers
        now: Current time, for tests

    Returns:
        FetchResult: AQI readings. Transport and payload failures come back
            as an empty result with `errors` populated.

    Raises:
        ProviderConfigurationError: If AIRNOW_API_KEY is missing or rejected
    """
    if bbox is None:
        return FetchResult(errors=["AirNow needs a bounding box"])

    now = now or datetime.now(timezone.utc)
    end_hour = now.replace(minute=0, second=0, microsecond=0)
    start_hour = end_hour - timedelta(hours=1)

    min_lon, min_lat, max_lon, max_lat = bbox
    params: dict[str, Any] = {
        "startDate": start_hour.strftime("%Y-%m-%dT%H"),
        "endDate": end_hour.strftime("%Y-%m-%dT%H"),
        "parameters": "PM25",
        "BBOX": f"{min_lon:.6f},{min_lat:.6f},{max_lon:.6f},{max_lat:.6f}",
        "dataType": "B",
        "verbose": 1,
    }

    try:
        data = _call_airnow_api("data", params)
    except ProviderConfigurationError:
        raise
    except requests.exceptions.RequestException as e:
        logger.warning(f"AirNow API request failed: {e}")
        return FetchResult(params=params, errors=[f"AirNow request failed: {e}"])
    except ValueError as e:
        logger.warning(f"Failed to parse AirNow response: {e}")
        return FetchResult(params=params, errors=[f"AirNow response unreadable: {e}"])

    if not isinstance(data, list):
        return FetchResult(params=params, errors=["AirNow response was not a list"])
    if not data:
        return FetchResult(params=params)

    try:
        readings = _to_readings(_create_normaliser()(pd.DataFrame(data)))
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"AirNow response unreadable: {e}")
        return FetchResult(params=params, errors=[f"AirNow response unreadable: {e}"])
    return FetchResult(readings=readings, params=params)


# ============================================================================
# REGISTRATION
# ============================================================================

register_provider(
    PROVIDER_NAME,
    {
        "name": "AirNow",
        "type": "bbox",
        "pollutant": "PM2.5",
        "fetch_readings": fetch_airnow_readings,
        "requires_api_key": True,
    },
)
