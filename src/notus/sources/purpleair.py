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
PurpleAir Data Source.

PurpleAir is a global network of low-cost optical particle sensors. Sensors
report raw PM2.5 concentrations, so readings from this provider are
converted to an AQI by the aggregator.

PurpleAir is a pinned provider: sensor discovery picks a fixed set of
nearby sensors once per location, and later runs query those sensors by
index with `show_only`.

API Documentation: https://api.purpleair.com/
Developer Portal: https://develop.purpleair.com/
"""

import os
from datetime import datetime
from logging import getLogger
from typing import Any

import pandas as pd
import requests

from ..decorators import retry_on_network_error
from ..errors import ProviderConfigurationError
from ..registry import register_provider
from ..transforms import (
    coalesce_columns,
    compose,
    convert_timestamps,
    ensure_columns,
    filter_rows,
    select_columns,
)
from ..types import BBox, FetchResult, SensorReading

logger = getLogger(__name__)

PROVIDER_NAME = "PURPLEAIR"

# Outdoor sensors only
OUTDOOR = 0

# Fields requested when looking for candidate sensors
CANDIDATE_FIELDS = "latitude,longitude,last_seen,confidence,uptime"

# Fields requested for current readings.
# Concentration fields in priority order: the instantaneous value first,
# then the 60 minute average, then the ALT-CF3 estimate.
CONCENTRATION_FIELDS = ("pm2.5", "pm2.5_60minute", "pm2.5_alt")
READING_FIELDS = "latitude,longitude,last_seen," + ",".join(CONCENTRATION_FIELDS)


# ============================================================================
# API CLIENT
# ============================================================================


def _get_purpleair_client():
    """
    Get a PurpleAir API client with authentication.

    Returns:
        PurpleAirReadAPI: Authenticated API client

    Raises:
        ProviderConfigurationError: If the API key is missing or rejected
    """
    from purpleair_api.PurpleAirAPI import PurpleAirReadAPI

    api_key = os.getenv("PURPLEAIR_API_KEY")
    if not api_key:
        raise ProviderConfigurationError(
            "PurpleAir",
            "API key required. Set PURPLEAIR_API_KEY. "
            "Get your key at: https://develop.purpleair.com/",
        )

    try:
        # The client checks the key against the API when it is created
        return PurpleAirReadAPI(api_key)
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout):
        raise
    except Exception as e:
        raise ProviderConfigurationError(
            "PurpleAir", f"API key rejected: {e}"
        ) from e


@retry_on_network_error
def _request_sensors(client, **params) -> dict:
    return client.request_multiple_sensors_data(**params)


def _bbox_params(bbox: BBox) -> dict[str, float]:
    # PurpleAir takes the north-west and south-east corners
    min_lon, min_lat, max_lon, max_lat = bbox
    return {
        "nwlng": min_lon,
        "nwlat": max_lat,
        "selng": max_lon,
        "selat": min_lat,
    }


def _query(params: dict[str, Any]) -> tuple[pd.DataFrame, list[str]]:
    """
    Run one multiple-sensors query.

    Returns the response as a DataFrame with columns named from the
    response's `fields` array, and any transport or shape errors. A missing or
    rejected key propagates as ProviderConfigurationError.
    """
    try:
        client = _get_purpleair_client()
        response = _request_sensors(client, **params)
    except ProviderConfigurationError:
        raise
    except Exception as e:
        logger.warning(f"PurpleAir request failed: {e}")
        return pd.DataFrame(), [f"PurpleAir request failed: {e}"]

    if not response or "fields" not in response:
        return pd.DataFrame(), ["PurpleAir response had no fields"]

    try:
        return pd.DataFrame(response.get("data", []), columns=response["fields"]), []
    except (ValueError, TypeError) as e:
        logger.warning(f"PurpleAir response unreadable: {e}")
        return pd.DataFrame(), [f"PurpleAir response unreadable: {e}"]


# ============================================================================
# NORMALISATION
# ============================================================================


def _create_candidate_normaliser():
    return compose(
        ensure_columns("latitude", "longitude", "last_seen", "confidence", "uptime"),
        filter_rows(lambda df: df["latitude"].notna() & df["longitude"].notna()),
        convert_timestamps("last_seen", unit="s", errors="coerce"),
        select_columns(
            "sensor_index", "latitude", "longitude", "last_seen", "confidence", "uptime"
        ),
    )


def _create_reading_normaliser():
    return compose(
        ensure_columns("latitude", "longitude", "last_seen"),
        coalesce_columns("value", *CONCENTRATION_FIELDS),
        filter_rows(
            lambda df: df["value"].notna()
            & df["latitude"].notna()
            & df["longitude"].notna()
        ),
        convert_timestamps("last_seen", unit="s", errors="coerce"),
        select_columns(
            "sensor_index", "latitude", "longitude", "last_seen", "value", "value_field"
        ),
    )


def _optional(value: Any) -> Any:
    return None if pd.isna(value) else value


def _observed_at(value: Any) -> datetime | None:
    # Naive UTC, the form the aggregator and datastore use
    if pd.isna(value):
        return None
    return value.to_pydatetime()


def _normalise(
    df: pd.DataFrame, normaliser
) -> tuple[list[SensorReading], list[str]]:
    """Run a normaliser and build readings, reporting rows that do not parse."""
    try:
        return _to_readings(normaliser(df)), []
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"PurpleAir response unreadable: {e}")
        return [], [f"PurpleAir response unreadable: {e}"]


def _to_readings(df: pd.DataFrame) -> list[SensorReading]:
    readings = []
    for row in df.to_dict("records"):
        value = _optional(row.get("value"))
        confidence = _optional(row.get("confidence"))
        uptime = _optional(row.get("uptime"))
        readings.append(
            SensorReading(
                sensor_id=str(row["sensor_index"]),
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                observed_at=_observed_at(row.get("last_seen")),
                value=None if value is None else float(value),
                measure="concentration",
                pollutant="PM2.5",
                source_field=_optional(row.get("value_field")),
                confidence=None if confidence is None else float(confidence),
                uptime=None if uptime is None else float(uptime),
            )
        )
    return readings


# ============================================================================
# FETCHERS
# ============================================================================


def fetch_purpleair_candidates(bbox: BBox) -> FetchResult:
    """
    Find outdoor PurpleAir sensors inside a bounding box.

    Args:
        bbox: (min_lon, min_lat, max_lon, max_lat)

    Returns:
        FetchResult: One reading per sensor carrying position, last_seen,
            confidence and uptime (no concentration)

    Raises:
        ProviderConfigurationError: If PURPLEAIR_API_KEY is missing or rejected
    """
    params = {
        "fields": CANDIDATE_FIELDS,
        "location_type": OUTDOOR,
        **_bbox_params(bbox),
    }
    df, errors = _query(params)
    result = FetchResult(params=params, errors=errors)
    if df.empty or "sensor_index" not in df.columns:
        return result

    result.readings, shape_errors = _normalise(df, _create_candidate_normaliser())
    result.errors.extend(shape_errors)
    return result


def fetch_purpleair_readings(
    latitude: float,
    longitude: float,
    bbox: BBox | None = None,
    sensor_ids: list[str] | None = None,
) -> FetchResult:
    """
    Fetch current PM2.5 readings for a pinned set of sensors.

    Columns are looked up by the names in the response's `fields` array.
    Sensors whose `pm2.5` is missing fall back to `pm2.5_60minute` and then
    `pm2.5_alt`; a sensor is dropped only when all three are missing.

    Args:
        latitude: Location latitude (unused; sensors are already chosen)
        longitude: Location longitude (unused)
        bbox: Ignored for pinned providers
        sensor_ids: PurpleAir sensor indices

    Returns:
        FetchResult: Concentration readings, with `source_field` naming the
            field that supplied each value

    Raises:
        ProviderConfigurationError: If PURPLEAIR_API_KEY is missing or rejected
    """
    if not sensor_ids:
        return FetchResult()

    params = {
        "fields": READING_FIELDS,
        "show_only": ",".join(str(sensor_id) for sensor_id in sensor_ids),
    }
    df, errors = _query(params)
    result = FetchResult(params=params, errors=errors)
    if df.empty or "sensor_index" not in df.columns:
        return result

    result.readings, shape_errors = _normalise(df, _create_reading_normaliser())
    result.errors.extend(shape_errors)
    logger.debug(
        f"PurpleAir: {len(result.readings)} of {len(sensor_ids)} sensors reported"
    )
    return result


# ============================================================================
# REGISTRATION
# ============================================================================

register_provider(
    PROVIDER_NAME,
    {
        "name": "PurpleAir",
        "type": "pinned",
        "pollutant": "PM2.5",
        "fetch_candidates": fetch_purpleair_candidates,
        "fetch_readings": fetch_purpleair_readings,
        "requires_api_key": True,
    },
)
