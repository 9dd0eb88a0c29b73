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
Core type definitions for Notus.

This module defines the standard shapes passed between provider adapters,
sensor discovery and the aggregator so that every provider, whatever its
wire format, hands the engine the same thing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, TypeAlias, TypedDict

# A geographic search region as (min_lon, min_lat, max_lon, max_lat).
# Same ordering as GeoJSON and shapely.
BBox: TypeAlias = tuple[float, float, float, float]

Measure: TypeAlias = Literal["concentration", "index"]

ProviderType: TypeAlias = Literal["pinned", "bbox", "weather"]


@dataclass(frozen=True)
class SensorReading:
    """
    One normalised observation from a single sensor.

    Readings only live for the duration of an aggregation run; they are
    summarised into an AggregateRecord and never stored as-is.

    Attributes:
        sensor_id: Provider-specific sensor identifier
        latitude: Sensor latitude in decimal degrees
        longitude: Sensor longitude in decimal degrees
        observed_at: When the sensor last reported (naive UTC), if known
        value: Raw measurement, a concentration or an index depending on `measure`
        measure: "concentration" if `value` needs converting, "index" if it is already an AQI
        pollutant: Standard pollutant name (e.g. "PM2.5")
        source_field: Provider field that supplied `value`
        confidence: Provider-reported confidence (0-100), if any
        uptime: Provider-reported uptime, if any
    """

    sensor_id: str
    latitude: float
    longitude: float
    observed_at: datetime | None = None
    value: float | None = None
    measure: Measure = "concentration"
    pollutant: str = "PM2.5"
    source_field: str | None = None
    confidence: float | None = None
    uptime: float | None = None


@dataclass(frozen=True)
class WeatherObservation:
    """Current weather at a location."""

    temperature_f: float | None = None
    humidity: float | None = None
    wind_speed: float | None = None
    wind_deg: float | None = None
    description: str | None = None


@dataclass
class FetchResult:
    """
    Everything a provider adapter returns from one call.

    Adapters never raise for transport or payload problems; they return an
    empty result with the raw error text in `errors` and the parameters they
    attempted in `params`, both of which end up in the record diagnostics.
    """

    readings: list[SensorReading] = field(default_factory=list)
    weather: WeatherObservation | None = None
    params: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if the call completed without transport or payload errors."""
        return not self.errors


# Function type aliases - these define the "interface" for providers
CandidateFetcher: TypeAlias = Callable[[BBox], FetchResult]
"""
Query a provider's bounding-box endpoint for sensor candidates.

Used by sensor discovery for pinned providers. Readings only need
sensor_id, position, observed_at and the quality signals.
"""

ReadingFetcher: TypeAlias = Callable[..., FetchResult]
"""
Fetch current readings for a location.

Called as fetch_readings(latitude, longitude, bbox=..., sensor_ids=...),
where pinned providers use `sensor_ids` and direct providers use `bbox`.
"""


class ProviderSpec(TypedDict, total=False):
    """
    Specification for a provider network.

    A ProviderSpec is a bundle of functions and metadata that together
    define how the engine talks to one sensor network.
    """

    name: str
    type: ProviderType
    pollutant: str
    fetch_candidates: CandidateFetcher
    fetch_readings: ReadingFetcher
    requires_api_key: bool
