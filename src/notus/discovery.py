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
Adaptive-radius sensor discovery for pinned providers.

Pinned providers charge per query, so rather than searching a wide box every
hour, discovery picks a small fixed set of nearby sensors once per location
and stores it. Later runs query those sensors by id.

The search starts with a small box around the location. Sensors that have
not reported within the staleness cutoff are ignored. If nothing is left the
radius doubles and the search repeats, up to a fixed number of attempts.
Running out of attempts stores an empty set: the location has no nearby
coverage, which is a valid answer and not an error.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from logging import getLogger
from typing import Any, Callable

from .database_operations import Datastore, MonitoredLocation, utcnow
from .errors import ProviderConfigurationError
from .geo import bounding_box, distance
from .registry import get_provider
from .settings import Settings, get_settings
from .types import BBox, ProviderSpec, SensorReading

logger = getLogger(__name__)


@dataclass
class DiscoveryAttempt:
    """One bounding-box query made during discovery."""

    radius_miles: float
    bbox: BBox
    candidates: int = 0
    fresh: int = 0
    error: str | None = None


@dataclass
class DiscoveryResult:
    provider: str
    sensor_ids: list[str] = field(default_factory=list)
    radius_miles: float | None = None
    attempts: list[DiscoveryAttempt] = field(default_factory=list)
    from_store: bool = False

    @property
    def no_coverage(self) -> bool:
        """True when discovery ran and found no usable sensors."""
        return not self.sensor_ids

    def attempts_payload(self) -> list[dict[str, Any]]:
        return [asdict(attempt) for attempt in self.attempts]


def is_fresh(reading: SensorReading, now: datetime, max_age: timedelta) -> bool:
    """
    True if the reading was observed within `max_age` of `now`.

    Readings with no observation time cannot be shown to be fresh.
    """
    if reading.observed_at is None:
        return False
    return now - reading.observed_at <= max_age


def rank_candidates(
    latitude: float, longitude: float, candidates: list[SensorReading]
) -> list[SensorReading]:
    """
    Sort candidates nearest first.

    Equal distances go to the higher confidence, then the higher uptime.
    """

    def sort_key(reading: SensorReading):
        return (
            distance(latitude, longitude, reading.latitude, reading.longitude),
            -(reading.confidence or 0.0),
            -(reading.uptime or 0.0),
        )

    return sorted(candidates, key=sort_key)


class SensorDiscovery:
    """
    Find and pin sensors for (location, provider) pairs.

    Args:
        store: Datastore holding pinned sensor sets
        settings: Search parameters (start radius, attempts, staleness...)
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        store: Datastore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock

    def _resolve(self, provider: str, spec: ProviderSpec | None) -> ProviderSpec:
        spec = spec or get_provider(provider)
        if spec is None:
            raise ValueError(f"Provider '{provider}' is not registered")
        if spec.get("type") != "pinned":
            raise ValueError(f"Provider '{provider}' does not support pinned sensors")
        return spec

    def _search(
        self, location: MonitoredLocation, provider: str, spec: ProviderSpec
    ) -> tuple[list[SensorReading], float, list[DiscoveryAttempt]]:
        settings = self.settings
        max_age = timedelta(minutes=settings.staleness_minutes)
        radius = settings.discovery_start_radius_miles
        attempts: list[DiscoveryAttempt] = []

        for attempt_number in range(settings.discovery_max_attempts):
            if attempt_number:
                radius *= 2

            bbox = bounding_box(
                location.latitude,
                location.longitude,
                radius,
                miles_per_degree=settings.miles_per_degree,
            )
            attempt = DiscoveryAttempt(radius_miles=radius, bbox=bbox)
            attempts.append(attempt)

            try:
                result = spec["fetch_candidates"](bbox)
            except ProviderConfigurationError:
                raise
            except Exception as e:
                logger.exception(f"{provider} candidate search failed")
                attempt.error = str(e)
                continue

            if result.errors:
                attempt.error = "; ".join(result.errors)

            now = self.clock()
            fresh = [r for r in result.readings if is_fresh(r, now, max_age)]
            attempt.candidates = len(result.readings)
            attempt.fresh = len(fresh)

            logger.debug(
                f"{provider} discovery for location {location.id}: "
                f"{attempt.fresh}/{attempt.candidates} fresh at {radius} mi"
            )
            if fresh:
                return fresh, radius, attempts

        return [], radius, attempts

    def discover(
        self,
        location: MonitoredLocation,
        provider: str,
        spec: ProviderSpec | None = None,
    ) -> DiscoveryResult:
        """
        Run the adaptive search and store the resulting sensor set.

        Transport errors count as an attempt that found nothing.

        Raises:
            ProviderConfigurationError: If the provider's key is missing or
                rejected. Nothing is stored in that case.
            ValueError: If the provider is unknown or not a pinned provider
        """
        provider = provider.upper()
        spec = self._resolve(provider, spec)

        fresh, radius, attempts = self._search(location, provider, spec)
        ranked = rank_candidates(location.latitude, location.longitude, fresh)
        sensor_ids = [r.sensor_id for r in ranked[: self.settings.discovery_max_sensors]]

        if not sensor_ids:
            logger.info(
                f"No {provider} coverage for location {location.id} "
                f"after {len(attempts)} attempts"
            )

        stored = self.store.set_pinned_sensors(location.id, provider, sensor_ids, radius)
        return DiscoveryResult(
            provider=provider,
            sensor_ids=list(stored.sensor_ids),
            radius_miles=stored.radius_miles,
            attempts=attempts,
            # Another worker stored its set first
            from_store=list(stored.sensor_ids) != sensor_ids
            or stored.radius_miles != radius,
        )

    def ensure_pinned(
        self,
        location: MonitoredLocation,
        provider: str,
        spec: ProviderSpec | None = None,
    ) -> DiscoveryResult:
        """Return the stored sensor set, discovering one if none exists yet."""
        provider = provider.upper()
        stored = self.store.get_pinned_sensors(location.id, provider)
        if stored is not None:
            return DiscoveryResult(
                provider=provider,
                sensor_ids=list(stored.sensor_ids),
                radius_miles=stored.radius_miles,
                from_store=True,
            )
        return self.discover(location, provider, spec)
