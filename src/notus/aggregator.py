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
Aggregate provider readings into per-location summaries.

For every monitored location and every configured provider, one run:

1. Works out which sensors to ask. Pinned providers use the stored sensor
   set (discovering one the first time), bounding-box providers search the
   box around the location, weather providers just take the point.
2. Fetches readings through the result cache.
3. Converts concentrations to AQI, and reduces the readings to the index of
   the closest sensor and the mean index of all qualifying sensors.
4. Writes one AggregateRecord, unless one already exists for that
   (location, provider, timestamp).
5. Updates the trailing 24-hour figures for the new record.

Providers for one location run concurrently, as do locations. A provider
that fails or times out never stops the others.

Example:
    >>> from notus import Aggregator, Datastore
    >>> store = Datastore(database_file="notus.db")
    >>> aggregator = Aggregator(store)
    >>> status = aggregator.run_location(1)
    >>> status.status
    'success'
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import Callable, Literal

from .cache import ResultCache, fingerprint
from .database_operations import AggregateRecord, Datastore, MonitoredLocation, utcnow
from .diagnostics import (
    BoundingBoxDiagnostics,
    Diagnostics,
    PinnedDiagnostics,
    SensorSummary,
    WeatherDiagnostics,
    to_payload,
)
from .discovery import SensorDiscovery, is_fresh
from .errors import ProviderConfigurationError
from .geo import bearing, bounding_box, cardinal_direction, distance
from .metrics import concentration_to_index, index_category, round_half_up
from .registry import get_provider, list_providers
from .rolling import RollingStats, RollingWindowTracker
from .settings import Settings, get_settings
from .types import FetchResult, ProviderSpec, SensorReading

logger = getLogger(__name__)

NO_DATA_MESSAGE = "no data"
NO_COVERAGE_MESSAGE = "no coverage"

RunStatus = Literal["success", "partial_failure", "failure"]


# ============================================================================
# SUMMARISING READINGS
# ============================================================================


@dataclass
class Summary:
    """
    The figures for one provider at one location.

    `closest` and `average` are both 0 when nothing qualified; `no_data`
    is what tells that apart from genuinely clean air.
    """

    closest: int = 0
    average: int = 0
    no_data: bool = True
    sensors: list[SensorSummary] = field(default_factory=list)
    dropped: dict[str, int] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, message: str = NO_DATA_MESSAGE) -> "Summary":
        return cls(messages=[message])


def _reading_index(reading: SensorReading, standard: str | None) -> int | None:
    if reading.measure == "index":
        if reading.value is None or reading.value != reading.value:
            return None
        return round_half_up(reading.value)
    return concentration_to_index(reading.pollutant, reading.value, standard=standard)


def summarise_readings(
    latitude: float,
    longitude: float,
    readings: list[SensorReading],
    radius_miles: float | None = None,
    max_age: timedelta | None = None,
    now: datetime | None = None,
    standard: str | None = None,
) -> Summary:
    """
    Reduce readings to the closest sensor's index and the mean index.

    Args:
        latitude: Location latitude
        longitude: Location longitude
        readings: Normalised readings from one provider
        radius_miles: If given, readings further away are dropped
        max_age: If given with `now`, readings older than this are dropped
        now: Current naive UTC time for the staleness check
        standard: PM2.5 breakpoint version

    Returns:
        Summary: `closest` is the index of the nearest qualifying reading
            (first seen wins ties); `average` is the mean index rounded half
            up. With nothing qualifying both are 0 and `no_data` is set.
    """
    dropped = {"no_index": 0, "stale": 0, "out_of_radius": 0}
    sensors: list[SensorSummary] = []

    for reading in readings:
        if max_age is not None and now is not None and not is_fresh(reading, now, max_age):
            dropped["stale"] += 1
            continue

        miles = distance(latitude, longitude, reading.latitude, reading.longitude)
        if radius_miles is not None and miles > radius_miles:
            dropped["out_of_radius"] += 1
            continue

        index = _reading_index(reading, standard)
        if index is None:
            dropped["no_index"] += 1
            continue

        sensors.append(
            SensorSummary(
                sensor_id=reading.sensor_id,
                distance_miles=round(miles, 3),
                index=index,
                source_field=reading.source_field,
                category=index_category(index),
                direction=cardinal_direction(
                    bearing(latitude, longitude, reading.latitude, reading.longitude)
                ),
            )
        )

    if not sensors:
        summary = Summary.empty()
        summary.dropped = dropped
        return summary

    closest = sensors[0]
    for sensor in sensors[1:]:
        if sensor.distance_miles < closest.distance_miles:
            closest = sensor

    average = round_half_up(sum(s.index for s in sensors) / len(sensors))
    return Summary(
        closest=closest.index,
        average=average,
        no_data=False,
        sensors=sensors,
        dropped=dropped,
    )


# ============================================================================
# RUN RESULTS
# ============================================================================


@dataclass
class ProviderOutcome:
    """What happened for one (location, provider) in one run."""

    provider: str
    record: AggregateRecord | None = None
    inserted: bool = False
    no_data: bool = False
    cached: bool = False
    timed_out: bool = False
    error: str | None = None
    configuration_error: bool = False
    rolling: RollingStats | None = None

    @property
    def failed(self) -> bool:
        """True if no record could be produced for this provider."""
        return self.error is not None


@dataclass
class LocationRunStatus:
    location_id: int
    status: RunStatus = "success"
    outcomes: dict[str, ProviderOutcome] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def _run_status(outcomes: dict[str, ProviderOutcome]) -> RunStatus:
    failures = sum(1 for outcome in outcomes.values() if outcome.failed)
    if failures == 0:
        return "success"
    if failures == len(outcomes):
        return "failure"
    return "partial_failure"


def _as_naive_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp


# ============================================================================
# AGGREGATOR
# ============================================================================


class Aggregator:
    """
    Runs aggregation for monitored locations.

    Args:
        store: Datastore for locations, pinned sets and records
        cache: Result cache shared by every run of this aggregator
        settings: Tunables; defaults to the process settings
        providers: Provider names to run; defaults to the configured list,
            or every registered provider
        discovery: Sensor discovery for pinned providers
        tracker: Rolling window tracker
        clock: Returns the current naive UTC time
    """

    def __init__(
        self,
        store: Datastore,
        cache: ResultCache | None = None,
        settings: Settings | None = None,
        providers: list[str] | None = None,
        discovery: SensorDiscovery | None = None,
        tracker: RollingWindowTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utcnow
        self.cache = (
            cache
            if cache is not None
            else ResultCache(ttl_seconds=self.settings.cache_ttl_seconds)
        )
        self.discovery = discovery or SensorDiscovery(
            store, self.settings, clock=self.clock
        )
        self.tracker = tracker or RollingWindowTracker(
            store,
            window_hours=self.settings.rolling_window_hours,
            min_records=self.settings.rolling_min_records,
        )
        self._providers = [p.upper() for p in providers] if providers else None

    @property
    def providers(self) -> list[str]:
        """Provider names this aggregator runs, in order."""
        if self._providers is not None:
            return list(self._providers)
        if self.settings.providers:
            return list(self.settings.providers)
        return list_providers()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _fetch(
        self,
        provider: str,
        spec: ProviderSpec,
        location: MonitoredLocation,
        radius_miles: float | None = None,
        **kwargs,
    ) -> tuple[FetchResult, bool]:
        """
        Fetch readings through the cache.

        Returns the result and whether it came from the cache. Results with
        errors are not cached, so the next run tries again.
        """
        key = fingerprint(
            provider,
            location.latitude,
            location.longitude,
            radius_miles,
            precision=self.settings.coordinate_precision,
            **{name: value for name, value in kwargs.items() if value is not None},
        )
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"{provider}: cache hit for location {location.id}")
            return cached, True

        result = spec["fetch_readings"](location.latitude, location.longitude, **kwargs)
        if result.ok:
            self.cache.put(key, result)
        return result, False

    # ------------------------------------------------------------------
    # Per-provider-type collection
    # ------------------------------------------------------------------

    def _collect_pinned(
        self, location: MonitoredLocation, provider: str, spec: ProviderSpec
    ) -> tuple[Summary, Diagnostics, bool]:
        pinned = self.discovery.ensure_pinned(location, provider, spec)
        diagnostics = PinnedDiagnostics(
            provider=provider,
            sensor_ids=list(pinned.sensor_ids),
            discovery_radius_miles=pinned.radius_miles,
            discovery_attempts=pinned.attempts_payload(),
        )

        if pinned.no_coverage:
            diagnostics.no_coverage = True
            diagnostics.messages.append(NO_COVERAGE_MESSAGE)
            return Summary.empty(NO_COVERAGE_MESSAGE), diagnostics, False

        result, cached = self._fetch(
            provider, spec, location, sensor_ids=list(pinned.sensor_ids)
        )
        # Pinned sensors were chosen for freshness and distance already
        summary = summarise_readings(
            location.latitude,
            location.longitude,
            result.readings,
            standard=self.settings.pm25_standard,
        )
        diagnostics.sensors_used = summary.sensors
        diagnostics.messages.extend(summary.messages)
        diagnostics.errors.extend(result.errors)
        diagnostics.params = dict(result.params)
        return summary, diagnostics, cached

    def _collect_bbox(
        self, location: MonitoredLocation, provider: str, spec: ProviderSpec
    ) -> tuple[Summary, Diagnostics, bool]:
        radius = location.search_radius_miles or self.settings.default_radius_miles
        bbox = bounding_box(
            location.latitude,
            location.longitude,
            radius,
            miles_per_degree=self.settings.miles_per_degree,
        )
        result, cached = self._fetch(provider, spec, location, radius, bbox=bbox)
        summary = summarise_readings(
            location.latitude,
            location.longitude,
            result.readings,
            radius_miles=radius,
            max_age=timedelta(minutes=self.settings.staleness_minutes),
            now=self.clock(),
            standard=self.settings.pm25_standard,
        )
        diagnostics = BoundingBoxDiagnostics(
            provider=provider,
            bbox=list(bbox),
            radius_miles=radius,
            sensors_in_radius=summary.sensors,
            sensor_count=len(summary.sensors),
            messages=list(summary.messages),
            errors=list(result.errors),
            params=dict(result.params),
        )
        return summary, diagnostics, cached

    def _collect_weather(
        self, location: MonitoredLocation, provider: str, spec: ProviderSpec
    ) -> tuple[Summary, Diagnostics, bool]:
        result, cached = self._fetch(provider, spec, location)
        weather = result.weather
        diagnostics = WeatherDiagnostics(
            provider=provider,
            weather=asdict(weather) if weather is not None else None,
            wind_direction=cardinal_direction(
                weather.wind_deg if weather is not None else None
            ),
            errors=list(result.errors),
            params=dict(result.params),
        )
        # Weather has no index; the record only flags whether it was fetched
        if weather is None:
            diagnostics.messages.append(NO_DATA_MESSAGE)
            return Summary.empty(), diagnostics, cached
        return Summary(no_data=False), diagnostics, cached

    def _collect(
        self, location: MonitoredLocation, provider: str, spec: ProviderSpec
    ) -> tuple[Summary, Diagnostics, bool]:
        provider_type = spec.get("type", "bbox")
        if provider_type == "pinned":
            return self._collect_pinned(location, provider, spec)
        if provider_type == "weather":
            return self._collect_weather(location, provider, spec)
        return self._collect_bbox(location, provider, spec)

    # ------------------------------------------------------------------
    # Persisting
    # ------------------------------------------------------------------

    def _record(
        self,
        location: MonitoredLocation,
        provider: str,
        spec: ProviderSpec,
        timestamp: datetime,
        summary: Summary,
        diagnostics: Diagnostics,
    ) -> ProviderOutcome:
        record = AggregateRecord(
            location_id=location.id,
            provider=provider,
            timestamp=timestamp,
            closest=summary.closest,
            average=summary.average,
            no_data=summary.no_data,
            diagnostics=to_payload(diagnostics),
        )
        outcome = ProviderOutcome(provider=provider, no_data=summary.no_data)

        stored = self.store.insert_record_if_absent(record)
        if stored is None:
            logger.debug(
                f"{provider} already recorded for location {location.id} at {timestamp}"
            )
            return outcome

        outcome.record = stored
        outcome.inserted = True
        if spec.get("type") != "weather":
            outcome.rolling = self.tracker.update(stored)
        return outcome

    def aggregate_provider(
        self,
        location: MonitoredLocation,
        provider: str,
        timestamp: datetime,
    ) -> ProviderOutcome:
        """
        Aggregate one provider for one location and store the record.

        A missing or rejected API key produces a failed outcome and no
        record. A record that already exists for this timestamp is left
        alone (`inserted` is False).

        Raises:
            ValueError: If the provider is not registered
        """
        provider = provider.upper()
        spec = get_provider(provider)
        if spec is None:
            raise ValueError(f"Provider '{provider}' is not registered")
        timestamp = _as_naive_utc(timestamp)

        try:
            summary, diagnostics, cached = self._collect(location, provider, spec)
        except ProviderConfigurationError as e:
            logger.error(f"{provider} is misconfigured: {e}")
            return ProviderOutcome(
                provider=provider, error=str(e), configuration_error=True
            )

        outcome = self._record(location, provider, spec, timestamp, summary, diagnostics)
        outcome.cached = cached
        return outcome

    def _timed_out(
        self, location: MonitoredLocation, provider: str, timestamp: datetime
    ) -> ProviderOutcome:
        """Store a no-data record for a provider that ran out of time."""
        message = f"timed out after {self.settings.provider_timeout_seconds}s"
        logger.warning(f"{provider} for location {location.id} {message}")

        spec = get_provider(provider) or {}
        provider_type = spec.get("type", "bbox")
        if provider_type == "pinned":
            pinned = self.store.get_pinned_sensors(location.id, provider)
            diagnostics: Diagnostics = PinnedDiagnostics(
                provider=provider,
                sensor_ids=list(pinned.sensor_ids) if pinned else [],
                discovery_radius_miles=pinned.radius_miles if pinned else None,
            )
        elif provider_type == "weather":
            diagnostics = WeatherDiagnostics(provider=provider)
        else:
            diagnostics = BoundingBoxDiagnostics(
                provider=provider, radius_miles=location.search_radius_miles
            )
        diagnostics.messages.append(NO_DATA_MESSAGE)
        diagnostics.errors.append(message)

        outcome = self._record(
            location, provider, spec, timestamp, Summary.empty(), diagnostics
        )
        outcome.timed_out = True
        return outcome

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_location(
        self, location_id: int, timestamp: datetime | None = None
    ) -> LocationRunStatus:
        """
        Aggregate every provider for one location.

        Providers run concurrently, each bounded by the provider timeout.

        Returns:
            LocationRunStatus: "success" if every provider produced a record,
                "partial_failure" if some failed, "failure" if all failed or
                the location cannot be run
        """
        timestamp = _as_naive_utc(timestamp or self.clock().replace(microsecond=0))
        status = LocationRunStatus(location_id=location_id)

        location = self.store.get_location(location_id)
        if location is None:
            status.status = "failure"
            status.errors.append(f"Location {location_id} not found")
            return status
        if location.latitude is None or location.longitude is None:
            status.status = "failure"
            status.errors.append(f"Location {location_id} has no coordinates")
            return status

        providers = self.providers
        if not providers:
            logger.warning("No providers configured")
            return status

        executor = ThreadPoolExecutor(
            max_workers=min(len(providers), self.settings.max_workers),
            thread_name_prefix="notus-provider",
        )
        try:
            futures = {
                provider: executor.submit(
                    self.aggregate_provider, location, provider, timestamp
                )
                for provider in providers
            }
            for provider, future in futures.items():
                try:
                    outcome = future.result(
                        timeout=self.settings.provider_timeout_seconds
                    )
                except FuturesTimeout:
                    future.cancel()
                    outcome = self._timed_out(location, provider, timestamp)
                except Exception as e:
                    logger.exception(
                        f"{provider} failed for location {location_id}"
                    )
                    outcome = ProviderOutcome(provider=provider, error=str(e))
                status.outcomes[provider] = outcome
                if outcome.error:
                    status.errors.append(f"{provider}: {outcome.error}")
        finally:
            # Abandon work that outlived its timeout
            executor.shutdown(wait=False, cancel_futures=True)

        status.status = _run_status(status.outcomes)
        logger.info(
            f"Location {location_id} at {timestamp}: {status.status} "
            f"({len(status.outcomes)} providers)"
        )
        return status

    def run_all(self, timestamp: datetime | None = None) -> dict[int, LocationRunStatus]:
        """
        Aggregate every monitored location.

        Locations run concurrently. One location failing never stops the
        others; its status is reported as "failure".
        """
        timestamp = _as_naive_utc(timestamp or self.clock().replace(microsecond=0))
        locations = self.store.list_locations()
        results: dict[int, LocationRunStatus] = {}
        if not locations:
            return results

        with ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="notus-location"
        ) as executor:
            futures = {
                location.id: executor.submit(self.run_location, location.id, timestamp)
                for location in locations
            }
            for location_id, future in futures.items():
                try:
                    results[location_id] = future.result()
                except Exception as e:
                    logger.exception(f"Run failed for location {location_id}")
                    results[location_id] = LocationRunStatus(
                        location_id=location_id, status="failure", errors=[str(e)]
                    )
        return results


def count_statuses(results: dict[int, LocationRunStatus]) -> dict[str, int]:
    """Count locations by run status."""
    counts = {"success": 0, "partial_failure": 0, "failure": 0}
    for status in results.values():
        counts[status.status] += 1
    return counts
