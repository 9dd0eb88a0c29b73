"""
Pytest configuration and shared fixtures.

This module provides common fixtures and utilities used across all tests.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from notus import registry
from notus.database_operations import Datastore
from notus.settings import Settings
from notus.types import FetchResult, SensorReading

# A fixed "now" for every test: 2025-06-01 12:00 UTC (naive)
NOW = datetime(2025, 6, 1, 12, 0, 0)

# Downtown Los Angeles
LATITUDE = 34.0522
LONGITUDE = -118.2437


def epoch(timestamp: datetime) -> int:
    """Unix seconds for a naive UTC datetime."""
    return int(timestamp.replace(tzinfo=timezone.utc).timestamp())


# ============================================================================
# Clocks
# ============================================================================


class FakeClock:
    """A wall clock returning naive UTC datetimes that only moves when told."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """A monotonic clock in seconds for the result cache."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


# ============================================================================
# Configuration and storage
# ============================================================================


@pytest.fixture(autouse=True)
def no_retry_sleep():
    """Stop tenacity from sleeping between retries."""
    with patch("tenacity.nap.time.sleep"):
        yield


@pytest.fixture
def settings():
    """Default settings with a short provider timeout."""
    return replace(Settings(), provider_timeout_seconds=5.0, max_workers=4)


@pytest.fixture
def store(tmp_path):
    """A Datastore backed by a throwaway SQLite file."""
    return Datastore(database_file=str(tmp_path / "notus.db"))


@pytest.fixture
def location(store):
    """A monitored location with the default search radius."""
    return store.add_location(LATITUDE, LONGITUDE, label="Downtown")


@pytest.fixture
def isolated_registry():
    """
    Empty the provider registry for one test and restore it afterwards.

    Built-in providers are re-registered on teardown so later tests see them.
    """
    saved = dict(registry._PROVIDERS)
    registry.clear_registry()
    yield registry
    registry.clear_registry()
    registry._PROVIDERS.update(saved)


# ============================================================================
# Readings and fake providers
# ============================================================================


def make_reading(
    sensor_id: str,
    d_lat: float = 0.0,
    d_lon: float = 0.0,
    value: float | None = 10.0,
    measure: str = "concentration",
    age_minutes: float = 5,
    confidence: float | None = 100,
    uptime: float | None = 1000,
) -> SensorReading:
    """A reading offset from the test location by (d_lat, d_lon) degrees."""
    return SensorReading(
        sensor_id=sensor_id,
        latitude=LATITUDE + d_lat,
        longitude=LONGITUDE + d_lon,
        observed_at=NOW - timedelta(minutes=age_minutes),
        value=value,
        measure=measure,
        pollutant="PM2.5",
        source_field="pm2.5",
        confidence=confidence,
        uptime=uptime,
    )


class FakeProvider:
    """
    A provider whose candidate and reading calls return canned results.

    Every call is recorded so tests can assert on what was asked.
    """

    def __init__(self, candidates=None, readings=None, errors=None):
        self.candidates = candidates
        self.readings = readings or []
        self.errors = errors or []
        self.candidate_calls = []
        self.reading_calls = []

    def fetch_candidates(self, bbox):
        self.candidate_calls.append(bbox)
        attempt = len(self.candidate_calls) - 1
        if callable(self.candidates):
            return self.candidates(attempt, bbox)
        return FetchResult(readings=list(self.candidates or []))

    def fetch_readings(self, latitude, longitude, bbox=None, sensor_ids=None):
        self.reading_calls.append({"bbox": bbox, "sensor_ids": sensor_ids})
        return FetchResult(
            readings=list(self.readings),
            params={"sensor_ids": sensor_ids},
            errors=list(self.errors),
        )

    def spec(self, provider_type: str = "pinned", name: str = "Fake"):
        spec = {
            "name": name,
            "type": provider_type,
            "pollutant": "PM2.5",
            "fetch_readings": self.fetch_readings,
            "requires_api_key": False,
        }
        if provider_type == "pinned":
            spec["fetch_candidates"] = self.fetch_candidates
        return spec
