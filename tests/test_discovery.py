"""
Tests for adaptive-radius sensor discovery.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import FakeProvider, make_reading
from notus.discovery import SensorDiscovery, is_fresh, rank_candidates
from notus.errors import ProviderConfigurationError
from notus.types import FetchResult


@pytest.fixture
def discovery(store, settings, clock):
    return SensorDiscovery(store, settings, clock=clock)


class TestFreshness:
    """Tests for the staleness cutoff."""

    def test_recent_is_fresh(self, clock):
        assert is_fresh(make_reading("1", age_minutes=59), clock(), timedelta(hours=1))
        assert is_fresh(make_reading("1", age_minutes=60), clock(), timedelta(hours=1))
        assert not is_fresh(make_reading("1", age_minutes=61), clock(), timedelta(hours=1))

    def test_unknown_time_is_not_fresh(self, clock):
        reading = replace(make_reading("1"), observed_at=None)
        assert not is_fresh(reading, clock(), timedelta(hours=1))


class TestRanking:
    """Tests for candidate ordering."""

    def test_nearest_first(self):
        far = make_reading("far", d_lat=0.01)
        near = make_reading("near", d_lat=0.001)
        ranked = rank_candidates(34.0522, -118.2437, [far, near])
        assert [r.sensor_id for r in ranked] == ["near", "far"]

    def test_ties_break_on_confidence_then_uptime(self):
        low_conf = make_reading("low", d_lat=0.001, confidence=50, uptime=9000)
        high_conf_low_up = make_reading("high-a", d_lat=0.001, confidence=90, uptime=10)
        high_conf_high_up = make_reading("high-b", d_lat=0.001, confidence=90, uptime=500)
        ranked = rank_candidates(
            34.0522, -118.2437, [low_conf, high_conf_low_up, high_conf_high_up]
        )
        assert [r.sensor_id for r in ranked] == ["high-b", "high-a", "low"]


class TestDiscover:
    """Tests for the adaptive search."""

    def test_found_on_first_attempt(self, isolated_registry, discovery, location, store):
        provider = FakeProvider(
            candidates=[make_reading("b", d_lat=0.002), make_reading("a", d_lat=0.001)]
        )
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "fake")

        assert result.sensor_ids == ["a", "b"]
        assert result.radius_miles == 0.5
        assert len(result.attempts) == 1
        assert not result.no_coverage
        assert store.get_pinned_sensors(location.id, "FAKE").sensor_ids == ["a", "b"]

    def test_radius_doubles_until_sensors_found(
        self, isolated_registry, discovery, location
    ):
        def candidates(attempt, bbox):
            if attempt < 2:
                return FetchResult()
            return FetchResult(readings=[make_reading("x", d_lat=0.01)])

        provider = FakeProvider(candidates=candidates)
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "FAKE")

        assert [a.radius_miles for a in result.attempts] == [0.5, 1.0, 2.0]
        assert result.radius_miles == 2.0
        assert result.sensor_ids == ["x"]
        # Each box is wider than the one before
        widths = [bbox[2] - bbox[0] for bbox in provider.candidate_calls]
        assert widths == sorted(widths)
        assert widths[1] == pytest.approx(2 * widths[0])

    def test_five_empty_attempts_store_empty_set(
        self, isolated_registry, discovery, location, store
    ):
        provider = FakeProvider(candidates=[])
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "FAKE")

        assert len(provider.candidate_calls) == 5
        assert [a.radius_miles for a in result.attempts] == [0.5, 1.0, 2.0, 4.0, 8.0]
        assert result.no_coverage
        stored = store.get_pinned_sensors(location.id, "FAKE")
        assert stored is not None
        assert stored.sensor_ids == []
        assert stored.radius_miles == 8.0

    def test_stale_sensors_are_ignored(self, isolated_registry, discovery, location):
        def candidates(attempt, bbox):
            if attempt == 0:
                return FetchResult(readings=[make_reading("old", age_minutes=120)])
            return FetchResult(
                readings=[
                    make_reading("old", age_minutes=120),
                    make_reading("new", d_lat=0.01, age_minutes=10),
                ]
            )

        provider = FakeProvider(candidates=candidates)
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "FAKE")

        assert result.sensor_ids == ["new"]
        assert result.attempts[0].candidates == 1
        assert result.attempts[0].fresh == 0

    def test_keeps_at_most_ten(self, isolated_registry, discovery, location):
        readings = [make_reading(str(i), d_lat=0.0001 * i) for i in range(15)]
        provider = FakeProvider(candidates=readings)
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "FAKE")

        assert result.sensor_ids == [str(i) for i in range(10)]

    def test_transport_error_counts_as_empty(
        self, isolated_registry, discovery, location
    ):
        def candidates(attempt, bbox):
            if attempt == 0:
                return FetchResult(errors=["connection reset"])
            if attempt == 1:
                raise RuntimeError("boom")
            return FetchResult(readings=[make_reading("x")])

        provider = FakeProvider(candidates=candidates)
        isolated_registry.register_provider("FAKE", provider.spec())

        result = discovery.discover(location, "FAKE")

        assert result.sensor_ids == ["x"]
        assert result.attempts[0].error == "connection reset"
        assert result.attempts[1].error == "boom"
        assert result.attempts[2].error is None

    def test_configuration_error_propagates_and_stores_nothing(
        self, isolated_registry, discovery, location, store
    ):
        def candidates(attempt, bbox):
            raise ProviderConfigurationError("Fake", "no key")

        isolated_registry.register_provider("FAKE", FakeProvider(candidates=candidates).spec())

        with pytest.raises(ProviderConfigurationError):
            discovery.discover(location, "FAKE")
        assert store.get_pinned_sensors(location.id, "FAKE") is None

    def test_settings_control_the_search(
        self, isolated_registry, store, settings, clock, location
    ):
        settings = replace(
            settings, discovery_start_radius_miles=1.0, discovery_max_attempts=2
        )
        provider = FakeProvider(candidates=[])
        isolated_registry.register_provider("FAKE", provider.spec())

        result = SensorDiscovery(store, settings, clock=clock).discover(location, "FAKE")

        assert [a.radius_miles for a in result.attempts] == [1.0, 2.0]

    def test_rejects_non_pinned_provider(self, isolated_registry, discovery, location):
        isolated_registry.register_provider("BOX", FakeProvider().spec("bbox"))
        with pytest.raises(ValueError, match="pinned"):
            discovery.discover(location, "BOX")


class TestEnsurePinned:
    """Tests for pin-once behaviour."""

    def test_discovers_once(self, isolated_registry, discovery, location):
        provider = FakeProvider(candidates=[make_reading("a")])
        isolated_registry.register_provider("FAKE", provider.spec())

        first = discovery.ensure_pinned(location, "FAKE")
        second = discovery.ensure_pinned(location, "FAKE")

        assert len(provider.candidate_calls) == 1
        assert not first.from_store
        assert second.from_store
        assert second.sensor_ids == ["a"]

    def test_stored_empty_set_is_reused(self, isolated_registry, discovery, location, store):
        provider = FakeProvider(candidates=[make_reading("a")])
        isolated_registry.register_provider("FAKE", provider.spec())
        store.set_pinned_sensors(location.id, "FAKE", [], 8.0)

        result = discovery.ensure_pinned(location, "FAKE")

        assert provider.candidate_calls == []
        assert result.no_coverage

    def test_rediscovers_after_clear(self, isolated_registry, discovery, location, store):
        provider = FakeProvider(candidates=[make_reading("a")])
        isolated_registry.register_provider("FAKE", provider.spec())

        discovery.ensure_pinned(location, "FAKE")
        store.clear_pinned_sensors(location.id)
        discovery.ensure_pinned(location, "FAKE")

        assert len(provider.candidate_calls) == 2
