"""
Tests for AirNow data source.

Tests the API call, AQI pass-through, the concentration fallback and error
handling with mocked responses.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from notus.errors import ProviderConfigurationError
from notus.sources.airnow import (
    API_BASE,
    _call_airnow_api,
    _get_api_key,
    fetch_airnow_readings,
)

NOW = datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)
BBOX = (-118.3, 34.0, -118.2, 34.1)


@pytest.fixture
def mock_api_key():
    with patch.dict("os.environ", {"AIRNOW_API_KEY": "test-api-key-12345"}):
        yield "test-api-key-12345"


def _row(code, utc="2025-06-01T11:00", aqi=56, value=12.0, lat=34.0663, lon=-118.2266):
    return {
        "Latitude": lat,
        "Longitude": lon,
        "UTC": utc,
        "Parameter": "PM2.5",
        "Unit": "UG/M3",
        "Value": value,
        "AQI": aqi,
        "Category": 2,
        "SiteName": "Los Angeles - N. Main",
        "AgencyName": "South Coast AQMD",
        "FullAQSCode": code[3:],
        "IntlAQSCode": code,
    }


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} error", response=response
        )
    return response


class TestGetApiKey:
    """Tests for API key handling."""

    def test_missing(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ProviderConfigurationError, match="AIRNOW_API_KEY"):
                _get_api_key()

    def test_present(self, mock_api_key):
        assert _get_api_key() == mock_api_key


class TestCallAirnowApi:
    """Tests for the raw API call."""

    @patch("notus.sources.airnow.requests.get")
    def test_success(self, mock_get, mock_api_key):
        mock_get.return_value = _response(payload=[_row("840060371103")])

        data = _call_airnow_api("data", {"parameters": "PM25"}, timeout=5)

        assert len(data) == 1
        args, kwargs = mock_get.call_args
        assert args[0] == f"{API_BASE}/data/"
        assert kwargs["timeout"] == 5
        assert kwargs["params"]["API_KEY"] == mock_api_key
        assert kwargs["params"]["format"] == "application/json"

    @patch("notus.sources.airnow.requests.get")
    def test_auth_failure(self, mock_get, mock_api_key):
        mock_get.return_value = _response(401)
        with pytest.raises(ProviderConfigurationError, match="authentication"):
            _call_airnow_api("data", {})

    @patch("notus.sources.airnow.requests.get")
    def test_server_error_is_retried(self, mock_get, mock_api_key):
        mock_get.side_effect = [_response(503), _response(payload=[])]
        assert _call_airnow_api("data", {}) == []
        assert mock_get.call_count == 2

    @patch("notus.sources.airnow.requests.get")
    def test_client_error_is_not_retried(self, mock_get, mock_api_key):
        mock_get.return_value = _response(429)
        with pytest.raises(requests.exceptions.HTTPError):
            _call_airnow_api("data", {})
        assert mock_get.call_count == 1


class TestFetchReadings:
    """Tests for the bounding-box reading fetch."""

    @patch("notus.sources.airnow._call_airnow_api")
    def test_query_parameters(self, mock_api):
        mock_api.return_value = []

        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

        endpoint, params = mock_api.call_args[0]
        assert endpoint == "data"
        assert params["BBOX"] == "-118.300000,34.000000,-118.200000,34.100000"
        assert params["startDate"] == "2025-06-01T11"
        assert params["endDate"] == "2025-06-01T12"
        assert params["dataType"] == "B"
        assert result.ok
        assert result.readings == []

    @patch("notus.sources.airnow._call_airnow_api")
    def test_aqi_is_passed_through(self, mock_api):
        mock_api.return_value = [_row("840060371103", aqi=63)]

        reading = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW).readings[0]

        assert reading.measure == "index"
        assert reading.value == 63
        assert reading.source_field == "AQI"
        assert reading.sensor_id == "840060371103"
        # UTC is the start of the hourly average
        assert reading.observed_at == datetime(2025, 6, 1, 12, 0)

    @patch("notus.sources.airnow._call_airnow_api")
    def test_missing_aqi_falls_back_to_value(self, mock_api):
        mock_api.return_value = [
            _row("840000000001", aqi=-999, value=12.0),
            _row("840000000002", aqi=None, value=35.4),
            _row("840000000003", aqi=-999, value=-999),
        ]

        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

        by_id = {r.sensor_id: r for r in result.readings}
        assert set(by_id) == {"840000000001", "840000000002"}
        assert by_id["840000000001"].value == 50
        assert by_id["840000000001"].source_field == "Value"
        assert by_id["840000000002"].value == 100

    @patch("notus.sources.airnow._call_airnow_api")
    def test_latest_hour_per_monitor(self, mock_api):
        mock_api.return_value = [
            _row("840060371103", utc="2025-06-01T11:00", aqi=70),
            _row("840060371103", utc="2025-06-01T10:00", aqi=40),
        ]

        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

        assert [r.value for r in result.readings] == [70]

    @patch("notus.sources.airnow._call_airnow_api")
    def test_monitor_without_code_uses_coordinates(self, mock_api):
        row = _row("840060371103")
        del row["IntlAQSCode"]
        mock_api.return_value = [row]

        reading = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW).readings[0]

        assert reading.sensor_id == "34.0663,-118.2266"

    @patch("notus.sources.airnow._call_airnow_api")
    def test_transport_error_is_captured(self, mock_api):
        mock_api.side_effect = requests.exceptions.ConnectionError("unreachable")

        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

        assert result.readings == []
        assert "unreachable" in result.errors[0]
        assert result.params["parameters"] == "PM25"

    @patch("notus.sources.airnow._call_airnow_api")
    def test_unparseable_response_is_captured(self, mock_api):
        mock_api.side_effect = ValueError("Expecting value")
        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)
        assert not result.ok

    @patch("notus.sources.airnow._call_airnow_api")
    def test_malformed_rows_are_captured(self, mock_api):
        mock_api.return_value = [_row("840060371103", lat="n/a")]

        result = fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

        assert result.readings == []
        assert result.errors[0].startswith("AirNow response unreadable")
        assert result.params["parameters"] == "PM25"

    @patch("notus.sources.airnow._call_airnow_api")
    def test_configuration_error_propagates(self, mock_api):
        mock_api.side_effect = ProviderConfigurationError("AirNow", "no key")
        with pytest.raises(ProviderConfigurationError):
            fetch_airnow_readings(34.05, -118.25, bbox=BBOX, now=NOW)

    def test_requires_bbox(self):
        result = fetch_airnow_readings(34.05, -118.25)
        assert not result.ok
