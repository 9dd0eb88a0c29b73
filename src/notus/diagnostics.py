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
Diagnostics attached to every aggregate record.

Each provider type has its own diagnostics shape. They are stored in a
single JSON column, tagged with a `kind` discriminator so they can be read
back into the right class.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, TypeAlias


@dataclass
class SensorSummary:
    """One sensor's contribution to a summary."""

    sensor_id: str
    distance_miles: float
    index: int
    source_field: str | None = None
    category: str | None = None
    direction: str | None = None  # compass point from the location


@dataclass
class PinnedDiagnostics:
    provider: str
    sensor_ids: list[str] = field(default_factory=list)
    discovery_radius_miles: float | None = None
    discovery_attempts: list[dict[str, Any]] = field(default_factory=list)
    sensors_used: list[SensorSummary] = field(default_factory=list)
    no_coverage: bool = False
    messages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="pinned", init=False)


@dataclass
class BoundingBoxDiagnostics:
    provider: str
    bbox: list[float] | None = None
    radius_miles: float | None = None
    sensors_in_radius: list[SensorSummary] = field(default_factory=list)
    sensor_count: int = 0
    messages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="bbox", init=False)


@dataclass
class WeatherDiagnostics:
    provider: str
    weather: dict[str, Any] | None = None
    wind_direction: str = "Unknown"
    messages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="weather", init=False)


Diagnostics: TypeAlias = PinnedDiagnostics | BoundingBoxDiagnostics | WeatherDiagnostics

DIAGNOSTIC_KINDS: dict[str, type] = {
    "pinned": PinnedDiagnostics,
    "bbox": BoundingBoxDiagnostics,
    "weather": WeatherDiagnostics,
}

# Fields holding lists of SensorSummary
_SENSOR_FIELDS = ("sensors_used", "sensors_in_radius")


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float) and value != value:
        return None
    return value


def to_payload(diagnostics: Diagnostics) -> dict[str, Any]:
    """Serialise diagnostics to a JSON-safe dict carrying its `kind`."""
    return _jsonable(asdict(diagnostics))


def from_payload(payload: dict[str, Any]) -> Diagnostics:
    """
    Rebuild diagnostics from a stored payload.

    Keys the target class does not know are ignored.

    Raises:
        ValueError: If the payload has no recognised `kind`
    """
    kind = payload.get("kind")
    cls = DIAGNOSTIC_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown diagnostics kind: {kind!r}")

    init_fields = {f.name for f in fields(cls) if f.init}
    kwargs = {k: v for k, v in payload.items() if k in init_fields}
    for name in _SENSOR_FIELDS:
        if name in kwargs:
            kwargs[name] = [SensorSummary(**sensor) for sensor in kwargs[name]]
    return cls(**kwargs)
