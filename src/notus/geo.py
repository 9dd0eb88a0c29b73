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
Distance and direction on a spherical Earth.

All distances are in statute miles. The spherical model is accurate to
well under one percent at the few-mile scales Notus works at.
"""

import math

from .types import BBox

# Mean Earth radius in miles
EARTH_RADIUS_MILES = 3958.8

# Approximate miles per degree of latitude. Used for both axes when turning
# a search radius into a bounding box; configurable through Settings.
MILES_PER_DEGREE = 69.0

CARDINAL_DIRECTIONS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points using the haversine formula.

    Args:
        lat1, lon1: First point in decimal degrees
        lat2, lon2: Second point in decimal degrees

    Returns:
        Distance in miles (0.0 for identical points)

    Example:
        >>> round(distance(34.05, -118.24, 34.05, -118.24), 6)
        0.0
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push `a` a hair outside [0, 1] near antipodes
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial compass bearing from the first point to the second, in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    x = math.sin(d_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(
        phi2
    ) * math.cos(d_lambda)
    return math.degrees(math.atan2(x, y)) % 360


def cardinal_direction(degrees: float | None) -> str:
    """
    Convert a compass bearing to one of eight cardinal directions.

    Returns "Unknown" for None or NaN, which providers send when the wind
    is calm or the vane is offline.
    """
    if degrees is None:
        return "Unknown"
    try:
        degrees = float(degrees)
    except (TypeError, ValueError):
        return "Unknown"
    if math.isnan(degrees):
        return "Unknown"
    index = int(math.floor(degrees / 45 + 0.5)) % 8
    return CARDINAL_DIRECTIONS[index]


def bounding_box(
    latitude: float,
    longitude: float,
    radius_miles: float,
    miles_per_degree: float = MILES_PER_DEGREE,
) -> BBox:
    """
    Square search region around a point.

    The same miles-per-degree divisor is applied to latitude and longitude.
    A degree of longitude spans fewer miles away from the equator, so the
    box is narrower than the radius in the east-west direction and can miss
    sensors near its east and west edges. Sensors inside the box are
    filtered by true distance afterwards.

    Returns:
        (min_lon, min_lat, max_lon, max_lat)
    """
    offset = radius_miles / miles_per_degree
    return (
        longitude - offset,
        latitude - offset,
        longitude + offset,
        latitude + offset,
    )
