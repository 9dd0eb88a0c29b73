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
Short-lived cache of provider fetch results.

Provider networks are rate limited, and several locations often sit close
enough together to issue the same query within one run. Results are keyed on
a fingerprint of the provider, the rounded coordinates, the radius and the
query parameters, and expire after a fixed time-to-live.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

DEFAULT_TTL_SECONDS = 900.0
DEFAULT_PRECISION = 4


def _format_param(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return "[" + ",".join(_format_param(item) for item in items) + "]"
    if isinstance(value, float):
        return repr(value)
    return str(value)


def fingerprint(
    provider: str,
    latitude: float,
    longitude: float,
    radius_miles: float | None = None,
    precision: int = DEFAULT_PRECISION,
    **params,
) -> str:
    """
    Build a deterministic cache key for one provider query.

    Coordinates are rounded to `precision` decimal places (4 places is about
    11 m) so points that differ only by float noise share a key. Parameters
    are sorted by name so keyword order never matters.

    Example:
        >>> fingerprint("PURPLEAIR", 51.50012, -0.12, 5.0, sensor_ids=["1", "2"])
        'PURPLEAIR|51.5001|-0.1200|5.0|sensor_ids=[1,2]'
    """
    parts = [
        provider.upper(),
        f"{latitude:.{precision}f}",
        f"{longitude:.{precision}f}",
        "-" if radius_miles is None else repr(float(radius_miles)),
    ]
    for name in sorted(params):
        parts.append(f"{name}={_format_param(params[name])}")
    return "|".join(parts)


@dataclass
class CacheEntry:
    key: str
    value: Any
    written_at: float


class ResultCache:
    """
    A thread-safe time-to-live cache.

    Args:
        ttl_seconds: How long an entry stays valid after it is written
        clock: Monotonic clock returning seconds; injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.written_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key, value, self._clock())

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
