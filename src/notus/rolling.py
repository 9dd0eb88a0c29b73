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
Trailing 24-hour statistics for aggregate records.

After each record is written, the mean `closest` and `average` over the
same location and provider in the trailing window are computed and
rounded half up like every other index figure. They are
written back to the record only once the window holds a full day of hourly
samples; until then consumers can show when enough history will exist.

The record count stands in for elapsed time and assumes one run per hour.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from logging import getLogger

from .database_operations import AggregateRecord, Datastore
from .metrics import round_half_up

logger = getLogger(__name__)

WINDOW_HOURS = 24
MIN_RECORDS = 24


@dataclass
class RollingStats:
    count: int
    closest_mean: int | None
    average_mean: int | None
    backfilled: bool = False


class RollingWindowTracker:
    """
    Args:
        store: Datastore holding the records
        window_hours: Length of the trailing window
        min_records: Records needed before the means are written back
    """

    def __init__(
        self,
        store: Datastore,
        window_hours: float = WINDOW_HOURS,
        min_records: int = MIN_RECORDS,
    ):
        self.store = store
        self.window = timedelta(hours=window_hours)
        self.min_records = min_records

    def window_records(self, record: AggregateRecord) -> list[AggregateRecord]:
        """Records for the same location and provider in (t - window, t]."""
        return self.store.select_records(
            record.location_id,
            record.provider,
            start=record.timestamp - self.window,
            end=record.timestamp,
        )

    def update(self, record: AggregateRecord) -> RollingStats:
        """
        Compute the trailing means for a freshly written record.

        The record's rolling fields are back-filled when the window holds at
        least `min_records` records and left unset otherwise.
        """
        records = self.window_records(record)
        count = len(records)
        if count == 0:
            return RollingStats(count=0, closest_mean=None, average_mean=None)

        closest_mean = round_half_up(sum(r.closest for r in records) / count)
        average_mean = round_half_up(sum(r.average for r in records) / count)
        stats = RollingStats(
            count=count, closest_mean=closest_mean, average_mean=average_mean
        )

        if count >= self.min_records:
            self.store.update_rolling_averages(record.id, closest_mean, average_mean)
            record.closest_24h = closest_mean
            record.average_24h = average_mean
            stats.backfilled = True
        else:
            logger.debug(
                f"Location {record.location_id} / {record.provider}: "
                f"{count} of {self.min_records} records for a full window"
            )
        return stats

    def history_available_at(self, location_id: int, provider: str) -> datetime | None:
        """
        Estimate when a full window of history will exist.

        Returns:
            The earliest stored timestamp plus the window length, or None if
            nothing has been recorded yet
        """
        earliest = self.store.earliest_record_timestamp(location_id, provider.upper())
        if earliest is None:
            return None
        return earliest + self.window
