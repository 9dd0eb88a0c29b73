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
Entry points for the external scheduler.

The hourly and on-demand triggers live outside Notus and call into here.
The `notus` console command wraps both for cron-style use:

    notus hourly
    notus on-demand 42
"""

import argparse
import logging
import sys
from datetime import datetime

from .aggregator import Aggregator, LocationRunStatus, count_statuses
from .database_operations import Datastore
from .decorators import with_logging
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def floor_to_hour(timestamp: datetime) -> datetime:
    return timestamp.replace(minute=0, second=0, microsecond=0)


def _report_failures(statuses: list[LocationRunStatus]) -> None:
    for status in statuses:
        if status.status == "success":
            continue
        for error in status.errors:
            logger.error(f"Location {status.location_id} ({status.status}): {error}")


@with_logging("notus.scheduler")
def run_hourly(
    aggregator: Aggregator, now: datetime | None = None
) -> dict[int, LocationRunStatus]:
    """
    Aggregate every location for the current hour.

    The record timestamp is floored to the hour, so a second trigger in the
    same hour writes nothing new.
    """
    timestamp = floor_to_hour(now or aggregator.clock())
    results = aggregator.run_all(timestamp)
    counts = count_statuses(results)
    logger.info(
        f"Hourly run for {timestamp:%Y-%m-%d %H:%M}: "
        f"{counts['success']} ok, {counts['partial_failure']} partial, "
        f"{counts['failure']} failed"
    )
    _report_failures(list(results.values()))
    return results


@with_logging("notus.scheduler")
def run_on_demand(
    aggregator: Aggregator, location_id: int, now: datetime | None = None
) -> LocationRunStatus:
    """
    Aggregate one location immediately.

    The record timestamp is the current time to the second. Limiting how
    often this may be called is left to the caller.
    """
    timestamp = (now or aggregator.clock()).replace(microsecond=0)
    status = aggregator.run_location(location_id, timestamp)
    _report_failures([status])
    return status


def build_aggregator(settings: Settings | None = None) -> Aggregator:
    """Create an Aggregator over the configured database with every built-in provider."""
    from . import sources  # noqa: F401

    settings = settings or get_settings()
    store = Datastore(database_url=settings.database_url)
    return Aggregator(store, settings=settings)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="notus",
        description="Aggregate nearby air quality and weather sensor readings.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: NOTUS_LOG_LEVEL or INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("hourly", help="Aggregate every location for this hour")
    on_demand = commands.add_parser("on-demand", help="Aggregate one location now")
    on_demand.add_argument("location_id", type=int, help="Monitored location id")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Run the `notus` console command.

    Returns:
        int: 0 if every location succeeded, 1 otherwise
    """
    args = _parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    aggregator = build_aggregator(settings)
    if args.command == "hourly":
        statuses = list(run_hourly(aggregator).values())
    else:
        statuses = [run_on_demand(aggregator, args.location_id)]

    return 0 if all(status.status == "success" for status in statuses) else 1


if __name__ == "__main__":
    sys.exit(main())
