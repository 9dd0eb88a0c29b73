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
Store monitored locations, pinned sensor sets and aggregate records.

One Datastore wraps one SQLAlchemy engine. Every operation opens its own
session, so a Datastore can be shared between the aggregator's worker
threads. The unique constraints on PinnedSensorSet and AggregateRecord are
what make discovery and hourly aggregation idempotent: a second writer for
the same key loses quietly.

Every timestamp column holds naive UTC. The aggregator converts aware
values before they reach the store.
"""

from datetime import datetime, timezone
from logging import getLogger
from typing import Any

from pydantic import NaiveDatetime
from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

logger = getLogger(__name__)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MonitoredLocation(SQLModel, table=True):
    """
    Represents a point a user has asked to monitor.
    """

    id: int | None = Field(default=None, primary_key=True)
    latitude: float | None
    longitude: float | None
    search_radius_miles: float = 5.0
    label: str | None = None
    owner_id: str | None = None
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class PinnedSensorSet(SQLModel, table=True):
    """
    Represents the sensors chosen for a location on one pinned provider.

    An empty `sensor_ids` list means discovery ran and found nothing.
    """

    __table_args__ = (UniqueConstraint("location_id", "provider"),)

    id: int | None = Field(default=None, primary_key=True)
    location_id: int = Field(index=True)
    provider: str
    sensor_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    radius_miles: float
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


class AggregateRecord(SQLModel, table=True):
    """
    Represents one provider's summary for one location at one timestamp.
    """

    __table_args__ = (UniqueConstraint("location_id", "provider", "timestamp"),)

    id: int | None = Field(default=None, primary_key=True)
    location_id: int = Field(index=True)
    provider: str
    timestamp: NaiveDatetime = Field(index=True, sa_type=DateTime)
    closest: int = 0
    average: int = 0
    no_data: bool = False
    closest_24h: int | None = None
    average_24h: int | None = None
    diagnostics: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)


def _engine_url(database_file: str | None, database_url: str | None) -> str:
    if database_file is None and database_url is None:
        raise ValueError("One of database_file or database_url must be provided")
    elif database_file is not None and database_url is not None:
        raise ValueError("Provide only one of database_file or database_url")
    if database_url is not None:
        return database_url
    return f"sqlite:///{database_file}"


def make_engine(engine_url: str, echo: bool = False):
    """
    Create an engine for `engine_url`.

    SQLite connections are opened with check_same_thread disabled, since the
    aggregator writes from a thread pool. In-memory SQLite shares a single
    connection so every session sees the same database.
    """
    if not engine_url.startswith("sqlite"):
        return create_engine(engine_url, echo=echo)

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if engine_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(engine_url, echo=echo, **kwargs)


class Datastore:
    """
    Persistence for locations, pinned sensor sets and aggregate records.

    Args:
        database_file: Path to a SQLite file
        database_url: Any SQLAlchemy URL
        engine: An existing engine (takes precedence over the other two)
        echo: Echo SQL to the log

    Example:
        >>> store = Datastore(database_file="notus.db")
        >>> location = store.add_location(51.5, -0.12)
        >>> store.latest_record(location.id, "PURPLEAIR")
    """

    def __init__(
        self,
        database_file: str | None = None,
        database_url: str | None = None,
        engine=None,
        echo: bool = False,
    ):
        if engine is None:
            engine = make_engine(_engine_url(database_file, database_url), echo=echo)
        self.engine = engine
        SQLModel.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def add_location(
        self,
        latitude: float | None,
        longitude: float | None,
        search_radius_miles: float | None = None,
        label: str | None = None,
        owner_id: str | None = None,
    ) -> MonitoredLocation:
        location = MonitoredLocation(
            latitude=latitude,
            longitude=longitude,
            label=label,
            owner_id=owner_id,
        )
        if search_radius_miles is not None:
            location.search_radius_miles = search_radius_miles

        with Session(self.engine) as session:
            session.add(location)
            session.commit()
            session.refresh(location)
        return location

    def get_location(self, location_id: int) -> MonitoredLocation | None:
        with Session(self.engine) as session:
            return session.get(MonitoredLocation, location_id)

    def list_locations(self) -> list[MonitoredLocation]:
        with Session(self.engine) as session:
            return list(
                session.exec(select(MonitoredLocation).order_by(MonitoredLocation.id))
            )

    def update_location_coordinates(
        self, location_id: int, latitude: float, longitude: float
    ) -> MonitoredLocation | None:
        """
        Move a location. Its pinned sensor sets are cleared, so the next run
        rediscovers sensors around the new point.
        """
        with Session(self.engine) as session:
            location = session.get(MonitoredLocation, location_id)
            if location is None:
                return None
            location.latitude = latitude
            location.longitude = longitude
            location.updated_at = utcnow()
            session.add(location)
            statement = select(PinnedSensorSet).where(
                PinnedSensorSet.location_id == location_id
            )
            for pinned in session.exec(statement).all():
                session.delete(pinned)
            session.commit()
            session.refresh(location)
        logger.info(f"Location {location_id} moved; pinned sensors cleared")
        return location

    def set_search_radius(
        self, location_id: int, radius_miles: float
    ) -> MonitoredLocation | None:
        if radius_miles <= 0:
            raise ValueError("radius_miles must be positive")
        with Session(self.engine) as session:
            location = session.get(MonitoredLocation, location_id)
            if location is None:
                return None
            location.search_radius_miles = radius_miles
            location.updated_at = utcnow()
            session.add(location)
            session.commit()
            session.refresh(location)
        return location

    def delete_location(self, location_id: int) -> bool:
        """Delete a location together with its pinned sets and records."""
        with Session(self.engine) as session:
            location = session.get(MonitoredLocation, location_id)
            if location is None:
                return False
            for model in (PinnedSensorSet, AggregateRecord):
                statement = select(model).where(model.location_id == location_id)
                for row in session.exec(statement).all():
                    session.delete(row)
            session.delete(location)
            session.commit()
        return True

    # ------------------------------------------------------------------
    # Pinned sensor sets
    # ------------------------------------------------------------------

    def get_pinned_sensors(
        self, location_id: int, provider: str
    ) -> PinnedSensorSet | None:
        """
        Return the stored sensor set, or None if discovery has never run for
        this location and provider.
        """
        with Session(self.engine) as session:
            statement = select(PinnedSensorSet).where(
                PinnedSensorSet.location_id == location_id,
                PinnedSensorSet.provider == provider,
            )
            return session.exec(statement).first()

    def set_pinned_sensors(
        self,
        location_id: int,
        provider: str,
        sensor_ids: list[str],
        radius_miles: float,
    ) -> PinnedSensorSet:
        """
        Store a sensor set unless one already exists.

        The first stored set wins; the stored set is returned either way.
        """
        existing = self.get_pinned_sensors(location_id, provider)
        if existing is not None:
            return existing

        pinned = PinnedSensorSet(
            location_id=location_id,
            provider=provider,
            sensor_ids=[str(sensor_id) for sensor_id in sensor_ids],
            radius_miles=radius_miles,
        )
        with Session(self.engine) as session:
            session.add(pinned)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug(
                    f"Pinned set for location {location_id} / {provider} "
                    "already stored by another worker"
                )
                pinned = None
            else:
                session.refresh(pinned)

        if pinned is None:
            return self.get_pinned_sensors(location_id, provider)
        return pinned

    def clear_pinned_sensors(self, location_id: int, provider: str | None = None) -> int:
        """Forget pinned sets so they are rediscovered. Returns rows removed."""
        with Session(self.engine) as session:
            statement = select(PinnedSensorSet).where(
                PinnedSensorSet.location_id == location_id
            )
            if provider is not None:
                statement = statement.where(PinnedSensorSet.provider == provider)
            removed = session.exec(statement).all()
            for pinned in removed:
                session.delete(pinned)
            session.commit()
        return len(removed)

    # ------------------------------------------------------------------
    # Aggregate records
    # ------------------------------------------------------------------

    def insert_record_if_absent(self, record: AggregateRecord) -> AggregateRecord | None:
        """
        Insert a record unless one exists for its (location, provider, timestamp).

        Returns the stored record, or None when the key was already taken.
        """
        with Session(self.engine) as session:
            statement = select(AggregateRecord.id).where(
                AggregateRecord.location_id == record.location_id,
                AggregateRecord.provider == record.provider,
                AggregateRecord.timestamp == record.timestamp,
            )
            if session.exec(statement).first() is not None:
                return None

            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(record)
        return record

    def update_rolling_averages(
        self, record_id: int, closest_24h: int, average_24h: int
    ) -> None:
        with Session(self.engine) as session:
            record = session.get(AggregateRecord, record_id)
            if record is None:
                logger.warning(f"Record {record_id} vanished before rolling update")
                return
            record.closest_24h = closest_24h
            record.average_24h = average_24h
            session.add(record)
            session.commit()

    def select_records(
        self,
        location_id: int,
        provider: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AggregateRecord]:
        """
        Records for a location ordered by timestamp.

        The window is half-open: `start` is exclusive and `end` inclusive.
        """
        statement = select(AggregateRecord).where(
            AggregateRecord.location_id == location_id
        )
        if provider is not None:
            statement = statement.where(AggregateRecord.provider == provider)
        if start is not None:
            statement = statement.where(AggregateRecord.timestamp > start)
        if end is not None:
            statement = statement.where(AggregateRecord.timestamp <= end)
        statement = statement.order_by(AggregateRecord.timestamp)

        with Session(self.engine) as session:
            return list(session.exec(statement))

    def earliest_record_timestamp(
        self, location_id: int, provider: str
    ) -> datetime | None:
        statement = (
            select(AggregateRecord.timestamp)
            .where(
                AggregateRecord.location_id == location_id,
                AggregateRecord.provider == provider,
            )
            .order_by(AggregateRecord.timestamp)
            .limit(1)
        )
        with Session(self.engine) as session:
            return session.exec(statement).first()

    def latest_record(
        self, location_id: int, provider: str | None = None
    ) -> AggregateRecord | None:
        """Most recent record for a location, optionally for one provider."""
        statement = select(AggregateRecord).where(
            AggregateRecord.location_id == location_id
        )
        if provider is not None:
            statement = statement.where(AggregateRecord.provider == provider)
        statement = statement.order_by(AggregateRecord.timestamp.desc()).limit(1)

        with Session(self.engine) as session:
            return session.exec(statement).first()
