"""SQLAlchemy-backed trip store.

Sessions are synchronous and run in worker threads so the event loop
keeps serving other matching processes while the database works.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from panaride.core.exceptions import NotFoundError, PersistenceError, StateError
from panaride.store.schema import Base, TripRecord
from panaride.store.trip_store import TripMutation, TripStore
from panaride.trip import Trip

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 5


def init_database(db_path: str) -> sessionmaker[Session]:
    """Initialize a SQLite database and return a session factory."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def _columns(trip: Trip) -> dict[str, Any]:
    return {
        "passenger_id": trip.passenger_id,
        "driver_id": trip.driver_id,
        "status": trip.status.value,
        "payload": trip.model_dump_json(),
    }


class SqlTripStore(TripStore):
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    async def create(self, trip: Trip) -> Trip:
        await asyncio.to_thread(self._create_sync, trip)
        return trip.model_copy(deep=True)

    async def get(self, trip_id: str) -> Trip:
        return await asyncio.to_thread(self._get_sync, trip_id)

    async def list_for_user(self, user_id: str) -> list[Trip]:
        return await asyncio.to_thread(self._list_for_user_sync, user_id)

    async def update(self, trip_id: str, mutation: TripMutation) -> Trip:
        return await asyncio.to_thread(self._update_sync, trip_id, mutation)

    def _create_sync(self, trip: Trip) -> None:
        with self._session_factory() as session:
            session.add(
                TripRecord(
                    trip_id=trip.trip_id,
                    created_at=trip.created_at,
                    version=1,
                    **_columns(trip),
                )
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise StateError(f"Trip {trip.trip_id} already exists") from e

    def _get_sync(self, trip_id: str) -> Trip:
        with self._session_factory() as session:
            record = session.get(TripRecord, trip_id)
            if record is None:
                raise NotFoundError(f"Trip {trip_id} not found", details={"trip_id": trip_id})
            return Trip.model_validate_json(record.payload)

    def _list_for_user_sync(self, user_id: str) -> list[Trip]:
        with self._session_factory() as session:
            stmt = (
                select(TripRecord.payload)
                .where(or_(TripRecord.passenger_id == user_id, TripRecord.driver_id == user_id))
                .order_by(TripRecord.created_at.desc())
            )
            return [Trip.model_validate_json(payload) for payload in session.scalars(stmt)]

    def _update_sync(self, trip_id: str, mutation: TripMutation) -> Trip:
        for attempt in range(MAX_CONFLICT_RETRIES):
            with self._session_factory() as session:
                record = session.get(TripRecord, trip_id)
                if record is None:
                    raise NotFoundError(f"Trip {trip_id} not found", details={"trip_id": trip_id})
                version = record.version
                trip = Trip.model_validate_json(record.payload)

                mutation(trip)

                result = session.execute(
                    update(TripRecord)
                    .where(TripRecord.trip_id == trip_id, TripRecord.version == version)
                    .values(version=version + 1, **_columns(trip))
                )
                session.commit()
                if result.rowcount == 1:
                    return trip

            logger.debug(f"Trip {trip_id} changed concurrently (attempt {attempt + 1}), re-reading")

        raise PersistenceError(
            f"Trip {trip_id} kept changing during update",
            details={"trip_id": trip_id, "attempts": MAX_CONFLICT_RETRIES},
        )
