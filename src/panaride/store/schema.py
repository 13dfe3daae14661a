"""SQLAlchemy ORM models for trip persistence."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TripRecord(Base):
    """One trip. Queryable columns are denormalized from the JSON payload.

    ``version`` is bumped on every write; updates are conditional on the
    version read, which makes each write a compare-and-set.
    """

    __tablename__ = "trips"

    trip_id: Mapped[str] = mapped_column(String, primary_key=True)
    passenger_id: Mapped[str] = mapped_column(String, nullable=False)
    driver_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_trip_status", "status"),
        Index("idx_trip_passenger", "passenger_id"),
        Index("idx_trip_driver", "driver_id"),
    )
