"""
SQLAlchemy ORM models.

Tables
------
* ``location_blocks``  -- geofenced pickup / destination points
* ``riders``           -- customers on whose behalf rides are requested
* ``pullers``          -- drivers with a ledger-derived points balance
* ``rides``            -- dispatch units and their lifecycle timestamps
* ``ride_rejections``  -- the grow-only set of pullers who declined a ride
* ``points_history``   -- append-only points ledger

Indexes
-------
* **B-Tree** on ``rides.status`` (expiry / open-ride scans) and on
  ``pullers (is_online, is_active)`` for candidate selection.
* **Unique** ``(ride_id, puller_id)`` on ``ride_rejections`` makes a
  repeated reject a no-op instead of a duplicate.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from ride_dispatch.domain.enums import PointReason, RideStatus


class LocationBlockModel(Base):
    __tablename__ = "location_blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    block_id = Column(String(100), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RiderModel(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PullerModel(Base):
    __tablename__ = "pullers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), unique=True, nullable=True)
    points_balance = Column(Integer, default=0, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_known_lat = Column(Float, nullable=True)
    last_known_lon = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_pullers_availability", "is_online", "is_active"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(Enum(RideStatus), default=RideStatus.SEARCHING, nullable=False)

    request_time = Column(DateTime(timezone=True), nullable=False)
    accept_time = Column(DateTime(timezone=True), nullable=True)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    completion_time = Column(DateTime(timezone=True), nullable=True)
    points_awarded = Column(Integer, nullable=True)

    start_block_id = Column(Integer, ForeignKey("location_blocks.id"), nullable=False)
    destination_block_id = Column(
        Integer, ForeignKey("location_blocks.id"), nullable=False
    )
    puller_id = Column(Integer, ForeignKey("pullers.id"), nullable=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Eager joins: a ride is always serialised together with its blocks
    start_block = relationship(
        LocationBlockModel, foreign_keys=[start_block_id], lazy="joined"
    )
    destination_block = relationship(
        LocationBlockModel, foreign_keys=[destination_block_id], lazy="joined"
    )
    puller = relationship(PullerModel, lazy="joined")
    rider = relationship(RiderModel, lazy="joined")

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_puller", "puller_id"),
        Index("idx_rides_request_time", "request_time"),
    )


class RideRejectionModel(Base):
    __tablename__ = "ride_rejections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    puller_id = Column(Integer, ForeignKey("pullers.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ride_id", "puller_id", name="uq_ride_rejection"),
    )


class PointsHistoryModel(Base):
    __tablename__ = "points_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    puller_id = Column(Integer, ForeignKey("pullers.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=True)
    points_change = Column(Integer, nullable=False)
    reason = Column(Enum(PointReason), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_points_history_puller", "puller_id"),)
