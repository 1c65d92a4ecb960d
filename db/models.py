"""
SQLAlchemy ORM models for the rail network store.

The service only reads these tables; an external crawler fills them.

Stops reference their journey through the composite (journey_id, journey_start)
key because one train id is reused on every service date. Each stop points at
a mandatory PLANNED stop detail and an optional ACTUAL one.
"""

from sqlalchemy import (
    Column, DateTime, Float, ForeignKey, ForeignKeyConstraint, Index, Integer, String
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Station(Base):
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    eva = Column(Integer, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, index=True)
    ds100 = Column(String, nullable=False, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    fetch_status = Column(String, nullable=False, default="FETCH")  # FETCH | TOO_MANY_ERRORS


class Journey(Base):
    __tablename__ = "journeys"

    id = Column(String, primary_key=True)
    start = Column(DateTime, primary_key=True)  # midnight-normalized service date
    train_number = Column(Integer, nullable=False, index=True)
    train_type = Column(String, nullable=False, index=True)  # ICE, IC, RE, S, ...
    train_flag = Column(String, nullable=True)
    train_line = Column(String, nullable=True)


class StopDetail(Base):
    __tablename__ = "stop_details"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False, default="PLANNED")  # PLANNED | ACTUAL
    arrival = Column(DateTime, nullable=True)    # null at the origin
    departure = Column(DateTime, nullable=True)  # null at the terminus
    platform = Column(String, nullable=True)
    status = Column(String, nullable=False, default="PLANNED")  # PLANNED | CANCELLED | ADDITIONAL


class Stop(Base):
    __tablename__ = "stops"

    id = Column(String, primary_key=True)
    journey_id = Column(String, nullable=False)
    journey_start = Column(DateTime, nullable=False)
    ordinal = Column(Integer, nullable=False)
    station_eva = Column(Integer, ForeignKey("stations.eva"), nullable=False, index=True)
    planned_details_id = Column(String, ForeignKey("stop_details.id"), nullable=False)
    actual_details_id = Column(String, ForeignKey("stop_details.id"), nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["journey_id", "journey_start"], ["journeys.id", "journeys.start"]
        ),
        Index("ix_stops_journey_ordinal", "journey_id", "journey_start", "ordinal"),
    )
