"""
Shared fixtures: an in-memory SQLite store and a small seeder for stations
and journeys.

Times are naive datetimes, as stored by the crawler.
"""

import itertools
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base, Journey, Station, Stop, StopDetail


@pytest.fixture
def db():
    """Fresh in-memory SQLite database, schema pre-created, per test.

    StaticPool is required so that create_all and the session both use
    the same single connection; otherwise each pool checkout gets a new
    in-memory DB that has no tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


def stop(eva, arr=None, dep=None, platform=None, actual=None, planned_id=None):
    """
    One stop for NetworkSeeder.journey(), also available as `seed.stop`.

    `actual` is an optional dict with arr / dep / platform / status keys.
    `planned_id` overrides the planned detail id (to reference a missing row).
    """
    return {
        "eva": eva,
        "arr": arr,
        "dep": dep,
        "platform": platform,
        "actual": actual,
        "planned_id": planned_id,
    }


class NetworkSeeder:
    stop = staticmethod(stop)

    def __init__(self, session):
        self.session = session
        self._ids = itertools.count(1)

    def station(self, eva, ds100, name, lat=None, lon=None):
        row = Station(eva=eva, ds100=ds100, name=name, latitude=lat, longitude=lon)
        self.session.add(row)
        self.session.commit()
        return row

    def journey(self, train_type, train_number, start: datetime, stops, line=None, journey_id=None,
                ordinals=None):
        """Add a journey with its stops; ordinals default to 0..n-1 in list order."""
        journey = Journey(
            id=journey_id or f"J{next(self._ids)}",
            start=start,
            train_type=train_type,
            train_number=train_number,
            train_line=line,
        )
        self.session.add(journey)

        for index, spec in enumerate(stops):
            n = next(self._ids)
            planned_id = spec["planned_id"] or f"P{n}"
            if spec["planned_id"] is None:
                self.session.add(StopDetail(
                    id=planned_id, type="PLANNED",
                    arrival=spec["arr"], departure=spec["dep"],
                    platform=spec["platform"], status="PLANNED",
                ))
            actual_id = None
            if spec["actual"] is not None:
                actual_id = f"A{n}"
                actual = spec["actual"]
                self.session.add(StopDetail(
                    id=actual_id, type="ACTUAL",
                    arrival=actual.get("arr"), departure=actual.get("dep"),
                    platform=actual.get("platform"), status=actual.get("status", "PLANNED"),
                ))
            self.session.add(Stop(
                id=f"S{n}",
                journey_id=journey.id,
                journey_start=start,
                ordinal=ordinals[index] if ordinals else index,
                station_eva=spec["eva"],
                planned_details_id=planned_id,
                actual_details_id=actual_id,
            ))
        self.session.commit()
        return journey


@pytest.fixture
def seed(db):
    return NetworkSeeder(db)
