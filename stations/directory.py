"""
Station lookups by EVA number, DS100 code or name prefix.

Exact-key lookups raise NotFoundError when nothing matches; the name-prefix
search returns an empty list instead.

Stations leave this module in their public shape:
  {
    "eva":      int,
    "name":     str,
    "ds100":    str,
    "location": {"latitude": float, "longitude": float} | None,
  }
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from db.models import Station
from errors import NotFoundError

logger = logging.getLogger(__name__)

ApiStation = dict[str, Any]


def convert_station(station: Station) -> ApiStation:
    """Public station shape; location only when both coordinates are present."""
    location = None
    if station.latitude is not None and station.longitude is not None:
        location = {"latitude": station.latitude, "longitude": station.longitude}
    return {
        "eva": station.eva,
        "name": station.name,
        "ds100": station.ds100,
        "location": location,
    }


def get_all_stations(session: Session) -> list[ApiStation]:
    rows = session.query(Station).order_by(Station.name).all()
    return [convert_station(row) for row in rows]


def get_station_by_eva(session: Session, eva: int) -> ApiStation:
    row = session.query(Station).filter(Station.eva == eva).first()
    if row is None:
        raise NotFoundError(f"Station with EVA {eva} not found.")
    return convert_station(row)


def get_station_by_ds100(session: Session, ds100: str) -> ApiStation:
    row = session.query(Station).filter(Station.ds100 == ds100).first()
    if row is None:
        raise NotFoundError(f"Station with DS100 '{ds100}' not found.")
    return convert_station(row)


def get_stations_by_name(session: Session, prefix: str) -> list[ApiStation]:
    rows = (
        session.query(Station)
        .filter(Station.name.like(f"{prefix}%"))
        .order_by(Station.name)
        .all()
    )
    logger.debug("Name prefix %r matched %d stations.", prefix, len(rows))
    return [convert_station(row) for row in rows]


def stations_by_eva(stations: list[ApiStation]) -> dict[int, ApiStation]:
    """Index a station list (usually the startup snapshot) by EVA number."""
    return {s["eva"]: s for s in stations}
