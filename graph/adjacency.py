"""
Travel-time observations between a station and its neighbours.

For every stop made at the station inside the observation window the stops
at ordinal - 1 and ordinal + 1 of the same journey occurrence are looked up.
Each existing neighbour yields one observation:

  previous stop:  this planned arrival   - previous planned departure
  next stop:      next planned arrival   - this planned departure

Actual times use the actual arrival/departure of each side, falling back
to the planned time of that side when no actual value exists. Observations
are summed per neighbour station and averaged at the end.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import and_, func
from sqlalchemy.orm import Query, Session, aliased

from config import CONNECTION_WINDOW_DAYS, CONNECTION_WINDOW_END, CONNECTION_WINDOW_START
from db.models import Journey, Stop, StopDetail
from graph.distance import station_distance_km
from journeys.timing import minutes_between, round_half_up
from stations.directory import get_all_stations, get_station_by_ds100, stations_by_eva

logger = logging.getLogger(__name__)

Window = tuple[datetime, datetime]

_planned = aliased(StopDetail, name="planned")
_actual = aliased(StopDetail, name="actual")


def observation_window(today: date | None = None) -> Window:
    """
    [start, end) of the period whose stops feed the adjacency walk.

    CONNECTION_WINDOW_END is inclusive as a calendar day. Without explicit
    bounds the window is the CONNECTION_WINDOW_DAYS days before today.
    """
    if CONNECTION_WINDOW_END:
        end = datetime.combine(date.fromisoformat(CONNECTION_WINDOW_END), time.min) + timedelta(days=1)
    else:
        end = datetime.combine(today or date.today(), time.min)

    if CONNECTION_WINDOW_START:
        start = datetime.combine(date.fromisoformat(CONNECTION_WINDOW_START), time.min)
    else:
        start = end - timedelta(days=CONNECTION_WINDOW_DAYS)
    return start, end


def get_station_connections(
    session: Session,
    ds100: str,
    stations: list[dict[str, Any]] | None = None,
    window: Window | None = None,
) -> dict[str, Any]:
    """
    Neighbours of the station with average planned/actual travel minutes.

    `stations` is the station snapshot used to resolve neighbours; it is
    loaded from the database when the snapshot is not available.

    Raises:
        NotFoundError: No station with that DS100 code.
    """
    station = get_station_by_ds100(session, ds100)
    if stations is None:
        stations = get_all_stations(session)
    return extract_connections(session, station, stations_by_eva(stations), window or observation_window())


def extract_connections(
    session: Session,
    station: dict[str, Any],
    lookup: dict[int, dict[str, Any]],
    window: Window,
) -> dict[str, Any]:
    """
    Returns:
      {
        "station":             ApiStation,
        "used_stops":          int,    # stops at the station with >= 1 observation
        "connecting_stations": [
          {"station", "average_planned_time", "average_actual_time",
           "used_stops", "distance"},
          ...
        ],
      }
    """
    start, end = window
    event_time = func.coalesce(_planned.arrival, _planned.departure)
    rows = (
        _stop_times(session)
        .filter(Stop.station_eva == station["eva"], event_time >= start, event_time < end)
        .order_by(event_time)
        .all()
    )

    # neighbour eva -> running sums
    sums: dict[int, dict[str, int]] = defaultdict(lambda: {"planned": 0, "actual": 0, "count": 0})
    used_stops = 0

    for row in rows:
        observations = []
        previous = _neighbour(session, row, row.ordinal - 1)
        if previous is not None:
            observations.append((previous.station_eva, _travel_minutes(previous, row)))
        following = _neighbour(session, row, row.ordinal + 1)
        if following is not None:
            observations.append((following.station_eva, _travel_minutes(row, following)))

        observations = [(eva, minutes) for eva, minutes in observations if minutes is not None]
        if not observations:
            continue
        used_stops += 1
        for eva, minutes in observations:
            _accumulate(sums, eva, minutes)

    connecting = []
    for eva, acc in sums.items():
        neighbour = lookup.get(eva)
        if neighbour is None:
            logger.warning(
                "Neighbour EVA %s of %s is not in the station list; dropped.", eva, station["ds100"]
            )
            continue
        connecting.append({
            "station": neighbour,
            "average_planned_time": round_half_up(acc["planned"] / acc["count"]),
            "average_actual_time": round_half_up(acc["actual"] / acc["count"]),
            "used_stops": acc["count"],
            "distance": station_distance_km(station, neighbour),
        })

    logger.debug(
        "%s: %d stops in window, %d used, %d neighbours.",
        station["ds100"], len(rows), used_stops, len(connecting),
    )
    return {"station": station, "used_stops": used_stops, "connecting_stations": connecting}


def _stop_times(session: Session) -> Query:
    """Stops joined with their journey and planned/actual times (one row per stop)."""
    return (
        session.query(
            Stop.id,
            Stop.journey_id,
            Stop.journey_start,
            Stop.ordinal,
            Stop.station_eva,
            Journey.train_type,
            Journey.train_number,
            _planned.arrival.label("planned_arrival"),
            _planned.departure.label("planned_departure"),
            _actual.arrival.label("actual_arrival"),
            _actual.departure.label("actual_departure"),
        )
        .join(Journey, and_(Journey.id == Stop.journey_id, Journey.start == Stop.journey_start))
        .join(_planned, _planned.id == Stop.planned_details_id)
        .outerjoin(_actual, _actual.id == Stop.actual_details_id)
    )


def _neighbour(session: Session, row: Any, ordinal: int) -> Any | None:
    if ordinal < 0:
        return None
    return (
        _stop_times(session)
        .filter(
            Stop.journey_id == row.journey_id,
            Stop.journey_start == row.journey_start,
            Stop.ordinal == ordinal,
        )
        .first()
    )


def _travel_minutes(departing: Any, arriving: Any) -> tuple[int, int] | None:
    """(planned, actual) minutes from `departing` to `arriving`, None without planned times."""
    if departing.planned_departure is None or arriving.planned_arrival is None:
        return None
    planned = minutes_between(arriving.planned_arrival, departing.planned_departure)
    actual = minutes_between(
        arriving.actual_arrival or arriving.planned_arrival,
        departing.actual_departure or departing.planned_departure,
    )
    return planned, actual


def _accumulate(sums: dict[int, dict[str, int]], eva: int, minutes: tuple[int, int]) -> None:
    planned, actual = minutes
    acc = sums[eva]
    acc["planned"] += planned
    acc["actual"] += actual
    acc["count"] += 1
