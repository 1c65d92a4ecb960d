"""
Journey itineraries, journey dates and journeys calling at a station.

An itinerary is a dict:
  {
    "id":           str,
    "type":         str,        # train type, e.g. "ICE"
    "number":       int,
    "line":         str | None,
    "start":        datetime,   # service date of the journey
    "origin":       {"station": ApiStation, "departure": datetime | None},
    "destination":  {"station": ApiStation, "arrival": datetime | None},
    "stops":        [ApiStop, ...],   # ascending ordinal
    "skipped_stops": int,
  }

and each ApiStop:
  {
    "station":          ApiStation,
    "arrival":          datetime | None,   # planned
    "arrival_delay":    int | None,        # minutes, actual - planned
    "departure":        datetime | None,   # planned
    "departure_delay":  int | None,
    "platform":         str | None,        # planned
    "changed_platform": str | None,        # actual, only when it differs
    "ordinal":          int,
    "status":           "PLANNED" | "CANCELLED" | "ADDITIONAL",
  }

Stops whose station or planned detail cannot be loaded are left out of the
itinerary and counted in "skipped_stops" instead of failing the request.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterator

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from db.models import Journey, Station, Stop, StopDetail
from errors import NotFoundError, ReferenceStationNotInJourneyError
from journeys.timing import calendar_day, day_bounds, minutes_between
from stations.directory import convert_station, get_station_by_ds100, stations_by_eva

logger = logging.getLogger(__name__)

Itinerary = dict[str, Any]
ApiStop = dict[str, Any]


class StopResolution:
    """
    Lazily turns Stop rows into ApiStops, skipping the ones that cannot be
    resolved. `skipped` is only final once the iteration has finished.
    """

    def __init__(self, session: Session, stops: list[Stop]) -> None:
        self._session = session
        self._stops = stops
        self.skipped = 0

    def __iter__(self) -> Iterator[ApiStop]:
        for stop in self._stops:
            try:
                api_stop = _resolve_stop(self._session, stop)
            except NotFoundError as exc:
                self.skipped += 1
                logger.warning(
                    "Skipping stop %s (ordinal %s) of journey %s: %s",
                    stop.id, stop.ordinal, stop.journey_id, exc,
                )
                continue
            yield api_stop


def get_journey(
    session: Session,
    train_type: str,
    train_number: int,
    day: date | datetime,
) -> Itinerary | None:
    """
    Itinerary of the journey (train_type, train_number) starting on `day`.

    Returns None when the journey exists but none of its stops resolve.

    Raises:
        NotFoundError: No journey of that train starts on that day.
    """
    journey = _find_journey(session, train_type, train_number, day)
    resolution = StopResolution(session, _journey_stops(session, journey))
    stops = list(resolution)
    if resolution.skipped:
        logger.info(
            "Journey %s %s on %s: %d of %d stops skipped.",
            train_type, train_number, journey.start.date(),
            resolution.skipped, resolution.skipped + len(stops),
        )
    if not stops:
        return None

    first, last = stops[0], stops[-1]
    return {
        "id": journey.id,
        "type": journey.train_type,
        "number": journey.train_number,
        "line": journey.train_line,
        "start": journey.start,
        "origin": {"station": first["station"], "departure": first["departure"]},
        "destination": {"station": last["station"], "arrival": last["arrival"]},
        "stops": stops,
        "skipped_stops": resolution.skipped,
    }


def get_journey_station_reference(
    session: Session,
    train_type: str,
    train_number: int,
    day: date | datetime,
    reference_ds100: str,
) -> Itinerary:
    """
    Itinerary of the train calling at `reference_ds100` on `day`.

    A journey's date is the date it left its origin. When the train only
    reaches the reference station after midnight, the journey is looked up
    again with the calendar day of that arrival (or departure).

    Raises:
        NotFoundError: Journey, reference station, or a time at the
            reference stop is missing.
        ReferenceStationNotInJourneyError: The journey does not call at the
            reference station.
    """
    itinerary = get_journey(session, train_type, train_number, day)
    if itinerary is None:
        raise NotFoundError(
            f"Journey {train_type} {train_number} on {calendar_day(day)} has no resolvable stops."
        )

    reference = get_station_by_ds100(session, reference_ds100)
    reference_stop = next(
        (s for s in itinerary["stops"] if s["station"]["ds100"] == reference["ds100"]),
        None,
    )
    if reference_stop is None:
        raise ReferenceStationNotInJourneyError(
            f"Journey {train_type} {train_number} does not stop at '{reference_ds100}'."
        )

    event = reference_stop["arrival"] or reference_stop["departure"]
    if event is None:
        raise NotFoundError(
            f"Stop at '{reference_ds100}' has neither an arrival nor a departure time."
        )

    if event.date() != itinerary["start"].date():
        logger.debug(
            "Reference stop %s is on %s, journey started %s; re-resolving.",
            reference_ds100, event.date(), itinerary["start"].date(),
        )
        resolved = get_journey(session, train_type, train_number, event.date())
        if resolved is None:
            raise NotFoundError(
                f"Journey {train_type} {train_number} on {event.date()} has no resolvable stops."
            )
        return resolved
    return itinerary


def get_dates_of_journey(session: Session, train_type: str, train_number: int) -> dict[str, Any]:
    """All service dates of a train, most recent first, with first/last station."""
    journeys = (
        session.query(Journey)
        .filter(Journey.train_type == train_type, Journey.train_number == train_number)
        .order_by(Journey.start.desc())
        .all()
    )

    dates = []
    for journey in journeys:
        stops = _journey_stops(session, journey)
        origin = destination = None
        if stops:
            first = min(stops, key=lambda s: s.ordinal)
            last = max(stops, key=lambda s: s.ordinal)
            origin = _station_or_none(session, first.station_eva)
            destination = _station_or_none(session, last.station_eva)
        dates.append({
            "start": journey.start,
            "origin": origin,
            "destination": destination,
            "stop_count": len(stops),
        })

    return {
        "type": train_type,
        "number": train_number,
        "count": len(dates),
        "dates": dates,
    }


def get_journeys_of_station(
    session: Session,
    ds100: str,
    day: date | datetime,
    stations: list[dict[str, Any]] | None,
) -> dict[str, Any]:
    """
    Summaries of every journey calling at `ds100` on `day`.

    A stop belongs to the day of its planned arrival, or of its planned
    departure at the origin. Origin and destination come from the station
    snapshot rather than one query per stop.

    Raises:
        NotFoundError: Unknown station, or the station snapshot is not loaded.
    """
    if stations is None:
        raise NotFoundError("Station snapshot is not available yet.")
    station = get_station_by_ds100(session, ds100)
    lookup = stations_by_eva(stations)

    start, end = day_bounds(day)
    event_time = func.coalesce(StopDetail.arrival, StopDetail.departure)
    rows = (
        session.query(Stop, Journey, StopDetail)
        .join(Journey, and_(Journey.id == Stop.journey_id, Journey.start == Stop.journey_start))
        .join(StopDetail, StopDetail.id == Stop.planned_details_id)
        .filter(Stop.station_eva == station["eva"], event_time >= start, event_time < end)
        .order_by(event_time)
        .all()
    )

    journeys = []
    for stop, journey, planned in rows:
        evas = [
            eva for (eva,) in session.query(Stop.station_eva)
            .filter(Stop.journey_id == journey.id, Stop.journey_start == journey.start)
            .order_by(Stop.ordinal)
            .all()
        ]
        journeys.append({
            "type": journey.train_type,
            "number": journey.train_number,
            "line": journey.train_line,
            "start": journey.start,
            "arrival": planned.arrival,
            "departure": planned.departure,
            "origin": lookup.get(evas[0]),
            "destination": lookup.get(evas[-1]),
            "stop_count": len(evas),
        })

    return {"station": station, "count": len(journeys), "journeys": journeys}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _find_journey(
    session: Session, train_type: str, train_number: int, day: date | datetime
) -> Journey:
    start, end = day_bounds(day)
    journey = (
        session.query(Journey)
        .filter(
            Journey.train_type == train_type,
            Journey.train_number == train_number,
            Journey.start >= start,
            Journey.start < end,
        )
        .order_by(Journey.start)
        .first()
    )
    if journey is None:
        raise NotFoundError(f"Journey {train_type} {train_number} on {start.date()} not found.")
    return journey


def _journey_stops(session: Session, journey: Journey) -> list[Stop]:
    return (
        session.query(Stop)
        .filter(Stop.journey_id == journey.id, Stop.journey_start == journey.start)
        .order_by(Stop.ordinal)
        .all()
    )


def _station_or_none(session: Session, eva: int) -> dict[str, Any] | None:
    row = session.query(Station).filter(Station.eva == eva).first()
    return convert_station(row) if row is not None else None


def _resolve_stop(session: Session, stop: Stop) -> ApiStop:
    station = session.query(Station).filter(Station.eva == stop.station_eva).first()
    if station is None:
        raise NotFoundError(f"Station with EVA {stop.station_eva} not found.")
    planned = session.get(StopDetail, stop.planned_details_id)
    if planned is None:
        raise NotFoundError(f"Planned stop detail {stop.planned_details_id} not found.")
    actual = session.get(StopDetail, stop.actual_details_id) if stop.actual_details_id else None
    return build_api_stop(convert_station(station), stop.ordinal, planned, actual)


def build_api_stop(
    station: dict[str, Any],
    ordinal: int,
    planned: StopDetail,
    actual: StopDetail | None,
) -> ApiStop:
    changed_platform = None
    if actual is not None and actual.platform and actual.platform != planned.platform:
        changed_platform = actual.platform

    return {
        "station": station,
        "arrival": planned.arrival,
        "arrival_delay": _delay_minutes(planned.arrival, actual.arrival if actual else None),
        "departure": planned.departure,
        "departure_delay": _delay_minutes(planned.departure, actual.departure if actual else None),
        "platform": planned.platform,
        "changed_platform": changed_platform,
        "ordinal": ordinal,
        "status": actual.status if actual is not None else "PLANNED",
    }


def _delay_minutes(planned: datetime | None, actual: datetime | None) -> int | None:
    if planned is None or actual is None:
        return None
    return minutes_between(actual, planned)
