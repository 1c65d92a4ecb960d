from __future__ import annotations
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake_case fields in Python, camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Stations
# ---------------------------------------------------------------------------

class Location(ApiModel):
    latitude: float
    longitude: float


class StationOut(ApiModel):
    eva: int
    name: str
    ds100: str
    location: Location | None


class StationListResponse(ApiModel):
    count: int
    stations: list[StationOut]


class StatisticsResponse(ApiModel):
    stop_count: int
    station_count: int
    journey_count: int
    cancelled_count: int


# ---------------------------------------------------------------------------
# Journeys
# ---------------------------------------------------------------------------

StopStatus = Literal["PLANNED", "CANCELLED", "ADDITIONAL"]


class ApiStop(ApiModel):
    station: StationOut
    arrival: datetime | None
    arrival_delay: int | None
    departure: datetime | None
    departure_delay: int | None
    platform: str | None
    changed_platform: str | None
    ordinal: int
    status: StopStatus


class Origin(ApiModel):
    station: StationOut
    departure: datetime | None


class Destination(ApiModel):
    station: StationOut
    arrival: datetime | None


class Itinerary(ApiModel):
    id: str
    type: str
    number: int
    line: str | None
    start: datetime
    origin: Origin
    destination: Destination
    stops: list[ApiStop]
    skipped_stops: int


class JourneyDate(ApiModel):
    start: datetime
    origin: StationOut | None
    destination: StationOut | None
    stop_count: int


class JourneyDatesResponse(ApiModel):
    type: str
    number: int
    count: int
    dates: list[JourneyDate]


class JourneySummary(ApiModel):
    type: str
    number: int
    line: str | None
    start: datetime
    arrival: datetime | None
    departure: datetime | None
    origin: StationOut | None
    destination: StationOut | None
    stop_count: int


class StationJourneysResponse(ApiModel):
    station: StationOut
    count: int
    journeys: list[JourneySummary]


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

class ConnectingStation(ApiModel):
    station: StationOut
    average_planned_time: float
    average_actual_time: float
    used_stops: int
    distance: float | None


class StationConnectionsResponse(ApiModel):
    station: StationOut
    used_stops: int
    connecting_stations: list[ConnectingStation]


class Connection(ApiModel):
    station1: StationOut
    station2: StationOut
    average_planned_time: float
    average_actual_time: float
    used_stops: int
    distance: float | None


class ConnectionsResponse(ApiModel):
    count: int
    connections: list[Connection]


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class HealthResponse(ApiModel):
    status: Literal["ok"]
    timestamp: str
    stations: int | None
    connections: int | None
    build_status: str
    last_built_at: str | None
    next_rebuild_at: str | None
