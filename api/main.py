"""
FastAPI application entry point.

On startup:
  1. Create missing tables (local SQLite development).
  2. Load the station snapshot.
  3. Start the APScheduler:
       - Network connection build, once right away
         (when BUILD_CONNECTIONS_ON_STARTUP is set).
       - Periodic rebuild every CONNECTION_REBUILD_HOURS (when > 0).

Endpoints (v1, prefix /bahn/v1):
  GET /stations
  GET /station?name=<prefix> | ds100=<code> | eva=<number>
  GET /statistics
  GET /journey/dates?train_type=<type>&train_number=<n>
  GET /journey?train_type=<type>&train_number=<n>&date=<YYYY-MM-DD>[&station=<ds100>]
  GET /station/{ds100}/journeys?date=<YYYY-MM-DD>
  GET /station/{ds100}/connections
  GET /connections
  GET /health
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, date as Date, timedelta
from typing import Any

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from api.schemas import (
    ConnectionsResponse,
    HealthResponse,
    Itinerary,
    JourneyDatesResponse,
    StationConnectionsResponse,
    StationJourneysResponse,
    StationListResponse,
    StationOut,
    StatisticsResponse,
)
from config import (
    API_HOST,
    API_PORT,
    BUILD_CONNECTIONS_ON_STARTUP,
    CONNECTION_REBUILD_HOURS,
    CORS_ORIGINS,
    RESPONSE_CACHE_SECONDS,
)
from db.session import SessionLocal, get_session, init_db
from errors import NotFoundError, NotReadyError
from graph.adjacency import get_station_connections
from graph.builder import build_connection_graph, get_all_connections
from graph.snapshot import NetworkSnapshot
from journeys.resolver import (
    get_dates_of_journey,
    get_journey,
    get_journey_station_reference,
    get_journeys_of_station,
)
from journeys.statistics import get_statistics
from stations.directory import (
    get_all_stations,
    get_station_by_ds100,
    get_station_by_eva,
    get_stations_by_name,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response cache keyed by (endpoint, *params)
# Holds the service result dicts; cleared when a new connection graph lands.
# ---------------------------------------------------------------------------
_response_cache: dict[tuple, tuple[Any, datetime]] = {}
_RESPONSE_CACHE_TTL = timedelta(seconds=RESPONSE_CACHE_SECONDS)


def _get_cached(key: tuple) -> Any | None:
    entry = _response_cache.get(key)
    if entry is None:
        return None
    payload, cached_at = entry
    if datetime.now() - cached_at > _RESPONSE_CACHE_TTL:
        _response_cache.pop(key, None)
        return None
    return payload


def _store_cached(key: tuple, payload: Any) -> None:
    now = datetime.now()
    # Handlers run in the threadpool and the build job clears from its own
    # thread, so entries may vanish between lookup and removal.
    for stale_key, (_, cached_at) in list(_response_cache.items()):
        if now - cached_at > _RESPONSE_CACHE_TTL:
            _response_cache.pop(stale_key, None)
    _response_cache[key] = (payload, now)


def _clear_response_cache() -> None:
    _response_cache.clear()
    logger.info("Response cache cleared.")


def get_snapshot(request: Request) -> NetworkSnapshot:
    """Dependency returning the application's network snapshot."""
    return request.app.state.snapshot


def _build_connection_snapshot(snapshot: NetworkSnapshot) -> None:
    """
    Scheduled job: reload the station snapshot and rebuild the connection
    graph into `snapshot`.

    Opens its own DB session because APScheduler jobs run outside FastAPI's
    DI system. Failures are logged and recorded in the snapshot status; the
    previous connection list, if any, stays published.
    """
    logger.info("Connection build job starting.")
    db = SessionLocal()
    try:
        stations = get_all_stations(db)
        snapshot.publish_stations(stations)
        build_connection_graph(db, stations, snapshot)
        _clear_response_cache()
    except Exception as exc:
        logger.error("Connection build failed: %s", exc, exc_info=True)
        snapshot.mark_failed(exc)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    logger.info("Database initialised.")

    snapshot = NetworkSnapshot()
    app.state.snapshot = snapshot
    scheduler = AsyncIOScheduler()
    app.state.scheduler = scheduler

    db = SessionLocal()
    try:
        snapshot.publish_stations(get_all_stations(db))
    except Exception as exc:
        logger.warning("Could not load station snapshot on startup: %s", exc)
    finally:
        db.close()

    if BUILD_CONNECTIONS_ON_STARTUP:
        # Date trigger without run_date fires once, immediately.
        scheduler.add_job(
            _build_connection_snapshot,
            "date",
            args=[snapshot],
            id="connection_build",
            replace_existing=True,
        )
    else:
        logger.info("Connection build on startup disabled.")

    if CONNECTION_REBUILD_HOURS > 0:
        scheduler.add_job(
            _build_connection_snapshot,
            "interval",
            hours=CONNECTION_REBUILD_HOURS,
            args=[snapshot],
            id="connection_rebuild",
            replace_existing=True,
        )
        logger.info("Connection rebuild scheduled every %dh.", CONNECTION_REBUILD_HOURS)

    scheduler.start()

    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="Bahn Network API",
    description="Stations, journeys and station connectivity derived from observed train runs.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/bahn/v1")


@app.get("/health", response_model=HealthResponse)
async def health(
    request: Request,
    snapshot: NetworkSnapshot = Depends(get_snapshot),
) -> HealthResponse:
    """Liveness plus the state of the station and connection snapshots."""
    next_rebuild_at: str | None = None
    scheduler = request.app.state.scheduler
    job = scheduler.get_job("connection_rebuild")
    if job and job.next_run_time:
        next_rebuild_at = job.next_run_time.isoformat()

    stations = snapshot.stations
    connections = snapshot.connections
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "stations": len(stations) if stations is not None else None,
        "connections": len(connections) if connections is not None else None,
        "build_status": snapshot.status,
        "last_built_at": snapshot.built_at.isoformat() if snapshot.built_at else None,
        "next_rebuild_at": next_rebuild_at,
    }


@router.get("/stations", response_model=StationListResponse)
def list_stations(
    session: Session = Depends(get_session),
    snapshot: NetworkSnapshot = Depends(get_snapshot),
) -> StationListResponse:
    """All stations; served from the startup snapshot when it is loaded."""
    stations = snapshot.stations
    if stations is None:
        stations = get_all_stations(session)
    return {"count": len(stations), "stations": stations}


@router.get("/station", response_model=StationOut | list[StationOut])
def find_station(
    name: str | None = Query(None, min_length=1, description="Station name prefix"),
    ds100: str | None = Query(None, min_length=1, description="DS100 station code"),
    eva: int | None = Query(None, ge=0, description="EVA station number"),
    session: Session = Depends(get_session),
) -> StationOut | list[StationOut]:
    """
    Look up stations. A name prefix returns a (possibly empty) list; DS100
    and EVA return a single station or 404. The first given identifier wins
    in the order name, ds100, eva.
    """
    try:
        if name:
            return get_stations_by_name(session, name)
        if ds100:
            return get_station_by_ds100(session, ds100)
        if eva is not None:
            return get_station_by_eva(session, eva)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    raise HTTPException(status_code=400, detail="Unique identifier is missing: give name, ds100 or eva.")


@router.get("/statistics", response_model=StatisticsResponse)
def statistics(session: Session = Depends(get_session)) -> StatisticsResponse:
    return get_statistics(session)


@router.get("/journey/dates", response_model=JourneyDatesResponse)
def journey_dates(
    train_type: str = Query(..., min_length=1, description="Train type, e.g. ICE"),
    train_number: int = Query(..., ge=0, description="Train number"),
    session: Session = Depends(get_session),
) -> JourneyDatesResponse:
    """All service dates of a train, most recent first."""
    key = ("journey_dates", train_type, train_number)
    result = _get_cached(key)
    if result is None:
        result = get_dates_of_journey(session, train_type, train_number)
        _store_cached(key, result)
    return result


@router.get("/journey", response_model=Itinerary)
def journey(
    train_type: str = Query(..., min_length=1, description="Train type, e.g. ICE"),
    train_number: int = Query(..., ge=0, description="Train number"),
    date: Date = Query(..., description="Service date as YYYY-MM-DD"),
    station: str | None = Query(
        None,
        min_length=1,
        description="DS100 of a station the train calls at; the date then refers to that stop.",
    ),
    session: Session = Depends(get_session),
) -> Itinerary:
    """Itinerary of one journey with planned times and per-stop delays."""
    key = ("journey", train_type, train_number, date.isoformat(), station)
    result = _get_cached(key)
    if result is None:
        try:
            if station:
                result = get_journey_station_reference(session, train_type, train_number, date, station)
            else:
                result = get_journey(session, train_type, train_number, date)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        if result is None:
            raise HTTPException(status_code=404, detail="Journey not found.")
        _store_cached(key, result)
    return result


@router.get("/station/{ds100}/journeys", response_model=StationJourneysResponse)
def station_journeys(
    ds100: str,
    date: Date = Query(..., description="Calendar date as YYYY-MM-DD"),
    session: Session = Depends(get_session),
    snapshot: NetworkSnapshot = Depends(get_snapshot),
) -> StationJourneysResponse:
    """Journeys calling at a station on a date."""
    try:
        return get_journeys_of_station(session, ds100, date, snapshot.stations)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/station/{ds100}/connections", response_model=StationConnectionsResponse)
def station_connections(
    ds100: str,
    session: Session = Depends(get_session),
    snapshot: NetworkSnapshot = Depends(get_snapshot),
) -> StationConnectionsResponse:
    """Neighbouring stations with average planned/actual travel minutes."""
    key = ("station_connections", ds100)
    result = _get_cached(key)
    if result is None:
        try:
            result = get_station_connections(session, ds100, snapshot.stations)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        _store_cached(key, result)
    return result


@router.get("/connections", response_model=ConnectionsResponse)
def all_connections(snapshot: NetworkSnapshot = Depends(get_snapshot)) -> ConnectionsResponse:
    """
    The network connection graph built at startup. While the build is still
    running, 503 with the build progress as detail.
    """
    try:
        return get_all_connections(snapshot)
    except NotReadyError as exc:
        raise HTTPException(status_code=503, detail=exc.status)


app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host=API_HOST, port=API_PORT)
