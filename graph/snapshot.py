"""
Process-wide snapshot of the station list and the connection graph.

One NetworkSnapshot is created per application and handed to the startup
job and the request handlers. Both snapshots start out absent; readers get
None until the corresponding publish call and must handle the cold start.
A rebuild keeps serving the previous connection list until the new one is
published in a single assignment.
"""

import logging
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

STATUS_NOT_STARTED = "Connection build has not started"
STATUS_DONE = "Done"


class NetworkSnapshot:

    def __init__(self) -> None:
        self._stations: list[dict[str, Any]] | None = None
        self._connections: list[dict[str, Any]] | None = None
        self._status: str = STATUS_NOT_STARTED
        self._built_at: datetime | None = None

    @property
    def stations(self) -> list[dict[str, Any]] | None:
        return self._stations

    @property
    def connections(self) -> list[dict[str, Any]] | None:
        return self._connections

    @property
    def status(self) -> str:
        return self._status

    @property
    def built_at(self) -> datetime | None:
        return self._built_at

    def publish_stations(self, stations: list[dict[str, Any]]) -> None:
        self._stations = list(stations)
        logger.info("Station snapshot published: %d stations.", len(self._stations))

    def report_progress(self, index: int, total: int) -> None:
        """Record that station `index` (1-based) of `total` is being processed."""
        self._status = f"Processing station {index}/{total}"

    def publish_connections(self, connections: list[dict[str, Any]]) -> None:
        self._connections = list(connections)
        self._built_at = datetime.utcnow()
        self._status = STATUS_DONE
        logger.info("Connection snapshot published: %d connections.", len(self._connections))

    def mark_failed(self, exc: Exception) -> None:
        self._status = f"Failed: {exc}"
