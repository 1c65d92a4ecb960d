"""
Exceptions raised by the station, journey and connection services.

The HTTP layer maps them onto status codes; nothing in the services retries.
"""


class BahnError(Exception):
    """Base class for all service errors."""


class NotFoundError(BahnError):
    """A station, journey or stop detail is absent for an exact-key lookup."""


class ReferenceStationNotInJourneyError(NotFoundError):
    """The reference station exists but the journey never stops there."""


class InconsistentStateError(BahnError):
    """The connection graph violated an invariant while edges were merged."""


class NotReadyError(BahnError):
    """The background connection build has not published a graph yet."""

    def __init__(self, status: str) -> None:
        super().__init__(status)
        self.status = status
