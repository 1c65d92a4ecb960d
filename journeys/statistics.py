from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models import Journey, Station, Stop, StopDetail


def get_statistics(session: Session) -> dict[str, int]:
    """Row counts of the store; cancelled counts stop details with status CANCELLED."""
    return {
        "stop_count": session.query(func.count(Stop.id)).scalar() or 0,
        "station_count": session.query(func.count(Station.id)).scalar() or 0,
        "journey_count": session.query(Journey).count(),
        "cancelled_count": (
            session.query(func.count(StopDetail.id))
            .filter(StopDetail.status == "CANCELLED")
            .scalar() or 0
        ),
    }
