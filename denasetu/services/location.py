from typing import List, Optional

import structlog

from denasetu.core.exceptions import Forbidden
from denasetu.schemas.activity import LocationSample, LocationResponse, LocationTrackResponse
from denasetu.schemas.session import SessionContext, Role
from denasetu.store.data_store import DataStore

logger = structlog.get_logger(__name__)


class LocationService:
    """Volunteer position reporting"""

    @staticmethod
    def record_location(store: DataStore, session: SessionContext, sample: LocationSample) -> LocationResponse:
        if not session.is_role(Role.VOLUNTEER):
            raise Forbidden("Only volunteers can report locations")

        row = store.insert("volunteer_location_logs", {
            "assignment_id": sample.assignment_id,
            "volunteer_id": session.user_id,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "accuracy": sample.accuracy,
        })
        logger.debug("Location recorded",
                     assignment_id=sample.assignment_id,
                     volunteer_id=session.user_id,
                     accuracy=sample.accuracy)
        return LocationResponse.model_validate(row)

    @staticmethod
    def latest_location(store: DataStore, assignment_id: str) -> Optional[LocationResponse]:
        rows = store.select("volunteer_location_logs", {"assignment_id": assignment_id}, limit=1)
        return LocationResponse.model_validate(rows[0]) if rows else None

    @staticmethod
    def track(store: DataStore, assignment_id: str, limit: int = 100) -> LocationTrackResponse:
        """Most recent samples for an assignment, newest first"""
        rows = store.select("volunteer_location_logs", {"assignment_id": assignment_id}, limit=limit)
        samples: List[LocationResponse] = [LocationResponse.model_validate(r) for r in rows]
        return LocationTrackResponse(
            assignment_id=assignment_id,
            latest=samples[0] if samples else None,
            samples=samples,
        )
