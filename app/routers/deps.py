# Shared router dependencies

from fastapi import Request

from app.services.location_tracker import LocationTracker


def get_tracker(request: Request) -> LocationTracker:
    """The process-wide tracker created in the app lifespan."""
    return request.app.state.tracker
