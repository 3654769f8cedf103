"""FastAPI dependency injection for the room services.

Services are built once in the application lifespan and stored on
``app.state``; these dependencies hand them to endpoint functions. A missing
service means startup did not complete, which is reported as 503.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, Response, status

from src.meetroom.api.session import RequestContext
from src.meetroom.rooms.admission import AdmissionController
from src.meetroom.rooms.confirmation import ConfirmationCoordinator
from src.meetroom.rooms.intervals import IntervalValidator
from src.meetroom.rooms.lifecycle import RoomLifecycleManager


def _from_state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


async def get_context(request: Request, response: Response) -> RequestContext:
    """Caller context used by the identity binding."""
    return RequestContext(request=request, response=response)


async def get_lifecycle(request: Request) -> RoomLifecycleManager:
    return _from_state(request, "lifecycle")


async def get_admission(request: Request) -> AdmissionController:
    return _from_state(request, "admission")


async def get_interval_validator(request: Request) -> IntervalValidator:
    return _from_state(request, "interval_validator")


async def get_confirmation(request: Request) -> ConfirmationCoordinator:
    return _from_state(request, "confirmation")
