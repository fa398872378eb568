"""
Pipeline Controllers (API Routes)
=================================

Event ingress: accepts one pipeline event and schedules it.

The response is sent as soon as the event is queued; the run itself
happens in the background.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import BaseModel

from ticketflow.pipeline.domain import IEventPublisher, parse_event
from ticketflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/events", tags=["Pipeline"])


TICKET_CREATED_EXAMPLE = {
    "name": "ticket/created",
    "data": {
        "ticketId": "6650c1f2a4b1e3d2c1b0a987",
        "title": "Cannot connect to the VPN",
        "description": "Since this morning the VPN client times out on login.",
        "createdBy": "6650c1f2a4b1e3d2c1b0a001"
    }
}


class EventAcceptedResponse(BaseModel):
    event_id: str
    name: str


def get_publisher(request: Request) -> IEventPublisher:
    """Get the event publisher from the service container."""
    return request.app.state.container.event_bus


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=EventAcceptedResponse,
    summary="Ingest a pipeline event",
    responses={422: {"description": "Unknown event name or malformed payload"}},
)
async def ingest_event(
    payload: Dict[str, Any] = Body(..., examples=[TICKET_CREATED_EXAMPLE]),
    publisher: IEventPublisher = Depends(get_publisher),
) -> EventAcceptedResponse:
    event = parse_event(payload)
    await publisher.publish(event)
    logger.info("Event accepted", extra={"event_id": event.id, "event_name": event.name})
    return EventAcceptedResponse(event_id=event.id, name=event.name)


# Export router for inclusion in main app
pipeline_router = router
