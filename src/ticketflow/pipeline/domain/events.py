"""
Pipeline Events
===============

Typed domain events that drive the processing pipeline.

Each event kind is a distinct pydantic model with a fixed field set; the
``PipelineEvent`` union is discriminated on ``name`` so an envelope like::

    {"id": "...", "name": "ticket/created", "data": {"ticketId": "...", ...}}

parses straight into the right variant. Unknown or missing fields are
rejected at the boundary. Payload keys may be camelCase or snake_case.
"""

from abc import ABC, abstractmethod
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ticketflow.config import TicketStatus
from ticketflow.core import ValidationException


class EventPayload(BaseModel):
    """Base for event payloads: frozen, closed, camelCase aliases."""
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class _Event(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex, min_length=1)


# ========== Payloads ==========

class TicketCreatedData(EventPayload):
    ticket_id: str = Field(..., min_length=1)
    title: str
    description: str
    created_by: str = Field(..., min_length=1)


class SolutionSubmittedData(EventPayload):
    solution_id: str = Field(..., min_length=1)
    ticket_id: str = Field(..., min_length=1)
    moderator_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    time_to_resolve: int = Field(..., ge=0, description="Whole hours")


class SolutionRatedData(EventPayload):
    rating_id: str = Field(..., min_length=1)
    solution_id: str = Field(..., min_length=1)
    ticket_id: str = Field(..., min_length=1)
    moderator_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    was_helpful: bool
    issue_resolved: bool


class TicketStatusUpdatedData(EventPayload):
    ticket_id: str = Field(..., min_length=1)
    old_status: TicketStatus
    new_status: TicketStatus
    updated_by: str = Field(..., min_length=1)
    updated_by_email: str = ""


class TicketReassignedData(EventPayload):
    ticket_id: str = Field(..., min_length=1)
    old_assignee: Optional[str] = None
    new_assignee: Optional[str] = None
    reassigned_by: str = Field(..., min_length=1)


# ========== Events ==========

class TicketCreated(_Event):
    name: Literal["ticket/created"] = "ticket/created"
    data: TicketCreatedData


class SolutionSubmitted(_Event):
    name: Literal["solution/submitted"] = "solution/submitted"
    data: SolutionSubmittedData


class SolutionRated(_Event):
    name: Literal["solution/rated"] = "solution/rated"
    data: SolutionRatedData


class TicketStatusUpdated(_Event):
    name: Literal["ticket/status-updated"] = "ticket/status-updated"
    data: TicketStatusUpdatedData


class TicketReassigned(_Event):
    name: Literal["ticket/reassigned"] = "ticket/reassigned"
    data: TicketReassignedData


PipelineEvent = Annotated[
    Union[
        TicketCreated,
        SolutionSubmitted,
        SolutionRated,
        TicketStatusUpdated,
        TicketReassigned,
    ],
    Field(discriminator="name"),
]

_event_adapter: TypeAdapter[PipelineEvent] = TypeAdapter(PipelineEvent)

EVENT_NAMES = (
    "ticket/created",
    "solution/submitted",
    "solution/rated",
    "ticket/status-updated",
    "ticket/reassigned",
)


def parse_event(raw: Any) -> PipelineEvent:
    """
    Validate a raw envelope into a typed event.

    Raises:
        ValidationException: on unknown event name, missing or extra fields
    """
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as e:
        raise ValidationException(
            "Invalid pipeline event",
            {"errors": e.errors(include_url=False, include_context=False)}
        ) from e


class IEventPublisher(ABC):
    """Interface for handing events to the pipeline."""

    @abstractmethod
    async def publish(self, event: PipelineEvent) -> None:
        """
        Schedule an event for processing.

        Must not wait for the pipeline run to finish.
        """
