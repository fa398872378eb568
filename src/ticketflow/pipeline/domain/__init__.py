"""
Pipeline Domain Layer
=====================

Typed events and the publisher interface.
"""

from ticketflow.pipeline.domain.events import (
    EventPayload,
    TicketCreatedData,
    SolutionSubmittedData,
    SolutionRatedData,
    TicketStatusUpdatedData,
    TicketReassignedData,
    TicketCreated,
    SolutionSubmitted,
    SolutionRated,
    TicketStatusUpdated,
    TicketReassigned,
    PipelineEvent,
    EVENT_NAMES,
    parse_event,
    IEventPublisher,
)

__all__ = [
    "EventPayload",
    "TicketCreatedData",
    "SolutionSubmittedData",
    "SolutionRatedData",
    "TicketStatusUpdatedData",
    "TicketReassignedData",
    "TicketCreated",
    "SolutionSubmitted",
    "SolutionRated",
    "TicketStatusUpdated",
    "TicketReassigned",
    "PipelineEvent",
    "EVENT_NAMES",
    "parse_event",
    "IEventPublisher",
]
