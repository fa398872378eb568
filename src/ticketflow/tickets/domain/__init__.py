"""
Tickets Domain Layer
====================

Domain layer for the ticket lifecycle module.

Contains:
- Entities: Ticket, Comment, Solution, Rating, User
- State machine: TicketStateMachine, EffectivenessCalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from ticketflow.tickets.domain.entities import (
    User,
    Comment,
    Ticket,
    SolutionStep,
    SolutionResource,
    Solution,
    CategoryRatings,
    Rating,
    TicketStats,
    SolutionStats,
    utcnow,
    as_utc,
)
from ticketflow.tickets.domain.state_machine import (
    StatusChange,
    TicketStateMachine,
    EffectivenessCalculator,
    time_to_resolve_hours,
)

__all__ = [
    # Entities
    "User",
    "Comment",
    "Ticket",
    "SolutionStep",
    "SolutionResource",
    "Solution",
    "CategoryRatings",
    "Rating",
    "TicketStats",
    "SolutionStats",
    "utcnow",
    "as_utc",
    # State machine
    "StatusChange",
    "TicketStateMachine",
    "EffectivenessCalculator",
    "time_to_resolve_hours",
]
