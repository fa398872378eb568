"""
Tickets Application Layer
=========================

DTOs, repository interfaces and the lifecycle service.
"""

from ticketflow.tickets.application.dto import (
    CreateTicketRequest,
    CommentRequest,
    SolutionStepInput,
    SolutionResourceInput,
    SubmitSolutionRequest,
    CategoryRatingsInput,
    RateSolutionRequest,
    TicketStatsResponse,
    SolutionStatsResponse,
)
from ticketflow.tickets.application.services import (
    ITicketRepository,
    ISolutionRepository,
    IRatingRepository,
    IUserRepository,
    TicketLifecycleService,
)

__all__ = [
    # DTOs
    "CreateTicketRequest",
    "CommentRequest",
    "SolutionStepInput",
    "SolutionResourceInput",
    "SubmitSolutionRequest",
    "CategoryRatingsInput",
    "RateSolutionRequest",
    "TicketStatsResponse",
    "SolutionStatsResponse",
    # Interfaces
    "ITicketRepository",
    "ISolutionRepository",
    "IRatingRepository",
    "IUserRepository",
    # Services
    "TicketLifecycleService",
]
