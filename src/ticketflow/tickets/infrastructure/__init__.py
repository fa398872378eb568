"""
Tickets Infrastructure Layer
============================

SQLAlchemy models and repository implementations.
"""

from ticketflow.tickets.infrastructure.models import (
    UserModel,
    TicketModel,
    CommentModel,
    SolutionModel,
    RatingModel,
)
from ticketflow.tickets.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySolutionRepository,
    SQLAlchemyRatingRepository,
    SQLAlchemyUserRepository,
)

__all__ = [
    # Models
    "UserModel",
    "TicketModel",
    "CommentModel",
    "SolutionModel",
    "RatingModel",
    # Repositories
    "SQLAlchemyTicketRepository",
    "SQLAlchemySolutionRepository",
    "SQLAlchemyRatingRepository",
    "SQLAlchemyUserRepository",
]
