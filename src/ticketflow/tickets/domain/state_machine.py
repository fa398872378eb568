"""
Ticket State Machine
====================

Pure functions for status transitions and derived ticket/solution fields.

Stateless utility classes following DRY principle - every transition rule
and derivation lives here so that the lifecycle service and the pipeline
agree on them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, Optional

from ticketflow.config import Effectiveness, TicketStatus
from ticketflow.core import InvalidTransitionException
from ticketflow.tickets.domain.entities import as_utc


@dataclass(frozen=True)
class StatusChange:
    """
    Outcome of planning a status change.

    ``sets_completed_at`` is only a request: the repository writes
    completed_at conditionally, so a concurrent resolve cannot move it.
    """
    current: Optional[TicketStatus]
    target: TicketStatus
    is_noop: bool
    sets_completed_at: bool


class TicketStateMachine:
    """
    Status transitions for tickets.

    Normal path: OPEN -> IN_PROGRESS -> RESOLVED, with IN_PROGRESS -> OPEN
    allowed for reopening. Moderators and admins may override and move a
    ticket between any two states through the status-update operation.
    """

    NORMAL_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
        TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS}),
        TicketStatus.IN_PROGRESS: frozenset({TicketStatus.RESOLVED, TicketStatus.OPEN}),
        TicketStatus.RESOLVED: frozenset(),
    }

    @classmethod
    def can_transition(
        cls,
        current: Optional[TicketStatus],
        target: TicketStatus,
        override: bool = False
    ) -> bool:
        """Check whether ``current -> target`` is allowed."""
        target = TicketStatus(target)
        if current is None:
            # Freshly created record without a status yet
            return target == TicketStatus.OPEN or override
        current = TicketStatus(current)
        if current == target or override:
            return True
        if current not in cls.NORMAL_TRANSITIONS:
            raise ValueError(f"Unhandled ticket status: {current!r}")
        return target in cls.NORMAL_TRANSITIONS[current]

    @classmethod
    def plan(
        cls,
        current: Optional[TicketStatus],
        target: TicketStatus,
        override: bool = False
    ) -> StatusChange:
        """
        Validate a transition and describe its side effects.

        Raises:
            InvalidTransitionException: if the transition is not allowed
        """
        target = TicketStatus(target)
        if not cls.can_transition(current, target, override=override):
            raise InvalidTransitionException(
                current.value if current is not None else None, target.value
            )

        if target == TicketStatus.RESOLVED:
            sets_completed_at = True
        elif target in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS):
            sets_completed_at = False
        else:
            raise ValueError(f"Unhandled ticket status: {target!r}")

        return StatusChange(
            current=current,
            target=target,
            is_noop=current == target,
            sets_completed_at=sets_completed_at,
        )


class EffectivenessCalculator:
    """Derives a solution's effectiveness label from its rating."""

    @staticmethod
    def derive(rating: int, was_helpful: bool, issue_resolved: bool) -> Effectiveness:
        """
        not_helpful if rating <= 2 or not helpful; partially_helpful if
        rating == 3 or unresolved; helpful otherwise.
        """
        if rating <= 2 or not was_helpful:
            return Effectiveness.NOT_HELPFUL
        if rating == 3 or not issue_resolved:
            return Effectiveness.PARTIALLY_HELPFUL
        return Effectiveness.HELPFUL


def time_to_resolve_hours(ticket_created_at: datetime, solved_at: datetime) -> int:
    """
    Whole hours between ticket creation and solution submission.

    Rounds half up (2.5h -> 3) rather than Python's banker's rounding.
    """
    elapsed = as_utc(solved_at) - as_utc(ticket_created_at)
    seconds = Decimal(str(elapsed.total_seconds()))
    hours = seconds / Decimal(3600)
    return int(hours.quantize(Decimal(1), rounding=ROUND_HALF_UP))
