"""
Tickets Application Services
============================

Repository interfaces and the ticket lifecycle service.

The lifecycle service is the command side of the system: it enforces the
state machine and the uniqueness/ownership rules, persists, and then hands
an event to the pipeline. It never waits for the pipeline run.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from ticketflow.config import Effectiveness, Priority, TicketStatus, UserRole
from ticketflow.core import (
    ConflictException,
    PermissionDeniedException,
    ResourceNotFoundException,
    ValidationException,
)
from ticketflow.pipeline.domain import (
    IEventPublisher,
    PipelineEvent,
    SolutionRated,
    SolutionRatedData,
    SolutionSubmitted,
    SolutionSubmittedData,
    TicketCreated,
    TicketCreatedData,
    TicketReassigned,
    TicketReassignedData,
    TicketStatusUpdated,
    TicketStatusUpdatedData,
)
from ticketflow.shared.infrastructure.logging import get_logger
from ticketflow.tickets.application.dto import (
    CommentRequest,
    CreateTicketRequest,
    RateSolutionRequest,
    SubmitSolutionRequest,
)
from ticketflow.tickets.domain import (
    CategoryRatings,
    Comment,
    EffectivenessCalculator,
    Rating,
    Solution,
    SolutionResource,
    SolutionStats,
    SolutionStep,
    Ticket,
    TicketStateMachine,
    TicketStats,
    User,
    time_to_resolve_hours,
    utcnow,
)

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket with its comments."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""

    @abstractmethod
    async def update(
        self,
        ticket_id: str,
        values: Mapping[str, Any],
        set_once: Optional[Mapping[str, Any]] = None,
        only_if: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Write fields on one ticket in a single statement.

        Args:
            ticket_id: Ticket to update
            values: Fields written unconditionally
            set_once: Fields written only where currently null
            only_if: Preconditions; a None value means "is null"

        Returns:
            True if a ticket matched id and preconditions
        """

    @abstractmethod
    async def add_comment(
        self,
        ticket_id: str,
        comment: Comment,
        values: Optional[Mapping[str, Any]] = None,
        set_once: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Append a comment and write ticket fields in the same transaction.

        ``values`` and ``set_once`` behave as in ``update``.
        """

    @abstractmethod
    async def get_stats(self, created_by: Optional[str] = None) -> TicketStats:
        """Aggregate counts, optionally limited to one creator."""


class ISolutionRepository(ABC):
    """Interface for solution data access."""

    @abstractmethod
    async def get_by_id(self, solution_id: str) -> Optional[Solution]:
        """Get solution by id."""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Solution]:
        """Get the solution of a ticket."""

    @abstractmethod
    async def create(self, solution: Solution) -> Solution:
        """
        Insert a solution.

        Raises:
            ConflictException: if the ticket already has a solution
        """

    @abstractmethod
    async def update(self, solution_id: str, values: Mapping[str, Any]) -> bool:
        """Write fields on one solution."""

    @abstractmethod
    async def get_stats(self, moderator_id: Optional[str] = None) -> SolutionStats:
        """Aggregate solution figures (rating fields left at zero)."""


class IRatingRepository(ABC):
    """Interface for rating data access."""

    @abstractmethod
    async def get_by_id(self, rating_id: str) -> Optional[Rating]:
        """Get rating by id."""

    @abstractmethod
    async def get_by_ticket_and_user(self, ticket_id: str, user_id: str) -> Optional[Rating]:
        """Get the rating a user left on a ticket."""

    @abstractmethod
    async def create(self, rating: Rating) -> Rating:
        """
        Insert a rating.

        Raises:
            ConflictException: if the user already rated the ticket
        """

    @abstractmethod
    async def get_stats(self, moderator_id: Optional[str] = None) -> Dict[str, float]:
        """Rating count and averages (overall and per category)."""


class IUserRepository(ABC):
    """Interface for read-only user lookups."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by id."""

    @abstractmethod
    async def list_by_role(self, role: UserRole) -> List[User]:
        """All users with a role, in stable (creation) order."""


# ========== Application Services ==========

def _new_id() -> str:
    return str(uuid4())


class TicketLifecycleService:
    """
    Ticket, solution and rating commands.

    Also exposes the narrow writes the pipeline performs (intake, triage,
    assignment, start of progress, rating bookkeeping) so every write of
    ticket state goes through one place.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        solutions: ISolutionRepository,
        ratings: IRatingRepository,
        users: IUserRepository,
        publisher: IEventPublisher,
        clock: Callable[[], Any] = utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._tickets = tickets
        self._solutions = solutions
        self._ratings = ratings
        self._users = users
        self._publisher = publisher
        self._clock = clock
        self._new_id = id_factory

    async def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    @staticmethod
    def _require_staff(actor: User, action: str) -> None:
        if not actor.is_staff:
            raise PermissionDeniedException(
                f"Only moderators and admins can {action}",
                {"user_id": actor.id, "role": actor.role.value}
            )

    async def _publish(self, event: PipelineEvent) -> None:
        """Publish after the write has committed; a failure is logged, not raised."""
        try:
            await self._publisher.publish(event)
        except Exception:
            logger.exception(
                "Event publish failed",
                extra={"event_name": event.name, "event_id": event.id}
            )

    # ========== Commands ==========

    async def create_ticket(self, request: CreateTicketRequest, creator: User) -> Ticket:
        """File a ticket as OPEN and start processing it."""
        now = self._clock()
        ticket = Ticket(
            id=self._new_id(),
            title=request.title,
            description=request.description,
            created_by=creator.id,
            status=TicketStatus.OPEN,
            created_at=now,
            last_updated_at=now,
        )
        ticket = await self._tickets.create(ticket)

        await self._publish(TicketCreated(data=TicketCreatedData(
            ticket_id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            created_by=creator.id,
        )))
        logger.info("Ticket created", extra={"ticket_id": ticket.id, "user_id": creator.id})
        return ticket

    async def update_status(self, ticket_id: str, status: TicketStatus, actor: User) -> Ticket:
        """
        Set a ticket's status as a moderator or admin.

        Any state may move to any other state here. completed_at is written
        only on the first entry into RESOLVED and never reset on reopen.
        The event is published even when the status did not change.
        """
        self._require_staff(actor, "update ticket status")
        ticket = await self._require_ticket(ticket_id)
        change = TicketStateMachine.plan(ticket.status, status, override=True)

        now = self._clock()
        set_once = {"completed_at": now} if change.sets_completed_at else None
        await self._tickets.update(
            ticket_id,
            {"status": change.target, "last_updated_at": now, "last_updated_by": actor.id},
            set_once=set_once,
        )

        await self._publish(TicketStatusUpdated(data=TicketStatusUpdatedData(
            ticket_id=ticket_id,
            old_status=ticket.status,
            new_status=change.target,
            updated_by=actor.id,
            updated_by_email=actor.email,
        )))
        logger.info(
            "Ticket status updated",
            extra={
                "ticket_id": ticket_id,
                "old_status": ticket.status.value,
                "new_status": change.target.value,
                "noop": change.is_noop,
            }
        )
        return await self._require_ticket(ticket_id)

    async def update_priority(self, ticket_id: str, priority: Priority, actor: User) -> Ticket:
        self._require_staff(actor, "update ticket priority")
        await self._require_ticket(ticket_id)
        await self._tickets.update(
            ticket_id,
            {
                "priority": Priority(priority),
                "last_updated_at": self._clock(),
                "last_updated_by": actor.id,
            },
        )
        return await self._require_ticket(ticket_id)

    async def reassign(self, ticket_id: str, assignee_id: Optional[str], actor: User) -> Ticket:
        """
        Move a ticket to another moderator/admin, or unassign it (admins only).

        assigned_at keeps the time of the very first assignment.
        """
        if actor.role != UserRole.ADMIN:
            raise PermissionDeniedException(
                "Only admins can reassign tickets", {"user_id": actor.id}
            )
        ticket = await self._require_ticket(ticket_id)

        if assignee_id is not None:
            assignee = await self._users.get_by_id(assignee_id)
            if assignee is None:
                raise ResourceNotFoundException("User", assignee_id)
            if not assignee.is_staff:
                raise ValidationException(
                    "Tickets can only be assigned to moderators or admins",
                    {"assignee_id": assignee_id, "role": assignee.role.value}
                )

        now = self._clock()
        await self._tickets.update(
            ticket_id,
            {"assigned_to": assignee_id, "last_updated_at": now, "last_updated_by": actor.id},
            set_once={"assigned_at": now} if assignee_id is not None else None,
        )

        await self._publish(TicketReassigned(data=TicketReassignedData(
            ticket_id=ticket_id,
            old_assignee=ticket.assigned_to,
            new_assignee=assignee_id,
            reassigned_by=actor.id,
        )))
        return await self._require_ticket(ticket_id)

    async def add_comment(self, ticket_id: str, request: CommentRequest, author: User) -> Comment:
        """
        Append a comment.

        The first moderator/admin comment stamps first_response_at.
        """
        ticket = await self._require_ticket(ticket_id)
        if not author.is_staff:
            if ticket.created_by != author.id:
                raise PermissionDeniedException(
                    "You can only comment on your own tickets", {"ticket_id": ticket_id}
                )
            if request.is_internal:
                raise PermissionDeniedException("Only staff can add internal comments")

        now = self._clock()
        comment = Comment(
            text=request.text,
            author_id=author.id,
            created_at=now,
            is_internal=request.is_internal,
        )
        if author.is_staff:
            await self._tickets.add_comment(
                ticket_id,
                comment,
                values={"last_updated_at": now, "last_updated_by": author.id},
                set_once={"first_response_at": now},
            )
        else:
            await self._tickets.add_comment(ticket_id, comment, values={"last_updated_at": now})
        return comment

    async def submit_solution(self, request: SubmitSolutionRequest, moderator: User) -> Solution:
        """
        Record the solution to an assigned ticket and resolve it.

        If an earlier call by the same moderator stored the solution but
        failed before resolving the ticket, the stored solution is kept and
        the ticket is resolved now.

        Raises:
            ResourceNotFoundException: ticket missing
            PermissionDeniedException: ticket not assigned to the moderator
            ConflictException: ticket resolved or already has a solution
            InvalidTransitionException: ticket is not in progress
        """
        ticket = await self._require_ticket(request.ticket_id)
        if ticket.assigned_to != moderator.id:
            raise PermissionDeniedException(
                "You are not assigned to this ticket", {"ticket_id": ticket.id}
            )
        if ticket.is_resolved or ticket.solution_id is not None:
            raise ConflictException(
                "Solution already exists for this ticket", {"ticket_id": ticket.id}
            )
        change = TicketStateMachine.plan(ticket.status, TicketStatus.RESOLVED)

        now = self._clock()
        existing = await self._solutions.get_by_ticket_id(ticket.id)
        if existing is not None:
            if existing.moderator_id != moderator.id:
                raise ConflictException(
                    "Solution already exists for this ticket", {"ticket_id": ticket.id}
                )
            logger.warning(
                "Resolving ticket for a previously stored solution",
                extra={"ticket_id": ticket.id, "solution_id": existing.id}
            )
            return await self._resolve_with(ticket, existing, change.target, moderator, now)

        solution = Solution(
            id=self._new_id(),
            ticket_id=ticket.id,
            moderator_id=moderator.id,
            body=request.body,
            steps=[SolutionStep(**step.model_dump()) for step in request.steps],
            resources=[SolutionResource(**res.model_dump()) for res in request.resources],
            tags=list(request.tags),
            difficulty=request.difficulty,
            time_to_resolve_hours=time_to_resolve_hours(ticket.created_at, now),
            moderator_notes=request.moderator_notes,
            follow_up_required=request.follow_up_required,
            follow_up_notes=request.follow_up_notes,
            created_at=now,
            updated_at=now,
        )
        # Unique ticket_id on solutions settles concurrent submissions
        solution = await self._solutions.create(solution)
        return await self._resolve_with(ticket, solution, change.target, moderator, now)

    async def _resolve_with(
        self,
        ticket: Ticket,
        solution: Solution,
        status: TicketStatus,
        moderator: User,
        now: Any,
    ) -> Solution:
        await self._tickets.update(
            ticket.id,
            {
                "status": status,
                "solution_id": solution.id,
                "last_updated_at": now,
                "last_updated_by": moderator.id,
            },
            set_once={"completed_at": now},
            only_if={"solution_id": None},
        )

        await self._publish(SolutionSubmitted(data=SolutionSubmittedData(
            solution_id=solution.id,
            ticket_id=ticket.id,
            moderator_id=moderator.id,
            user_id=ticket.created_by,
            time_to_resolve=solution.time_to_resolve_hours,
        )))
        logger.info(
            "Solution submitted",
            extra={
                "ticket_id": ticket.id,
                "solution_id": solution.id,
                "time_to_resolve_hours": solution.time_to_resolve_hours,
            }
        )
        return solution

    async def rate_solution(self, request: RateSolutionRequest, user: User) -> Rating:
        """
        Rate the solution of the user's own ticket, once.

        Derives the solution's effectiveness from the rating. A rating that
        was stored while the solution is still ``pending`` belongs to a call
        that failed halfway; it is finished instead of rejected, and the
        stored rating wins over the new request.
        """
        if user.role != UserRole.USER:
            raise PermissionDeniedException("Only users can rate solutions", {"user_id": user.id})

        solution = await self._solutions.get_by_ticket_id(request.ticket_id)
        if solution is None:
            raise ResourceNotFoundException("Solution", None, {"ticket_id": request.ticket_id})
        ticket = await self._require_ticket(request.ticket_id)
        if ticket.created_by != user.id:
            raise PermissionDeniedException(
                "You can only rate solutions for your own tickets", {"ticket_id": ticket.id}
            )

        now = self._clock()
        existing = await self._ratings.get_by_ticket_and_user(ticket.id, user.id)
        if existing is not None:
            if solution.effectiveness != Effectiveness.PENDING:
                raise ConflictException(
                    "You have already rated this solution", {"ticket_id": ticket.id}
                )
            logger.warning(
                "Finishing a previously stored rating",
                extra={"ticket_id": ticket.id, "rating_id": existing.id}
            )
            return await self._apply_rating(ticket, solution, existing, now)

        rating = Rating(
            id=self._new_id(),
            ticket_id=ticket.id,
            solution_id=solution.id,
            user_id=user.id,
            moderator_id=solution.moderator_id,
            rating=request.rating,
            categories=CategoryRatings(**request.categories.model_dump()),
            was_helpful=request.was_helpful,
            issue_resolved=request.issue_resolved,
            would_recommend=request.would_recommend,
            feedback=request.feedback,
            improvement_suggestions=request.improvement_suggestions,
            additional_help_needed=request.additional_help_needed,
            additional_help_description=request.additional_help_description,
            is_anonymous=request.is_anonymous,
            created_at=now,
        )
        rating = await self._ratings.create(rating)
        return await self._apply_rating(ticket, solution, rating, now)

    async def _apply_rating(
        self,
        ticket: Ticket,
        solution: Solution,
        rating: Rating,
        now: Any,
    ) -> Rating:
        effectiveness = EffectivenessCalculator.derive(
            rating.rating, rating.was_helpful, rating.issue_resolved
        )
        await self._solutions.update(
            solution.id,
            {"effectiveness": effectiveness, "user_feedback": rating.feedback, "updated_at": now},
        )

        await self._publish(SolutionRated(data=SolutionRatedData(
            rating_id=rating.id,
            solution_id=solution.id,
            ticket_id=ticket.id,
            moderator_id=solution.moderator_id,
            user_id=rating.user_id,
            rating=rating.rating,
            was_helpful=rating.was_helpful,
            issue_resolved=rating.issue_resolved,
        )))
        logger.info(
            "Solution rated",
            extra={
                "ticket_id": ticket.id,
                "rating": rating.rating,
                "effectiveness": effectiveness.value,
            }
        )
        return rating

    # ========== Reporting ==========

    async def get_ticket_stats(self, created_by: Optional[str] = None) -> TicketStats:
        return await self._tickets.get_stats(created_by=created_by)

    async def get_solution_stats(self, moderator_id: Optional[str] = None) -> SolutionStats:
        """Solution figures merged with rating averages."""
        stats = await self._solutions.get_stats(moderator_id=moderator_id)
        rating_stats = await self._ratings.get_stats(moderator_id=moderator_id)
        stats.total_ratings = int(rating_stats.get("total_ratings", 0))
        stats.average_rating = rating_stats.get("average_rating", 0.0)
        stats.average_clarity = rating_stats.get("average_clarity", 0.0)
        stats.average_helpfulness = rating_stats.get("average_helpfulness", 0.0)
        stats.average_completeness = rating_stats.get("average_completeness", 0.0)
        stats.average_timeliness = rating_stats.get("average_timeliness", 0.0)
        return stats

    # ========== Pipeline writes ==========

    async def mark_intake(self, ticket_id: str) -> bool:
        """OPEN -> OPEN write that records the pipeline picked the ticket up."""
        TicketStateMachine.plan(TicketStatus.OPEN, TicketStatus.OPEN)
        return await self._tickets.update(
            ticket_id,
            {"status": TicketStatus.OPEN, "last_updated_at": self._clock()},
            only_if={"status": TicketStatus.OPEN},
        )

    async def apply_triage(
        self,
        ticket_id: str,
        priority: Priority,
        notes: str,
        skills: List[str],
    ) -> bool:
        """Persist classifier output. Leaves status untouched."""
        return await self._tickets.update(
            ticket_id,
            {
                "priority": Priority(priority),
                "triage_notes": notes,
                "required_skills": list(skills),
                "last_updated_at": self._clock(),
            },
        )

    async def assign_if_unassigned(self, ticket_id: str, moderator_id: str) -> bool:
        """
        Assign a ticket nobody owns yet.

        Returns False when the ticket already has an assignee (redelivery
        or an admin got there first), leaving it untouched.
        """
        now = self._clock()
        return await self._tickets.update(
            ticket_id,
            {"assigned_to": moderator_id, "last_updated_at": now},
            set_once={"assigned_at": now},
            only_if={"assigned_to": None},
        )

    async def start_progress(self, ticket_id: str) -> bool:
        """OPEN -> IN_PROGRESS, applied only if the ticket is still OPEN."""
        change = TicketStateMachine.plan(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
        return await self._tickets.update(
            ticket_id,
            {"status": change.target, "last_updated_at": self._clock()},
            only_if={"status": TicketStatus.OPEN},
        )

    async def record_rating_outcome(self, ticket_id: str, rating: Rating) -> bool:
        """Copy satisfaction fields from a rating onto its ticket."""
        return await self._tickets.update(
            ticket_id,
            {
                "satisfaction_rating": rating.rating,
                "is_rated": True,
                "rating_id": rating.id,
                "needs_follow_up": rating.needs_follow_up,
            },
        )
