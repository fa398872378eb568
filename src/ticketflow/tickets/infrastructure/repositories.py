"""
Tickets Infrastructure Repositories
===================================

SQLAlchemy implementations of the ticket, solution, rating and user
repositories.

Each operation runs in its own short session so concurrent pipeline runs
never share one. Invariants that span a read and a write ("set completed_at
only if null", "assign only if unassigned") are expressed as a single
conditional UPDATE instead of read-then-write.
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional

from sqlalchemy import func, literal, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketflow.config import (
    Difficulty, Effectiveness, Priority, TicketStatus, UserRole
)
from ticketflow.core import (
    ConflictException,
    RepositoryException,
    RepositoryUnavailableException,
)
from ticketflow.infrastructure.database import Database
from ticketflow.tickets.application import (
    IRatingRepository,
    ISolutionRepository,
    ITicketRepository,
    IUserRepository,
)
from ticketflow.tickets.domain import (
    CategoryRatings,
    Comment,
    Rating,
    Solution,
    SolutionResource,
    SolutionStats,
    SolutionStep,
    Ticket,
    TicketStats,
    User,
    as_utc,
)
from ticketflow.tickets.infrastructure.models import (
    CommentModel,
    RatingModel,
    SolutionModel,
    TicketModel,
    UserModel,
)


@asynccontextmanager
async def _unit_of_work(
    database: Database,
    conflict_message: str = "Record already exists",
) -> AsyncGenerator[AsyncSession, None]:
    """Session scope that maps driver errors onto repository exceptions."""
    try:
        async with database.session() as session:
            yield session
    except IntegrityError as e:
        raise ConflictException(conflict_message, {"error": str(e.orig)}) from e
    except OperationalError as e:
        raise RepositoryUnavailableException(f"Database unavailable: {e.orig}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise RepositoryUnavailableException(f"Database connection lost: {e.orig}") from e
        raise RepositoryException(f"Database error: {e.orig}") from e
    except (ConnectionError, TimeoutError) as e:
        raise RepositoryUnavailableException(f"Database unreachable: {e}") from e


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _optional_utc(value):
    return as_utc(value) if value is not None else None


# ========== Mapping ==========

def _ticket_from_model(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        title=model.title,
        description=model.description,
        created_by=model.created_by,
        status=TicketStatus(model.status),
        priority=Priority(model.priority) if model.priority else None,
        assigned_to=model.assigned_to,
        required_skills=list(model.required_skills or []),
        triage_notes=model.triage_notes or "",
        created_at=as_utc(model.created_at),
        last_updated_at=as_utc(model.last_updated_at),
        last_updated_by=model.last_updated_by,
        completed_at=_optional_utc(model.completed_at),
        first_response_at=_optional_utc(model.first_response_at),
        assigned_at=_optional_utc(model.assigned_at),
        comments=[
            Comment(
                text=c.text,
                author_id=c.author_id,
                created_at=as_utc(c.created_at),
                is_internal=c.is_internal,
            )
            for c in model.comments
        ],
        solution_id=model.solution_id,
        satisfaction_rating=model.satisfaction_rating,
        is_rated=model.is_rated,
        rating_id=model.rating_id,
        needs_follow_up=model.needs_follow_up,
    )


def _solution_from_model(model: SolutionModel) -> Solution:
    return Solution(
        id=model.id,
        ticket_id=model.ticket_id,
        moderator_id=model.moderator_id,
        body=model.body,
        steps=[SolutionStep(**step) for step in model.steps or []],
        resources=[SolutionResource(**res) for res in model.resources or []],
        tags=list(model.tags or []),
        difficulty=Difficulty(model.difficulty),
        effectiveness=Effectiveness(model.effectiveness),
        time_to_resolve_hours=model.time_to_resolve_hours,
        moderator_notes=model.moderator_notes,
        follow_up_required=model.follow_up_required,
        follow_up_notes=model.follow_up_notes,
        user_feedback=model.user_feedback,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
    )


def _rating_from_model(model: RatingModel) -> Rating:
    return Rating(
        id=model.id,
        ticket_id=model.ticket_id,
        solution_id=model.solution_id,
        user_id=model.user_id,
        moderator_id=model.moderator_id,
        rating=model.rating,
        categories=CategoryRatings(
            clarity=model.clarity,
            helpfulness=model.helpfulness,
            completeness=model.completeness,
            timeliness=model.timeliness,
        ),
        was_helpful=model.was_helpful,
        issue_resolved=model.issue_resolved,
        would_recommend=model.would_recommend,
        feedback=model.feedback,
        improvement_suggestions=model.improvement_suggestions,
        additional_help_needed=model.additional_help_needed,
        additional_help_description=model.additional_help_description,
        is_anonymous=model.is_anonymous,
        created_at=as_utc(model.created_at),
    )


def _user_from_model(model: UserModel) -> User:
    return User(
        id=model.id,
        email=model.email,
        role=UserRole(model.role),
        skills=list(model.skills or []),
    )


# ========== Repositories ==========

class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets and their comments."""

    def __init__(self, database: Database):
        self._database = database

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        async with _unit_of_work(self._database) as session:
            stmt = select(TicketModel).where(TicketModel.id == ticket_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _ticket_from_model(model) if model is not None else None

    async def create(self, ticket: Ticket) -> Ticket:
        async with _unit_of_work(self._database, "Ticket already exists") as session:
            session.add(TicketModel(
                id=ticket.id,
                title=ticket.title,
                description=ticket.description,
                status=ticket.status.value,
                priority=_db_value(ticket.priority),
                created_by=ticket.created_by,
                assigned_to=ticket.assigned_to,
                required_skills=list(ticket.required_skills),
                triage_notes=ticket.triage_notes,
                created_at=ticket.created_at,
                last_updated_at=ticket.last_updated_at,
            ))
            await session.flush()
        return ticket

    async def update(
        self,
        ticket_id: str,
        values: Mapping[str, Any],
        set_once: Optional[Mapping[str, Any]] = None,
        only_if: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        stmt = self._update_statement(ticket_id, values, set_once, only_if)
        async with _unit_of_work(self._database) as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    @staticmethod
    def _update_statement(
        ticket_id: str,
        values: Mapping[str, Any],
        set_once: Optional[Mapping[str, Any]] = None,
        only_if: Optional[Mapping[str, Any]] = None,
    ):
        stmt = update(TicketModel).where(TicketModel.id == ticket_id)
        for name, expected in (only_if or {}).items():
            column = getattr(TicketModel, name)
            if expected is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == _db_value(expected))

        assignments: Dict[str, Any] = {
            name: _db_value(value) for name, value in values.items()
        }
        for name, value in (set_once or {}).items():
            column = getattr(TicketModel, name)
            assignments[name] = func.coalesce(column, literal(_db_value(value), column.type))

        return stmt.values(**assignments).execution_options(synchronize_session=False)

    async def add_comment(
        self,
        ticket_id: str,
        comment: Comment,
        values: Optional[Mapping[str, Any]] = None,
        set_once: Optional[Mapping[str, Any]] = None,
    ) -> None:
        async with _unit_of_work(self._database) as session:
            session.add(CommentModel(
                ticket_id=ticket_id,
                text=comment.text,
                author_id=comment.author_id,
                is_internal=comment.is_internal,
                created_at=comment.created_at,
            ))
            if values or set_once:
                await session.flush()
                await session.execute(
                    self._update_statement(ticket_id, values or {}, set_once)
                )

    async def get_stats(self, created_by: Optional[str] = None) -> TicketStats:
        status_stmt = select(TicketModel.status, func.count()).group_by(TicketModel.status)
        priority_stmt = (
            select(TicketModel.priority, func.count())
            .where(TicketModel.priority.is_not(None))
            .group_by(TicketModel.priority)
        )
        if created_by is not None:
            status_stmt = status_stmt.where(TicketModel.created_by == created_by)
            priority_stmt = priority_stmt.where(TicketModel.created_by == created_by)

        async with _unit_of_work(self._database) as session:
            by_status = {row[0]: row[1] for row in (await session.execute(status_stmt)).all()}
            by_priority = {row[0]: row[1] for row in (await session.execute(priority_stmt)).all()}

        return TicketStats(
            total=sum(by_status.values()),
            open=by_status.get(TicketStatus.OPEN.value, 0),
            in_progress=by_status.get(TicketStatus.IN_PROGRESS.value, 0),
            resolved=by_status.get(TicketStatus.RESOLVED.value, 0),
            high_priority=by_priority.get(Priority.HIGH.value, 0),
            medium_priority=by_priority.get(Priority.MEDIUM.value, 0),
            low_priority=by_priority.get(Priority.LOW.value, 0),
        )


class SQLAlchemySolutionRepository(ISolutionRepository):
    """SQLAlchemy implementation for solutions."""

    def __init__(self, database: Database):
        self._database = database

    async def get_by_id(self, solution_id: str) -> Optional[Solution]:
        async with _unit_of_work(self._database) as session:
            model = await session.get(SolutionModel, solution_id)
            return _solution_from_model(model) if model is not None else None

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Solution]:
        async with _unit_of_work(self._database) as session:
            stmt = select(SolutionModel).where(SolutionModel.ticket_id == ticket_id)
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _solution_from_model(model) if model is not None else None

    async def create(self, solution: Solution) -> Solution:
        conflict = "Solution already exists for this ticket"
        async with _unit_of_work(self._database, conflict) as session:
            session.add(SolutionModel(
                id=solution.id,
                ticket_id=solution.ticket_id,
                moderator_id=solution.moderator_id,
                body=solution.body,
                steps=[asdict(step) for step in solution.steps],
                resources=[asdict(res) for res in solution.resources],
                tags=list(solution.tags),
                difficulty=solution.difficulty.value,
                effectiveness=solution.effectiveness.value,
                time_to_resolve_hours=solution.time_to_resolve_hours,
                moderator_notes=solution.moderator_notes,
                follow_up_required=solution.follow_up_required,
                follow_up_notes=solution.follow_up_notes,
                user_feedback=solution.user_feedback,
                created_at=solution.created_at,
                updated_at=solution.updated_at,
            ))
            await session.flush()
        return solution

    async def update(self, solution_id: str, values: Mapping[str, Any]) -> bool:
        stmt = (
            update(SolutionModel)
            .where(SolutionModel.id == solution_id)
            .values(**{name: _db_value(value) for name, value in values.items()})
            .execution_options(synchronize_session=False)
        )
        async with _unit_of_work(self._database) as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def get_stats(self, moderator_id: Optional[str] = None) -> SolutionStats:
        totals_stmt = select(func.count(SolutionModel.id), func.avg(SolutionModel.time_to_resolve_hours))
        difficulty_stmt = (
            select(SolutionModel.difficulty, func.count()).group_by(SolutionModel.difficulty)
        )
        effectiveness_stmt = (
            select(SolutionModel.effectiveness, func.count()).group_by(SolutionModel.effectiveness)
        )
        if moderator_id is not None:
            totals_stmt = totals_stmt.where(SolutionModel.moderator_id == moderator_id)
            difficulty_stmt = difficulty_stmt.where(SolutionModel.moderator_id == moderator_id)
            effectiveness_stmt = effectiveness_stmt.where(SolutionModel.moderator_id == moderator_id)

        async with _unit_of_work(self._database) as session:
            total, average_hours = (await session.execute(totals_stmt)).one()
            by_difficulty = dict((await session.execute(difficulty_stmt)).all())
            by_effectiveness = dict((await session.execute(effectiveness_stmt)).all())

        return SolutionStats(
            total_solutions=total or 0,
            average_time_to_resolve_hours=round(float(average_hours or 0), 2),
            easy_solutions=by_difficulty.get(Difficulty.EASY.value, 0),
            medium_solutions=by_difficulty.get(Difficulty.MEDIUM.value, 0),
            hard_solutions=by_difficulty.get(Difficulty.HARD.value, 0),
            helpful_solutions=by_effectiveness.get(Effectiveness.HELPFUL.value, 0),
            partially_helpful_solutions=by_effectiveness.get(
                Effectiveness.PARTIALLY_HELPFUL.value, 0
            ),
            not_helpful_solutions=by_effectiveness.get(Effectiveness.NOT_HELPFUL.value, 0),
        )


class SQLAlchemyRatingRepository(IRatingRepository):
    """SQLAlchemy implementation for ratings."""

    def __init__(self, database: Database):
        self._database = database

    async def get_by_id(self, rating_id: str) -> Optional[Rating]:
        async with _unit_of_work(self._database) as session:
            model = await session.get(RatingModel, rating_id)
            return _rating_from_model(model) if model is not None else None

    async def get_by_ticket_and_user(self, ticket_id: str, user_id: str) -> Optional[Rating]:
        async with _unit_of_work(self._database) as session:
            stmt = select(RatingModel).where(
                RatingModel.ticket_id == ticket_id,
                RatingModel.user_id == user_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _rating_from_model(model) if model is not None else None

    async def create(self, rating: Rating) -> Rating:
        conflict = "You have already rated this solution"
        async with _unit_of_work(self._database, conflict) as session:
            session.add(RatingModel(
                id=rating.id,
                ticket_id=rating.ticket_id,
                solution_id=rating.solution_id,
                user_id=rating.user_id,
                moderator_id=rating.moderator_id,
                rating=rating.rating,
                clarity=rating.categories.clarity,
                helpfulness=rating.categories.helpfulness,
                completeness=rating.categories.completeness,
                timeliness=rating.categories.timeliness,
                was_helpful=rating.was_helpful,
                issue_resolved=rating.issue_resolved,
                would_recommend=rating.would_recommend,
                feedback=rating.feedback,
                improvement_suggestions=rating.improvement_suggestions,
                additional_help_needed=rating.additional_help_needed,
                additional_help_description=rating.additional_help_description,
                is_anonymous=rating.is_anonymous,
                created_at=rating.created_at,
            ))
            await session.flush()
        return rating

    async def get_stats(self, moderator_id: Optional[str] = None) -> Dict[str, float]:
        stmt = select(
            func.count(RatingModel.id),
            func.avg(RatingModel.rating),
            func.avg(RatingModel.clarity),
            func.avg(RatingModel.helpfulness),
            func.avg(RatingModel.completeness),
            func.avg(RatingModel.timeliness),
        )
        if moderator_id is not None:
            stmt = stmt.where(RatingModel.moderator_id == moderator_id)

        async with _unit_of_work(self._database) as session:
            row = (await session.execute(stmt)).one()

        count, *averages = row
        keys = (
            "average_rating",
            "average_clarity",
            "average_helpfulness",
            "average_completeness",
            "average_timeliness",
        )
        stats: Dict[str, float] = {"total_ratings": count or 0}
        for key, value in zip(keys, averages):
            stats[key] = round(float(value or 0), 2)
        return stats


class SQLAlchemyUserRepository(IUserRepository):
    """Read-only SQLAlchemy access to users."""

    def __init__(self, database: Database):
        self._database = database

    async def get_by_id(self, user_id: str) -> Optional[User]:
        async with _unit_of_work(self._database) as session:
            model = await session.get(UserModel, user_id)
            return _user_from_model(model) if model is not None else None

    async def list_by_role(self, role: UserRole) -> List[User]:
        async with _unit_of_work(self._database) as session:
            stmt = (
                select(UserModel)
                .where(UserModel.role == UserRole(role).value)
                .order_by(UserModel.created_at, UserModel.id)
            )
            models = (await session.execute(stmt)).scalars().all()
            return [_user_from_model(model) for model in models]
