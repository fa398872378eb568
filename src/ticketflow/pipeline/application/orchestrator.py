"""
Pipeline Orchestrator
=====================

Event handlers for the ticket processing pipeline.

Each event kind maps to one handler, and each handler is a fixed sequence
of named steps executed by a StepRunner. Loading the entity an event refers
to is a required step: if the entity is missing the run aborts without
retry. Notification and analytics steps are best-effort.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from ticketflow.config import UserRole
from ticketflow.core import NonRetriableError, StepAbortedError
from ticketflow.notifications.application import NotificationDispatcher
from ticketflow.notifications.domain import DeliveryReport, Recipient, TemplateKind
from ticketflow.pipeline.application.runner import PipelineRunReport, StepRunner, StepStatus
from ticketflow.pipeline.domain import (
    PipelineEvent,
    SolutionRated,
    SolutionSubmitted,
    TicketCreated,
    TicketReassigned,
    TicketStatusUpdated,
)
from ticketflow.shared.infrastructure.logging import get_context_logger, log_latency
from ticketflow.shared.infrastructure.metrics import PipelineMetricsExporter
from ticketflow.tickets.application import (
    IRatingRepository,
    ISolutionRepository,
    ITicketRepository,
    IUserRepository,
    TicketLifecycleService,
)
from ticketflow.tickets.domain import Rating, Solution, Ticket, User
from ticketflow.triage.application import ModeratorMatcher, TriageClassifierAdapter


@dataclass
class _SolutionContext:
    solution: Solution
    ticket: Optional[Ticket]
    user: Optional[User]
    moderator: Optional[User]


@dataclass
class _RatingContext:
    rating: Rating
    ticket: Optional[Ticket]
    user: Optional[User]
    moderator: Optional[User]


@dataclass
class _StatusContext:
    ticket: Ticket
    creator: Optional[User]
    assignee: Optional[User]


@dataclass
class _ReassignmentContext:
    ticket: Ticket
    old_assignee: Optional[User]
    new_assignee: Optional[User]


def notes_excerpt(notes: str, limit: int) -> str:
    """First ``limit`` characters of the triage notes."""
    return (notes or "").strip()[:limit]


class PipelineOrchestrator:
    """
    Drives triage, assignment, notification and bookkeeping per event.

    Events for different tickets run concurrently; nothing here holds
    state between runs, and every write is idempotent or conditional so
    redelivered and interleaved events are safe.
    """

    def __init__(
        self,
        lifecycle: TicketLifecycleService,
        tickets: ITicketRepository,
        solutions: ISolutionRepository,
        ratings: IRatingRepository,
        users: IUserRepository,
        classifier: TriageClassifierAdapter,
        matcher: ModeratorMatcher,
        dispatcher: NotificationDispatcher,
        metrics: Optional[PipelineMetricsExporter] = None,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        max_wait_seconds: float = 30.0,
        notes_excerpt_length: int = 200,
    ):
        self._lifecycle = lifecycle
        self._tickets = tickets
        self._solutions = solutions
        self._ratings = ratings
        self._users = users
        self._classifier = classifier
        self._matcher = matcher
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._max_wait = max_wait_seconds
        self._excerpt_length = notes_excerpt_length

        self._handlers: Dict[Type[Any], Callable[[Any, StepRunner], Awaitable[None]]] = {
            TicketCreated: self._on_ticket_created,
            SolutionSubmitted: self._on_solution_submitted,
            SolutionRated: self._on_solution_rated,
            TicketStatusUpdated: self._on_ticket_status_updated,
            TicketReassigned: self._on_ticket_reassigned,
        }

    async def handle(self, event: PipelineEvent) -> PipelineRunReport:
        """
        Run the handler for one event.

        Aborts (missing entity, exhausted required step) are reported, not
        raised.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise ValueError(f"No handler for event {type(event).__name__}")

        logger = get_context_logger(__name__, event.id)
        report = PipelineRunReport(event_id=event.id, event_name=event.name)
        runner = StepRunner(
            report,
            logger,
            max_retries=self._max_retries,
            backoff_seconds=self._backoff,
            max_wait_seconds=self._max_wait,
        )

        logger.info("Pipeline run started", extra={"event_name": event.name})
        try:
            with log_latency(logger, "pipeline_run", event_name=event.name):
                await handler(event, runner)
        except (NonRetriableError, StepAbortedError) as e:
            report.success = False
            report.error = e.message
            logger.error(
                "Pipeline run aborted",
                extra={"event_name": event.name, "error": e.message}
            )
            return report

        logger.info(
            "Pipeline run finished",
            extra={"event_name": event.name, "failed_steps": report.failed_steps}
        )
        return report

    # ========== Helpers ==========

    async def _dispatch(
        self,
        run: StepRunner,
        name: str,
        recipients: List[Recipient],
    ) -> Optional[DeliveryReport]:
        """Notification step: delivery failures land in the report, never retried."""
        delivery = await run.step(name, lambda: self._dispatcher.notify(recipients))
        if delivery is not None:
            run.report.details.setdefault("deliveries", {})[name] = delivery
        return delivery

    @staticmethod
    def _failed(run: StepRunner, name: str) -> bool:
        outcome = run.report.step(name)
        return outcome is not None and outcome.status in (StepStatus.FAILED, StepStatus.ABORTED)

    async def _user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return await self._users.get_by_id(user_id)

    async def _export(self, gauges: Dict[str, float], attributes: Dict[str, str]) -> None:
        if self._metrics is not None and self._metrics.is_enabled():
            await self._metrics.export_gauges(gauges, attributes)

    # ========== ticket/created ==========

    async def _on_ticket_created(self, event: TicketCreated, run: StepRunner) -> None:
        data = event.data

        async def fetch_ticket() -> Ticket:
            ticket = await self._tickets.get_by_id(data.ticket_id)
            if ticket is None:
                raise NonRetriableError(f"Ticket {data.ticket_id} not found")
            return ticket

        ticket = await run.step("fetch-ticket", fetch_ticket, required=True)
        await run.step("mark-intake", lambda: self._lifecycle.mark_intake(ticket.id))

        # Outside the step boundary: the adapter has its own fallback
        triage = await self._classifier.classify(ticket.title, ticket.description, ticket_id=ticket.id)
        run.report.details["triage"] = triage

        await run.step(
            "apply-triage",
            lambda: self._lifecycle.apply_triage(
                ticket.id, triage.priority, triage.notes, triage.skills
            ),
        )
        moderator = await run.step("match-moderator", lambda: self._matcher.match(triage.skills))

        async def persist_assignment() -> Optional[str]:
            """Returns the ticket's assignee after the conditional write."""
            if await self._lifecycle.assign_if_unassigned(ticket.id, moderator.id):
                return moderator.id
            current = await self._tickets.get_by_id(ticket.id)
            return current.assigned_to if current is not None else None

        assignee: Optional[str] = None
        skip_reason = ""
        if moderator is None:
            if self._failed(run, "match-moderator"):
                skip_reason = "moderator matching failed"
            else:
                skip_reason = "no moderator or admin available"
            run.skip("persist-assignment", skip_reason)
        else:
            assignee = await run.step("persist-assignment", persist_assignment)
            if self._failed(run, "persist-assignment"):
                skip_reason = "assignment could not be saved"
            elif assignee != moderator.id:
                run.report.details["assignment_kept"] = True
                skip_reason = "ticket already assigned to someone else"

        await run.step("start-progress", lambda: self._lifecycle.start_progress(ticket.id))

        # A redelivered event re-notifies the same moderator: delivery is at least once
        if moderator is None or assignee != moderator.id:
            run.skip("notify-moderator", skip_reason)
            return
        run.report.details["assigned_to"] = moderator.id
        await self._dispatch(run, "notify-moderator", [
            Recipient(
                address=moderator.email,
                template_kind=TemplateKind.TICKET_ASSIGNED,
                template_data={
                    "ticket_id": ticket.id,
                    "ticket_title": ticket.title,
                    "priority": triage.priority.value,
                    "skills": list(triage.skills),
                },
            )
        ])

    # ========== solution/submitted ==========

    async def _on_solution_submitted(self, event: SolutionSubmitted, run: StepRunner) -> None:
        data = event.data

        async def fetch_solution_data() -> _SolutionContext:
            solution = await self._solutions.get_by_id(data.solution_id)
            if solution is None:
                raise NonRetriableError(f"Solution {data.solution_id} not found")
            return _SolutionContext(
                solution=solution,
                ticket=await self._tickets.get_by_id(data.ticket_id),
                user=await self._user(data.user_id),
                moderator=await self._user(data.moderator_id),
            )

        ctx = await run.step("fetch-solution-data", fetch_solution_data, required=True)

        if ctx.user is None:
            run.skip("notify-user-solution-ready", "ticket creator not found")
        else:
            await self._dispatch(run, "notify-user-solution-ready", [
                Recipient(
                    address=ctx.user.email,
                    template_kind=TemplateKind.SOLUTION_READY,
                    template_data={
                        "ticket_title": ctx.ticket.title if ctx.ticket else "your ticket",
                        "moderator_email": ctx.moderator.email if ctx.moderator else None,
                        "difficulty": ctx.solution.difficulty.value,
                        "time_to_resolve_hours": data.time_to_resolve,
                    },
                )
            ])

        async def log_solution_metrics() -> None:
            run.report.details["solution_metrics"] = {
                "time_to_resolve_hours": data.time_to_resolve,
                "steps": len(ctx.solution.steps),
                "resources": len(ctx.solution.resources),
                "difficulty": ctx.solution.difficulty.value,
            }
            await self._export(
                {
                    "solution_time_to_resolve_hours": data.time_to_resolve,
                    "solution_steps_count": len(ctx.solution.steps),
                    "solution_resources_count": len(ctx.solution.resources),
                },
                {"difficulty": ctx.solution.difficulty.value, "moderator_id": data.moderator_id},
            )

        await run.step("log-solution-metrics", log_solution_metrics)

    # ========== solution/rated ==========

    async def _on_solution_rated(self, event: SolutionRated, run: StepRunner) -> None:
        data = event.data

        async def fetch_rating_data() -> _RatingContext:
            rating = await self._ratings.get_by_id(data.rating_id)
            if rating is None:
                raise NonRetriableError(f"Rating {data.rating_id} not found")
            return _RatingContext(
                rating=rating,
                ticket=await self._tickets.get_by_id(data.ticket_id),
                user=await self._user(data.user_id),
                moderator=await self._user(data.moderator_id),
            )

        ctx = await run.step("fetch-rating-data", fetch_rating_data, required=True)
        rating = ctx.rating
        ticket_title = ctx.ticket.title if ctx.ticket else data.ticket_id

        await run.step(
            "update-ticket-rating",
            lambda: self._lifecycle.record_rating_outcome(data.ticket_id, rating),
        )

        if ctx.user is None:
            run.skip("send-thank-you-to-user", "rating user not found")
        else:
            await self._dispatch(run, "send-thank-you-to-user", [
                Recipient(
                    address=ctx.user.email,
                    template_kind=TemplateKind.SOLUTION_RATED_THANKYOU,
                    template_data={
                        "ticket_title": ticket_title,
                        "rating": rating.rating,
                        "was_helpful": rating.was_helpful,
                        "issue_resolved": rating.issue_resolved,
                        "additional_help_needed": rating.additional_help_needed,
                        "feedback": rating.feedback,
                    },
                )
            ])

        if ctx.moderator is None:
            run.skip("notify-moderator-of-rating", "moderator not found")
        else:
            await self._dispatch(run, "notify-moderator-of-rating", [
                Recipient(
                    address=ctx.moderator.email,
                    template_kind=TemplateKind.SOLUTION_RATED_MODERATOR_NOTICE,
                    template_data={
                        "moderator_email": ctx.moderator.email,
                        "ticket_title": ticket_title,
                        "rating": rating.rating,
                        "was_helpful": rating.was_helpful,
                        "issue_resolved": rating.issue_resolved,
                        "would_recommend": rating.would_recommend,
                        "categories": {
                            "clarity": rating.categories.clarity,
                            "helpfulness": rating.categories.helpfulness,
                            "completeness": rating.categories.completeness,
                            "timeliness": rating.categories.timeliness,
                        },
                        "feedback": rating.feedback,
                        "is_anonymous": rating.is_anonymous,
                        "improvement_suggestions": rating.improvement_suggestions,
                        "additional_help_needed": rating.additional_help_needed,
                    },
                )
            ])

        if not rating.needs_admin_attention:
            run.skip("handle-low-rating-or-help-request", "rating needs no follow-up")
        else:
            async def alert_admins() -> DeliveryReport:
                admins = await self._users.list_by_role(UserRole.ADMIN)
                alert = {
                    "ticket_id": data.ticket_id,
                    "ticket_title": ticket_title,
                    "moderator_email": ctx.moderator.email if ctx.moderator else None,
                    "user_email": ctx.user.email if ctx.user else None,
                    "rating": rating.rating,
                    "was_helpful": rating.was_helpful,
                    "issue_resolved": rating.issue_resolved,
                    "additional_help_needed": rating.additional_help_needed,
                    "additional_help_description": rating.additional_help_description,
                }
                return await self._dispatcher.notify([
                    Recipient(admin.email, TemplateKind.LOW_RATING_ADMIN_ALERT, alert)
                    for admin in admins
                ])

            delivery = await run.step("handle-low-rating-or-help-request", alert_admins)
            if delivery is not None:
                run.report.details.setdefault("deliveries", {})[
                    "handle-low-rating-or-help-request"
                ] = delivery

        async def log_rating_analytics() -> None:
            run.report.details["rating_analytics"] = {
                "rating": rating.rating,
                "category_average": rating.category_average,
                "needs_follow_up": rating.needs_follow_up,
            }
            await self._export(
                {
                    "rating_value": rating.rating,
                    "rating_category_average": rating.category_average,
                },
                {
                    "moderator_id": data.moderator_id,
                    "was_helpful": str(rating.was_helpful).lower(),
                    "issue_resolved": str(rating.issue_resolved).lower(),
                },
            )

        await run.step("log-rating-analytics", log_rating_analytics)

    # ========== ticket/status-updated ==========

    async def _on_ticket_status_updated(self, event: TicketStatusUpdated, run: StepRunner) -> None:
        data = event.data

        async def fetch_ticket_details() -> _StatusContext:
            ticket = await self._tickets.get_by_id(data.ticket_id)
            if ticket is None:
                raise NonRetriableError(f"Ticket {data.ticket_id} not found")
            return _StatusContext(
                ticket=ticket,
                creator=await self._user(ticket.created_by),
                assignee=await self._user(ticket.assigned_to),
            )

        ctx = await run.step("fetch-ticket-details", fetch_ticket_details, required=True)
        template_data = {
            "ticket_title": ctx.ticket.title,
            "old_status": data.old_status.value,
            "new_status": data.new_status.value,
            "updated_by_email": data.updated_by_email,
        }

        if ctx.creator is None:
            run.skip("notify-ticket-creator", "ticket creator not found")
        else:
            await self._dispatch(run, "notify-ticket-creator", [
                Recipient(
                    ctx.creator.email,
                    TemplateKind.TICKET_STATUS_CHANGED,
                    {**template_data, "audience": "creator"},
                )
            ])

        if ctx.assignee is None:
            run.skip("notify-assigned-user", "ticket has no assignee")
        elif ctx.assignee.id == data.updated_by:
            run.skip("notify-assigned-user", "assignee made the change")
        else:
            await self._dispatch(run, "notify-assigned-user", [
                Recipient(
                    ctx.assignee.email,
                    TemplateKind.TICKET_STATUS_CHANGED,
                    {**template_data, "audience": "assignee"},
                )
            ])

        async def log_status_change_analytics() -> None:
            run.report.details["status_change"] = (data.old_status.value, data.new_status.value)
            await self._export(
                {"ticket_status_changes_total": 1},
                {"old_status": data.old_status.value, "new_status": data.new_status.value},
            )

        await run.step("log-status-change-analytics", log_status_change_analytics)

    # ========== ticket/reassigned ==========

    async def _on_ticket_reassigned(self, event: TicketReassigned, run: StepRunner) -> None:
        data = event.data

        async def fetch_reassignment_details() -> _ReassignmentContext:
            ticket = await self._tickets.get_by_id(data.ticket_id)
            if ticket is None:
                raise NonRetriableError(f"Ticket {data.ticket_id} not found")
            return _ReassignmentContext(
                ticket=ticket,
                old_assignee=await self._user(data.old_assignee),
                new_assignee=await self._user(data.new_assignee),
            )

        ctx = await run.step("fetch-reassignment-details", fetch_reassignment_details, required=True)

        if ctx.old_assignee is None:
            run.skip("notify-old-assignee", "ticket had no previous assignee")
        else:
            await self._dispatch(run, "notify-old-assignee", [
                Recipient(
                    ctx.old_assignee.email,
                    TemplateKind.TICKET_UNASSIGNED,
                    {"ticket_title": ctx.ticket.title},
                )
            ])

        if ctx.new_assignee is None:
            run.skip("notify-new-assignee", "ticket was unassigned")
        else:
            await self._dispatch(run, "notify-new-assignee", [
                Recipient(
                    ctx.new_assignee.email,
                    TemplateKind.TICKET_REASSIGNED,
                    {
                        "ticket_title": ctx.ticket.title,
                        "priority": ctx.ticket.priority.value if ctx.ticket.priority else None,
                        "skills": list(ctx.ticket.required_skills),
                        "notes_excerpt": notes_excerpt(ctx.ticket.triage_notes, self._excerpt_length),
                    },
                )
            ])
