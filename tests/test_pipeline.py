"""Tests for the pipeline orchestrator and event bus."""

import pytest

from fakes import ScriptedLLMClient, rating_request, solution_request
from ticketflow.config import Priority, TicketStatus, UserRole
from ticketflow.core import LLMException, RepositoryUnavailableException
from ticketflow.pipeline.application import StepStatus
from ticketflow.pipeline.domain import (
    TicketCreated,
    TicketCreatedData,
    TicketReassigned,
    TicketReassignedData,
    TicketStatusUpdated,
    TicketStatusUpdatedData,
)
from ticketflow.pipeline.infrastructure import InProcessEventBus
from ticketflow.tickets.domain import User
from ticketflow.triage.domain import MANUAL_REVIEW_FLAG

CREATED_STEPS = [
    "fetch-ticket",
    "mark-intake",
    "apply-triage",
    "match-moderator",
    "persist-assignment",
    "start-progress",
    "notify-moderator",
]


def created_event(ticket) -> TicketCreated:
    return TicketCreated(data=TicketCreatedData(
        ticket_id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        created_by=ticket.created_by,
    ))


async def resolve_and_rate(lifecycle, publisher, ticket, moderator, customer, **rating):
    ticket.assigned_to = moderator.id
    ticket.status = TicketStatus.IN_PROGRESS
    await lifecycle.submit_solution(solution_request(ticket.id), moderator)
    await lifecycle.rate_solution(rating_request(ticket.id, **rating), customer)
    return publisher.events[-2], publisher.events[-1]


# ========== ticket/created ==========

async def test_ticket_created_triages_assigns_and_notifies(
    orchestrator, open_ticket, tickets, network_moderator, mail
):
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.step_names == CREATED_STEPS
    assert all(s.status == StepStatus.SUCCEEDED for s in report.steps)

    stored = tickets.tickets[open_ticket.id]
    assert stored.priority == Priority.HIGH
    assert stored.required_skills == ["Networking", "VPN"]
    assert stored.triage_notes == "Check the VPN gateway certificate."
    assert stored.assigned_to == network_moderator.id
    assert stored.assigned_at is not None
    assert stored.status == TicketStatus.IN_PROGRESS

    assert [m[:2] for m in mail.sent] == [(network_moderator.email, "New Ticket Assigned")]
    assert "Priority: high" in mail.sent[0][2]
    assert "Skills Required: Networking, VPN" in mail.sent[0][2]


async def test_classifier_failure_uses_fallback_and_still_assigns(
    make_orchestrator, open_ticket, tickets, db_moderator, mail
):
    orchestrator = make_orchestrator(ScriptedLLMClient(LLMException("503 from provider")))
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.details["triage"].is_fallback
    stored = tickets.tickets[open_ticket.id]
    assert stored.priority == Priority.MEDIUM
    assert stored.required_skills == ["General Support"]
    assert stored.triage_notes.startswith(MANUAL_REVIEW_FLAG)
    # General Support never skill-matches: first moderator in stable order
    assert stored.assigned_to == db_moderator.id
    assert stored.status == TicketStatus.IN_PROGRESS
    assert mail.to(db_moderator.email)


async def test_no_staff_leaves_ticket_unassigned_but_in_progress(
    orchestrator, open_ticket, tickets, users, customer, mail
):
    users.users[:] = [customer]
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.step("persist-assignment").status == StepStatus.SKIPPED
    assert report.step("notify-moderator").status == StepStatus.SKIPPED
    stored = tickets.tickets[open_ticket.id]
    assert stored.assigned_to is None
    assert stored.status == TicketStatus.IN_PROGRESS
    assert mail.sent == []


async def test_existing_assignee_is_kept(orchestrator, open_ticket, tickets, admin, mail):
    open_ticket.assigned_to = admin.id
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.details["assignment_kept"]
    assert tickets.tickets[open_ticket.id].assigned_to == admin.id
    assert report.step("notify-moderator").status == StepStatus.SKIPPED
    assert mail.sent == []


async def test_redelivered_event_renotifies_without_reassigning(
    orchestrator, open_ticket, tickets, network_moderator, mail
):
    event = created_event(open_ticket)
    await orchestrator.handle(event)
    assigned_at = tickets.tickets[open_ticket.id].assigned_at

    report = await orchestrator.handle(event)

    assert report.success
    assert "assignment_kept" not in report.details
    assert tickets.tickets[open_ticket.id].assigned_at == assigned_at
    assert tickets.tickets[open_ticket.id].assigned_to == network_moderator.id
    assert report.step("notify-moderator").status == StepStatus.SUCCEEDED
    assert len(mail.to(network_moderator.email)) == 2


async def test_moderator_notified_when_earlier_run_stopped_after_assignment(
    orchestrator, open_ticket, tickets, network_moderator, mail
):
    open_ticket.assigned_to = network_moderator.id
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.details["assigned_to"] == network_moderator.id
    assert [m[:2] for m in mail.sent] == [(network_moderator.email, "New Ticket Assigned")]


async def test_failed_assignment_write_is_not_reported_as_kept(
    orchestrator, lifecycle, open_ticket, tickets, mail, monkeypatch
):
    async def unavailable(ticket_id, moderator_id):
        raise RepositoryUnavailableException("tickets unavailable")

    monkeypatch.setattr(lifecycle, "assign_if_unassigned", unavailable)
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.step("persist-assignment").status == StepStatus.FAILED
    assert report.step("persist-assignment").attempts == 3
    assert "assignment_kept" not in report.details
    notify = report.step("notify-moderator")
    assert notify.status == StepStatus.SKIPPED
    assert notify.error == "assignment could not be saved"
    assert tickets.tickets[open_ticket.id].status == TicketStatus.IN_PROGRESS
    assert mail.sent == []


async def test_failed_matching_is_not_reported_as_no_staff(orchestrator, open_ticket, users, mail):
    users.fail_next("list_by_role", 3)
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.step("match-moderator").status == StepStatus.FAILED
    assert report.step("persist-assignment").error == "moderator matching failed"
    assert report.step("notify-moderator").error == "moderator matching failed"
    assert mail.sent == []


async def test_no_staff_reason(orchestrator, open_ticket, users, customer):
    users.users[:] = [customer]
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.step("persist-assignment").error == "no moderator or admin available"


async def test_missing_ticket_aborts_without_retry(orchestrator, tickets, open_ticket):
    del tickets.tickets[open_ticket.id]
    report = await orchestrator.handle(created_event(open_ticket))

    assert not report.success
    assert "not found" in report.error
    assert report.step_names == ["fetch-ticket"]
    assert report.step("fetch-ticket").status == StepStatus.ABORTED
    assert report.step("fetch-ticket").attempts == 1
    assert tickets.calls["get_by_id"] == 1


async def test_transient_failure_is_retried(orchestrator, open_ticket, tickets):
    tickets.fail_next("update", 2)
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    intake = report.step("mark-intake")
    assert intake.status == StepStatus.SUCCEEDED
    assert intake.attempts == 3
    assert tickets.tickets[open_ticket.id].status == TicketStatus.IN_PROGRESS


async def test_exhausted_optional_step_does_not_stop_run(orchestrator, open_ticket, tickets):
    tickets.fail_next("update", 3)
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.failed_steps == ["mark-intake"]
    assert report.step("mark-intake").attempts == 3
    assert report.step_names == CREATED_STEPS
    assert tickets.tickets[open_ticket.id].status == TicketStatus.IN_PROGRESS


async def test_exhausted_required_step_aborts(orchestrator, open_ticket, tickets, mail):
    tickets.fail_next("get_by_id", 3)
    report = await orchestrator.handle(created_event(open_ticket))

    assert not report.success
    assert report.step("fetch-ticket").status == StepStatus.ABORTED
    assert report.step("fetch-ticket").attempts == 3
    assert "fetch-ticket" in report.error
    assert tickets.tickets[open_ticket.id].priority is None
    assert mail.sent == []


async def test_mail_failure_does_not_fail_run(orchestrator, open_ticket, network_moderator, mail):
    mail.raise_for.add(network_moderator.email)
    report = await orchestrator.handle(created_event(open_ticket))

    assert report.success
    assert report.step("notify-moderator").status == StepStatus.SUCCEEDED
    delivery = report.details["deliveries"]["notify-moderator"]
    assert delivery.failed == 1


# ========== solution/submitted ==========

async def test_solution_submitted_notifies_user(
    orchestrator, lifecycle, publisher, open_ticket, network_moderator, customer, mail
):
    open_ticket.assigned_to = network_moderator.id
    open_ticket.status = TicketStatus.IN_PROGRESS
    await lifecycle.submit_solution(solution_request(), network_moderator)

    report = await orchestrator.handle(publisher.events[-1])

    assert report.success
    assert report.step_names == [
        "fetch-solution-data", "notify-user-solution-ready", "log-solution-metrics",
    ]
    (address, subject, body), = mail.sent
    assert address == customer.email
    assert subject == f"Solution Ready: {open_ticket.title}"
    assert network_moderator.email in body
    assert report.details["solution_metrics"]["steps"] == 2


# ========== solution/rated ==========

async def test_low_rating_alerts_every_admin(
    orchestrator, lifecycle, publisher, open_ticket, network_moderator, customer,
    admin, users, tickets, mail
):
    second_admin = users.add(User(id="admin-2", email="ops@example.com", role=UserRole.ADMIN))
    mail.raise_for.add(admin.email)
    _, rated = await resolve_and_rate(
        lifecycle, publisher, open_ticket, network_moderator, customer,
        rating=1, was_helpful=False, issue_resolved=False,
    )

    report = await orchestrator.handle(rated)

    assert report.success
    assert report.step_names == [
        "fetch-rating-data",
        "update-ticket-rating",
        "send-thank-you-to-user",
        "notify-moderator-of-rating",
        "handle-low-rating-or-help-request",
        "log-rating-analytics",
    ]
    alerts = report.details["deliveries"]["handle-low-rating-or-help-request"]
    assert alerts.attempted == 2
    assert alerts.failures[0].address == admin.email
    assert mail.to(second_admin.email)[0][1] == f"Action Required: Low Rating - Ticket {open_ticket.id}"
    assert mail.to(customer.email)[0][1] == "Thank you for rating our solution!"
    assert mail.to(network_moderator.email)[0][1] == "Your solution has been rated: 1/5 stars"

    stored = tickets.tickets[open_ticket.id]
    assert stored.satisfaction_rating == 1
    assert stored.is_rated
    assert stored.needs_follow_up


async def test_good_rating_skips_admin_alert(
    orchestrator, lifecycle, publisher, open_ticket, network_moderator, customer, admin, mail
):
    _, rated = await resolve_and_rate(lifecycle, publisher, open_ticket, network_moderator, customer)
    report = await orchestrator.handle(rated)

    assert report.step("handle-low-rating-or-help-request").status == StepStatus.SKIPPED
    assert mail.to(admin.email) == []
    assert report.details["rating_analytics"]["rating"] == 5


async def test_help_request_alerts_admin(
    orchestrator, lifecycle, publisher, open_ticket, network_moderator, customer, admin, mail
):
    _, rated = await resolve_and_rate(
        lifecycle, publisher, open_ticket, network_moderator, customer,
        additional_help_needed=True, additional_help_description="Also broken on my phone",
    )
    await orchestrator.handle(rated)

    (_, subject, body), = mail.to(admin.email)
    assert subject == f"Action Required: Additional Help - Ticket {open_ticket.id}"
    assert "Also broken on my phone" in body


# ========== ticket/status-updated ==========

def status_event(ticket, actor, new_status=TicketStatus.RESOLVED) -> TicketStatusUpdated:
    return TicketStatusUpdated(data=TicketStatusUpdatedData(
        ticket_id=ticket.id,
        old_status=TicketStatus.IN_PROGRESS,
        new_status=new_status,
        updated_by=actor.id,
        updated_by_email=actor.email,
    ))


async def test_status_update_notifies_creator_and_assignee(
    orchestrator, open_ticket, network_moderator, customer, admin, mail
):
    open_ticket.assigned_to = network_moderator.id
    report = await orchestrator.handle(status_event(open_ticket, admin))

    assert report.success
    assert mail.to(customer.email)[0][1] == f"Ticket Status Update: {open_ticket.title}"
    assert "Your issue has been resolved" in mail.to(customer.email)[0][2]
    assert mail.to(network_moderator.email)[0][1] == f"Ticket Status Changed: {open_ticket.title}"
    assert report.details["status_change"] == ("IN_PROGRESS", "RESOLVED")


async def test_status_update_by_assignee_skips_self_notification(
    orchestrator, open_ticket, network_moderator, customer, mail
):
    open_ticket.assigned_to = network_moderator.id
    report = await orchestrator.handle(status_event(open_ticket, network_moderator))

    assert report.step("notify-assigned-user").status == StepStatus.SKIPPED
    assert mail.to(network_moderator.email) == []
    assert mail.to(customer.email)


async def test_status_update_for_missing_ticket_aborts(orchestrator, open_ticket, tickets, admin):
    del tickets.tickets[open_ticket.id]
    report = await orchestrator.handle(status_event(open_ticket, admin))
    assert not report.success
    assert report.step_names == ["fetch-ticket-details"]


# ========== ticket/reassigned ==========

async def test_reassignment_notifies_both_assignees(
    orchestrator, open_ticket, network_moderator, db_moderator, admin, mail
):
    open_ticket.assigned_to = db_moderator.id
    open_ticket.priority = Priority.HIGH
    open_ticket.required_skills = ["Networking"]
    open_ticket.triage_notes = "n" * 150 + "TAIL" + "x" * 300

    report = await orchestrator.handle(TicketReassigned(data=TicketReassignedData(
        ticket_id=open_ticket.id,
        old_assignee=network_moderator.id,
        new_assignee=db_moderator.id,
        reassigned_by=admin.id,
    )))

    assert report.success
    assert mail.to(network_moderator.email)[0][1] == f"Ticket Reassigned: {open_ticket.title}"
    (_, subject, body), = mail.to(db_moderator.email)
    assert subject == f"New Ticket Assigned: {open_ticket.title}"
    excerpt = open_ticket.triage_notes[:200]
    assert f"AI Analysis: {excerpt}\n" in body
    assert open_ticket.triage_notes[:201] not in body


async def test_unassignment_skips_new_assignee(orchestrator, open_ticket, network_moderator, admin):
    report = await orchestrator.handle(TicketReassigned(data=TicketReassignedData(
        ticket_id=open_ticket.id,
        old_assignee=network_moderator.id,
        reassigned_by=admin.id,
    )))
    assert report.step("notify-old-assignee").status == StepStatus.SUCCEEDED
    assert report.step("notify-new-assignee").status == StepStatus.SKIPPED


# ========== event bus ==========

async def test_bus_runs_events_in_background(orchestrator, open_ticket, tickets):
    bus = InProcessEventBus(orchestrator.handle)
    await bus.publish(created_event(open_ticket))
    await bus.drain()

    assert bus.in_flight == 0
    assert len(bus.reports) == 1
    assert bus.reports[0].success
    assert tickets.tickets[open_ticket.id].status == TicketStatus.IN_PROGRESS


async def test_bus_survives_crashing_handler(open_ticket):
    async def crash(event):
        raise RuntimeError("handler bug")

    bus = InProcessEventBus(crash)
    await bus.publish(created_event(open_ticket))
    await bus.drain()
    assert len(bus.reports) == 0


async def test_closed_bus_rejects_events(orchestrator, open_ticket):
    bus = InProcessEventBus(orchestrator.handle)
    await bus.close()
    with pytest.raises(RuntimeError):
        await bus.publish(created_event(open_ticket))
