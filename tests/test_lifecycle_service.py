"""Tests for ticket lifecycle commands."""

import logging

import pytest

from conftest import NOW
from fakes import rating_request, solution_request
from ticketflow.config import Effectiveness, Priority, TicketStatus, UserRole
from ticketflow.core import (
    ConflictException,
    InvalidTransitionException,
    PermissionDeniedException,
    RepositoryUnavailableException,
    ResourceNotFoundException,
    ValidationException,
)
from ticketflow.tickets.application import CommentRequest, CreateTicketRequest
from ticketflow.tickets.domain import User


@pytest.fixture
def assigned_ticket(open_ticket, network_moderator):
    open_ticket.assigned_to = network_moderator.id
    open_ticket.status = TicketStatus.IN_PROGRESS
    return open_ticket


async def test_create_ticket_publishes_ticket_created(lifecycle, publisher, tickets, customer):
    ticket = await lifecycle.create_ticket(
        CreateTicketRequest(title="  VPN down ", description="Times out"), customer
    )
    assert ticket.status == TicketStatus.OPEN
    assert ticket.title == "VPN down"
    assert ticket.id in tickets.tickets
    assert publisher.names() == ["ticket/created"]
    assert publisher.events[0].data.ticket_id == ticket.id
    assert publisher.events[0].data.created_by == customer.id


async def test_create_ticket_kept_when_publish_fails(
    lifecycle, publisher, tickets, customer, caplog
):
    publisher.closed = True
    with caplog.at_level(logging.ERROR):
        ticket = await lifecycle.create_ticket(
            CreateTicketRequest(title="VPN down", description="Times out"), customer
        )
    assert ticket.id in tickets.tickets
    assert publisher.events == []
    assert "Event publish failed" in caplog.text


def test_create_request_rejects_blank_title():
    with pytest.raises(ValueError):
        CreateTicketRequest(title="   ", description="x")


async def test_update_status_requires_staff(lifecycle, open_ticket, customer):
    with pytest.raises(PermissionDeniedException):
        await lifecycle.update_status(open_ticket.id, TicketStatus.RESOLVED, customer)


async def test_update_status_missing_ticket(lifecycle, admin):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.update_status("nope", TicketStatus.RESOLVED, admin)


async def test_completed_at_set_once_across_reopen(lifecycle, open_ticket, admin, clock, publisher):
    resolved = await lifecycle.update_status(open_ticket.id, TicketStatus.RESOLVED, admin)
    first_completed = resolved.completed_at
    assert first_completed == NOW

    clock.advance(hours=2)
    reopened = await lifecycle.update_status(open_ticket.id, TicketStatus.OPEN, admin)
    assert reopened.status == TicketStatus.OPEN
    assert reopened.completed_at == first_completed

    clock.advance(hours=2)
    again = await lifecycle.update_status(open_ticket.id, TicketStatus.RESOLVED, admin)
    assert again.completed_at == first_completed
    assert publisher.names() == ["ticket/status-updated"] * 3


async def test_noop_status_update_still_publishes(lifecycle, open_ticket, network_moderator, publisher):
    await lifecycle.update_status(open_ticket.id, TicketStatus.OPEN, network_moderator)
    event = publisher.events[-1]
    assert event.data.old_status == event.data.new_status == TicketStatus.OPEN
    assert event.data.updated_by_email == network_moderator.email


async def test_update_priority(lifecycle, open_ticket, network_moderator, customer):
    ticket = await lifecycle.update_priority(open_ticket.id, Priority.HIGH, network_moderator)
    assert ticket.priority == Priority.HIGH
    with pytest.raises(PermissionDeniedException):
        await lifecycle.update_priority(open_ticket.id, Priority.LOW, customer)


async def test_reassign_admin_only(lifecycle, open_ticket, network_moderator):
    with pytest.raises(PermissionDeniedException):
        await lifecycle.reassign(open_ticket.id, network_moderator.id, network_moderator)


async def test_reassign_rejects_non_staff_assignee(lifecycle, open_ticket, admin, customer):
    with pytest.raises(ValidationException):
        await lifecycle.reassign(open_ticket.id, customer.id, admin)
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.reassign(open_ticket.id, "ghost", admin)


async def test_reassign_keeps_first_assigned_at(
    lifecycle, open_ticket, admin, network_moderator, db_moderator, clock, publisher
):
    first = await lifecycle.reassign(open_ticket.id, network_moderator.id, admin)
    clock.advance(hours=1)
    second = await lifecycle.reassign(open_ticket.id, db_moderator.id, admin)

    assert second.assigned_to == db_moderator.id
    assert second.assigned_at == first.assigned_at == NOW
    event = publisher.events[-1]
    assert event.name == "ticket/reassigned"
    assert event.data.old_assignee == network_moderator.id
    assert event.data.new_assignee == db_moderator.id


async def test_unassign(lifecycle, assigned_ticket, admin, publisher):
    ticket = await lifecycle.reassign(assigned_ticket.id, None, admin)
    assert ticket.assigned_to is None
    assert publisher.events[-1].data.new_assignee is None


async def test_first_staff_comment_sets_first_response(
    lifecycle, open_ticket, customer, network_moderator, clock, tickets
):
    await lifecycle.add_comment(open_ticket.id, CommentRequest(text="Any update?"), customer)
    assert tickets.tickets[open_ticket.id].first_response_at is None

    clock.advance(hours=3)
    await lifecycle.add_comment(open_ticket.id, CommentRequest(text="Looking"), network_moderator)
    clock.advance(hours=3)
    await lifecycle.add_comment(open_ticket.id, CommentRequest(text="Fixed?"), network_moderator)

    stored = tickets.tickets[open_ticket.id]
    assert [c.text for c in stored.comments] == ["Any update?", "Looking", "Fixed?"]
    assert stored.time_to_first_response_hours == 3
    assert stored.response_time_category == "good"


async def test_failed_staff_comment_leaves_ticket_untouched(
    lifecycle, open_ticket, network_moderator, clock, tickets
):
    tickets.fail_next("add_comment")
    with pytest.raises(RepositoryUnavailableException):
        await lifecycle.add_comment(open_ticket.id, CommentRequest(text="Looking"), network_moderator)

    stored = tickets.tickets[open_ticket.id]
    assert stored.comments == []
    assert stored.first_response_at is None

    clock.advance(hours=1)
    await lifecycle.add_comment(open_ticket.id, CommentRequest(text="Looking"), network_moderator)
    assert [c.text for c in stored.comments] == ["Looking"]
    assert stored.first_response_at == clock.now
    assert stored.last_updated_by == network_moderator.id


async def test_user_cannot_comment_on_foreign_or_internal(lifecycle, open_ticket, customer):
    stranger = User(id="user-2", email="bob@example.com", role=UserRole.USER)
    with pytest.raises(PermissionDeniedException):
        await lifecycle.add_comment(open_ticket.id, CommentRequest(text="hi"), stranger)
    with pytest.raises(PermissionDeniedException):
        await lifecycle.add_comment(
            open_ticket.id, CommentRequest(text="hi", is_internal=True), customer
        )


async def test_submit_solution_resolves_ticket(
    lifecycle, assigned_ticket, network_moderator, clock, tickets, publisher
):
    clock.advance(hours=4, minutes=30)
    solution = await lifecycle.submit_solution(solution_request(), network_moderator)

    assert solution.time_to_resolve_hours == 5
    assert solution.tags == ["vpn", "networking"]
    stored = tickets.tickets[assigned_ticket.id]
    assert stored.status == TicketStatus.RESOLVED
    assert stored.solution_id == solution.id
    assert stored.completed_at == clock.now

    event = publisher.events[-1]
    assert event.name == "solution/submitted"
    assert event.data.user_id == assigned_ticket.created_by
    assert event.data.time_to_resolve == 5


async def test_submit_solution_requires_assignment(lifecycle, assigned_ticket, db_moderator):
    with pytest.raises(PermissionDeniedException):
        await lifecycle.submit_solution(solution_request(), db_moderator)


async def test_submit_solution_twice_conflicts(lifecycle, assigned_ticket, network_moderator):
    await lifecycle.submit_solution(solution_request(), network_moderator)
    with pytest.raises(ConflictException):
        await lifecycle.submit_solution(solution_request(), network_moderator)


async def test_submit_solution_retry_resolves_with_stored_solution(
    lifecycle, assigned_ticket, network_moderator, clock, tickets, solutions, publisher
):
    tickets.fail_next("update")
    with pytest.raises(RepositoryUnavailableException):
        await lifecycle.submit_solution(solution_request(), network_moderator)

    stored = tickets.tickets[assigned_ticket.id]
    assert stored.status == TicketStatus.IN_PROGRESS
    assert stored.solution_id is None
    assert len(solutions.solutions) == 1
    assert publisher.events == []

    clock.advance(minutes=5)
    solution = await lifecycle.submit_solution(
        solution_request(body="Restart the gateway."), network_moderator
    )
    assert list(solutions.solutions) == [solution.id]
    assert solution.body.startswith("Reinstall")
    assert stored.status == TicketStatus.RESOLVED
    assert stored.solution_id == solution.id
    assert stored.completed_at == clock.now
    assert publisher.names() == ["solution/submitted"]


async def test_stored_solution_of_another_moderator_conflicts(
    lifecycle, assigned_ticket, network_moderator, db_moderator, tickets
):
    tickets.fail_next("update")
    with pytest.raises(RepositoryUnavailableException):
        await lifecycle.submit_solution(solution_request(), network_moderator)

    assigned_ticket.assigned_to = db_moderator.id
    with pytest.raises(ConflictException):
        await lifecycle.submit_solution(solution_request(), db_moderator)
    assert assigned_ticket.solution_id is None


async def test_submit_solution_on_open_ticket_is_invalid(
    lifecycle, open_ticket, network_moderator
):
    open_ticket.assigned_to = network_moderator.id
    with pytest.raises(InvalidTransitionException):
        await lifecycle.submit_solution(solution_request(), network_moderator)


async def test_submit_solution_missing_ticket(lifecycle, network_moderator):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.submit_solution(solution_request("nope"), network_moderator)


async def test_rate_solution_derives_effectiveness(
    lifecycle, assigned_ticket, network_moderator, customer, solutions, publisher
):
    solution = await lifecycle.submit_solution(solution_request(), network_moderator)
    rating = await lifecycle.rate_solution(rating_request(rating=3), customer)

    assert rating.moderator_id == network_moderator.id
    assert solutions.solutions[solution.id].effectiveness == Effectiveness.PARTIALLY_HELPFUL
    assert solutions.solutions[solution.id].user_feedback == "Worked first time"
    event = publisher.events[-1]
    assert event.name == "solution/rated"
    assert event.data.rating_id == rating.id


async def test_rate_solution_rules(lifecycle, assigned_ticket, network_moderator, customer):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.rate_solution(rating_request(), customer)

    await lifecycle.submit_solution(solution_request(), network_moderator)

    with pytest.raises(PermissionDeniedException):
        await lifecycle.rate_solution(rating_request(), network_moderator)
    stranger = User(id="user-2", email="bob@example.com", role=UserRole.USER)
    with pytest.raises(PermissionDeniedException):
        await lifecycle.rate_solution(rating_request(), stranger)

    await lifecycle.rate_solution(rating_request(), customer)
    with pytest.raises(ConflictException):
        await lifecycle.rate_solution(rating_request(), customer)


async def test_rate_solution_retry_finishes_stored_rating(
    lifecycle, assigned_ticket, network_moderator, customer, solutions, ratings, publisher
):
    solution = await lifecycle.submit_solution(solution_request(), network_moderator)
    solutions.fail_next("update")
    with pytest.raises(RepositoryUnavailableException):
        await lifecycle.rate_solution(rating_request(rating=1, was_helpful=False), customer)

    assert len(ratings.ratings) == 1
    assert solutions.solutions[solution.id].effectiveness == Effectiveness.PENDING

    rating = await lifecycle.rate_solution(rating_request(), customer)
    assert list(ratings.ratings) == [rating.id]
    assert rating.rating == 1
    assert solutions.solutions[solution.id].effectiveness == Effectiveness.NOT_HELPFUL
    assert publisher.names() == ["solution/submitted", "solution/rated"]

    with pytest.raises(ConflictException):
        await lifecycle.rate_solution(rating_request(), customer)


async def test_solution_stats_merge_ratings(
    lifecycle, assigned_ticket, network_moderator, customer
):
    await lifecycle.submit_solution(solution_request(), network_moderator)
    await lifecycle.rate_solution(rating_request(), customer)

    stats = await lifecycle.get_solution_stats(moderator_id=network_moderator.id)
    assert stats.total_solutions == 1
    assert stats.easy_solutions == 1
    assert stats.helpful_solutions == 1
    assert stats.total_ratings == 1
    assert stats.average_rating == 5.0
    assert stats.average_completeness == 4.0


async def test_assign_if_unassigned_is_conditional(
    lifecycle, open_ticket, network_moderator, db_moderator, tickets
):
    assert await lifecycle.assign_if_unassigned(open_ticket.id, network_moderator.id)
    assert not await lifecycle.assign_if_unassigned(open_ticket.id, db_moderator.id)
    assert tickets.tickets[open_ticket.id].assigned_to == network_moderator.id


async def test_start_progress_only_from_open(lifecycle, open_ticket, tickets):
    assert await lifecycle.start_progress(open_ticket.id)
    assert tickets.tickets[open_ticket.id].status == TicketStatus.IN_PROGRESS
    assert not await lifecycle.start_progress(open_ticket.id)
