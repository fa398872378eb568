"""Tests for the notification dispatcher and email templates."""

import pytest

from fakes import RecordingMailTransport
from ticketflow.notifications.application import NotificationDispatcher
from ticketflow.notifications.domain import Recipient, TemplateKind, render

UNASSIGNED = {"ticket_title": "Printer on fire"}


async def test_every_recipient_attempted_despite_failures():
    transport = RecordingMailTransport(raise_for=("b@example.com",), reject_for=("c@example.com",))
    dispatcher = NotificationDispatcher(transport)

    report = await dispatcher.notify([
        Recipient("a@example.com", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
        Recipient("b@example.com", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
        Recipient("c@example.com", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
        Recipient("d@example.com", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
    ])

    assert report.attempted == 4
    assert report.succeeded == 2
    assert [m[0] for m in transport.sent] == ["a@example.com", "d@example.com"]
    errors = {r.address: r.error for r in report.failures}
    assert errors["b@example.com"].startswith("ConnectionError")
    assert errors["c@example.com"] == "Transport rejected message"


async def test_template_error_isolated_to_one_recipient():
    transport = RecordingMailTransport()
    report = await NotificationDispatcher(transport).notify([
        Recipient("a@example.com", TemplateKind.SOLUTION_READY, {}),
        Recipient("b@example.com", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
    ])
    assert report.failed == 1
    assert report.failures[0].address == "a@example.com"
    assert report.failures[0].error.startswith("KeyError")
    assert transport.to("b@example.com")


async def test_missing_address_fails_without_sending():
    transport = RecordingMailTransport()
    report = await NotificationDispatcher(transport).notify([
        Recipient("", TemplateKind.TICKET_UNASSIGNED, UNASSIGNED),
    ])
    assert not report.all_succeeded
    assert report.failures[0].error == "Recipient has no address"
    assert transport.sent == []


async def test_empty_recipient_list():
    report = await NotificationDispatcher(RecordingMailTransport()).notify([])
    assert report.attempted == 0
    assert report.all_succeeded


def test_every_template_kind_renders():
    data = {
        "ticket_id": "t-1",
        "ticket_title": "VPN down",
        "priority": "high",
        "skills": ["Networking"],
        "old_status": "OPEN",
        "new_status": "RESOLVED",
        "moderator_email": "mod@example.com",
        "user_email": "user@example.com",
        "time_to_resolve_hours": 3,
        "rating": 2,
    }
    for kind in TemplateKind:
        message = render(kind, data)
        assert message.subject
        assert message.body


@pytest.mark.parametrize("audience,subject", [
    ("creator", "Ticket Status Update: VPN down"),
    ("assignee", "Ticket Status Changed: VPN down"),
])
def test_status_change_subject_depends_on_audience(audience, subject):
    message = render(TemplateKind.TICKET_STATUS_CHANGED, {
        "ticket_title": "VPN down",
        "old_status": "OPEN",
        "new_status": "IN_PROGRESS",
        "audience": audience,
    })
    assert message.subject == subject


def test_low_rating_alert_lists_issues():
    message = render(TemplateKind.LOW_RATING_ADMIN_ALERT, {
        "ticket_id": "t-9",
        "ticket_title": "VPN down",
        "rating": 1,
        "was_helpful": False,
        "issue_resolved": False,
        "additional_help_needed": True,
        "additional_help_description": "Still broken on macOS",
    })
    assert message.subject == "Action Required: Low Rating - Ticket t-9"
    assert "- Solution marked as not helpful" in message.body
    assert "- User requested additional help" in message.body
    assert "Still broken on macOS" in message.body


def test_help_request_alert_subject():
    message = render(TemplateKind.LOW_RATING_ADMIN_ALERT, {
        "ticket_id": "t-9", "ticket_title": "VPN down", "rating": 4,
        "was_helpful": True, "issue_resolved": True, "additional_help_needed": True,
    })
    assert message.subject == "Action Required: Additional Help - Ticket t-9"


def test_reassigned_includes_notes_excerpt():
    message = render(TemplateKind.TICKET_REASSIGNED, {
        "ticket_title": "VPN down", "priority": "high", "skills": [],
        "notes_excerpt": "Check the gateway",
    })
    assert "AI Analysis: Check the gateway" in message.body
    assert "Skills Required: General Support" in message.body


def test_anonymous_feedback_label():
    message = render(TemplateKind.SOLUTION_RATED_MODERATOR_NOTICE, {
        "ticket_title": "VPN down", "rating": 5, "feedback": "Great",
        "is_anonymous": True, "categories": {"clarity": 5, "timeliness": 4},
    })
    assert message.subject == "Your solution has been rated: 5/5 stars"
    assert 'Anonymous Feedback: "Great"' in message.body
    assert "- Clarity: 5/5" in message.body
    assert "Helpfulness" not in message.body
