"""
Email Templates
===============

Plain-text subject/body rendering, one function per template kind.

A missing required key raises KeyError; the dispatcher records that as a
failed delivery for the one recipient.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from ticketflow.config import TicketStatus
from ticketflow.notifications.domain.entities import TemplateKind


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


STATUS_LABELS: Dict[TicketStatus, str] = {
    TicketStatus.OPEN: "Open - waiting for a moderator",
    TicketStatus.IN_PROGRESS: "In progress - a moderator is working on it",
    TicketStatus.RESOLVED: "Resolved",
}

RATING_LABELS = {1: "Very Poor", 2: "Poor", 3: "Fair", 4: "Good", 5: "Excellent"}


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def _skills(data: Mapping[str, Any]) -> str:
    return ", ".join(data.get("skills") or []) or "General Support"


def _status_label(value: Any) -> str:
    status = TicketStatus(value)
    if status not in STATUS_LABELS:
        raise ValueError(f"Unhandled ticket status: {status!r}")
    return STATUS_LABELS[status]


def _lines(*parts: str) -> str:
    """Join non-empty paragraphs with blank lines."""
    return "\n\n".join(part for part in parts if part)


def _ticket_assigned(data: Mapping[str, Any]) -> RenderedMessage:
    return RenderedMessage(
        subject="New Ticket Assigned",
        body=_lines(
            "A new support ticket has been assigned to you.",
            f"Title: {data['ticket_title']}\n"
            f"Priority: {data.get('priority') or 'medium'}\n"
            f"Skills Required: {_skills(data)}",
            "Please log in to the system to view full details.",
        ),
    )


def _ticket_status_changed(data: Mapping[str, Any]) -> RenderedMessage:
    title = data["ticket_title"]
    new_status = TicketStatus(data["new_status"])
    updated_by = data.get("updated_by_email") or "support team"

    if data.get("audience") == "assignee":
        return RenderedMessage(
            subject=f"Ticket Status Changed: {title}",
            body=_lines(
                "Hello,",
                "A ticket assigned to you has been updated:",
                f"Ticket: {title}\n"
                f"Status: {TicketStatus(data['old_status']).value} -> {new_status.value}\n"
                f"Updated by: {updated_by}",
                "Please review the ticket for any additional actions needed.",
            ),
        )

    if new_status == TicketStatus.RESOLVED:
        closing = "Your issue has been resolved. If you need further assistance, please create a new ticket."
    else:
        closing = "You can view the full details by logging into your account."
    return RenderedMessage(
        subject=f"Ticket Status Update: {title}",
        body=_lines(
            "Hello,",
            "Your support ticket has been updated:",
            f"Ticket: {title}\n"
            f"Status: {_status_label(new_status)}\n"
            f"Updated by: {updated_by}",
            closing,
            "Thank you for using our support system!",
        ),
    )


def _ticket_reassigned(data: Mapping[str, Any]) -> RenderedMessage:
    excerpt = data.get("notes_excerpt") or ""
    return RenderedMessage(
        subject=f"New Ticket Assigned: {data['ticket_title']}",
        body=_lines(
            "Hello,",
            "A support ticket has been assigned to you:",
            f"Ticket: {data['ticket_title']}\n"
            f"Priority: {data.get('priority') or 'medium'}\n"
            f"Skills Required: {_skills(data)}",
            f"AI Analysis: {excerpt}" if excerpt else "",
            "Please log in to view full details and start working on this ticket.",
        ),
    )


def _ticket_unassigned(data: Mapping[str, Any]) -> RenderedMessage:
    return RenderedMessage(
        subject=f"Ticket Reassigned: {data['ticket_title']}",
        body=_lines(
            "Hello,",
            "A ticket previously assigned to you has been reassigned:",
            f"Ticket: {data['ticket_title']}\n"
            "Status: No longer assigned to you",
            "You are no longer responsible for this ticket.",
        ),
    )


def _solution_ready(data: Mapping[str, Any]) -> RenderedMessage:
    title = data["ticket_title"]
    return RenderedMessage(
        subject=f"Solution Ready: {title}",
        body=_lines(
            "Hello,",
            "Great news! A solution has been provided for your support ticket.",
            f"Ticket: {title}\n"
            f"Solved by: {data.get('moderator_email') or 'our support team'}\n"
            f"Solution difficulty: {data.get('difficulty', 'medium')}\n"
            f"Time to resolve: {data['time_to_resolve_hours']} hours",
            "Please log in to your account to view the complete solution and rate it.",
            "Thank you for using our support system!",
        ),
    )


def _solution_rated_thankyou(data: Mapping[str, Any]) -> RenderedMessage:
    if data.get("additional_help_needed"):
        follow_up = (
            "We've noted that you need additional help. Our team will review "
            "your request and may reach out to you soon."
        )
    else:
        follow_up = "We're glad we could help resolve your issue!"
    feedback = data.get("feedback") or ""
    return RenderedMessage(
        subject="Thank you for rating our solution!",
        body=_lines(
            "Hello,",
            f'Thank you for taking the time to rate the solution for your ticket "{data["ticket_title"]}".',
            f"Your rating: {data['rating']}/5 stars\n"
            f"Was helpful: {_yes_no(data.get('was_helpful'))}\n"
            f"Issue resolved: {_yes_no(data.get('issue_resolved'))}",
            follow_up,
            f'Your feedback: "{feedback}"' if feedback else "",
        ),
    )


def _solution_rated_moderator_notice(data: Mapping[str, Any]) -> RenderedMessage:
    rating = int(data["rating"])
    categories = data.get("categories") or {}
    feedback = data.get("feedback") or ""
    if feedback:
        label = "Anonymous Feedback" if data.get("is_anonymous") else "User Feedback"
        feedback_line = f'{label}: "{feedback}"'
    else:
        feedback_line = "No additional feedback provided."
    suggestions = data.get("improvement_suggestions") or ""

    return RenderedMessage(
        subject=f"Your solution has been rated: {rating}/5 stars",
        body=_lines(
            f"Hello {data['moderator_email']}," if data.get("moderator_email") else "Hello,",
            f'The user has rated your solution for ticket "{data["ticket_title"]}".',
            "Rating Details:\n"
            f"- Overall Rating: {rating}/5 stars ({RATING_LABELS.get(rating, '')})\n"
            f"- Was Helpful: {_yes_no(data.get('was_helpful'))}\n"
            f"- Issue Resolved: {_yes_no(data.get('issue_resolved'))}\n"
            f"- Would Recommend: {_yes_no(data.get('would_recommend'))}",
            "Category Ratings:\n" + "\n".join(
                f"- {name.title()}: {categories[name]}/5"
                for name in ("clarity", "helpfulness", "completeness", "timeliness")
                if name in categories
            ) if categories else "",
            feedback_line,
            f'Improvement Suggestions: "{suggestions}"' if suggestions else "",
            "Note: The user has requested additional help with this issue."
            if data.get("additional_help_needed") else "",
        ),
    )


def _low_rating_admin_alert(data: Mapping[str, Any]) -> RenderedMessage:
    rating = int(data["rating"])
    issues = []
    if rating <= 2:
        issues.append("- Low rating received")
    if not data.get("was_helpful", True):
        issues.append("- Solution marked as not helpful")
    if not data.get("issue_resolved", True):
        issues.append("- Issue not resolved")
    if data.get("additional_help_needed"):
        issues.append("- User requested additional help")
    help_description = data.get("additional_help_description") or ""

    return RenderedMessage(
        subject=(
            f"Action Required: {'Low Rating' if rating <= 2 else 'Additional Help'}"
            f" - Ticket {data['ticket_id']}"
        ),
        body=_lines(
            "Admin Alert,",
            "A ticket requires attention:",
            f"Ticket: {data['ticket_title']}\n"
            f"Moderator: {data.get('moderator_email') or 'unknown'}\n"
            f"User: {data.get('user_email') or 'unknown'}\n"
            f"Rating: {rating}/5 stars",
            "Issues:\n" + "\n".join(issues) if issues else "",
            f'Additional help needed: "{help_description}"' if help_description else "",
            "Please review this ticket and consider following up with the user "
            "or providing additional guidance to the moderator.",
        ),
    )


_RENDERERS: Dict[TemplateKind, Callable[[Mapping[str, Any]], RenderedMessage]] = {
    TemplateKind.TICKET_ASSIGNED: _ticket_assigned,
    TemplateKind.TICKET_STATUS_CHANGED: _ticket_status_changed,
    TemplateKind.TICKET_REASSIGNED: _ticket_reassigned,
    TemplateKind.TICKET_UNASSIGNED: _ticket_unassigned,
    TemplateKind.SOLUTION_READY: _solution_ready,
    TemplateKind.SOLUTION_RATED_THANKYOU: _solution_rated_thankyou,
    TemplateKind.SOLUTION_RATED_MODERATOR_NOTICE: _solution_rated_moderator_notice,
    TemplateKind.LOW_RATING_ADMIN_ALERT: _low_rating_admin_alert,
}

_missing = set(TemplateKind) - set(_RENDERERS)
if _missing:
    raise RuntimeError(f"No renderer for template kinds: {sorted(k.value for k in _missing)}")


def render(kind: TemplateKind, data: Mapping[str, Any]) -> RenderedMessage:
    """
    Render one template.

    Raises:
        ValueError: unknown template kind
        KeyError: required template data missing
    """
    return _RENDERERS[TemplateKind(kind)](data)
