"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ticketflow.config import (
    Difficulty, Effectiveness, Priority, TicketStatus, UserRole, STAFF_ROLES
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class User:
    """User record owned by the account service (read-only here)."""
    id: str
    email: str
    role: UserRole
    skills: List[str] = field(default_factory=list)

    @property
    def is_staff(self) -> bool:
        """Moderators and admins act on tickets, users file them."""
        return self.role in STAFF_ROLES


@dataclass
class Comment:
    """One entry of a ticket's append-only comment thread."""
    text: str
    author_id: str
    created_at: datetime = field(default_factory=utcnow)
    is_internal: bool = False


@dataclass
class Ticket:
    """
    Ticket entity representing one support request.

    Timestamps completed_at, assigned_at and first_response_at are sticky:
    once set they are never overwritten, even if the ticket is reopened or
    reassigned.
    """

    id: str
    title: str
    description: str
    created_by: str
    status: TicketStatus = TicketStatus.OPEN
    priority: Optional[Priority] = None

    assigned_to: Optional[str] = None
    required_skills: List[str] = field(default_factory=list)
    triage_notes: str = ""

    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)
    last_updated_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None

    comments: List[Comment] = field(default_factory=list)
    solution_id: Optional[str] = None

    # Satisfaction bookkeeping written by the rating pipeline
    satisfaction_rating: Optional[int] = None
    is_rated: bool = False
    rating_id: Optional[str] = None
    needs_follow_up: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.status == TicketStatus.RESOLVED

    @property
    def time_to_completion_days(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        delta = as_utc(self.completed_at) - as_utc(self.created_at)
        return int(delta.total_seconds() // 86400)

    @property
    def time_to_first_response_hours(self) -> Optional[int]:
        if self.first_response_at is None:
            return None
        delta = as_utc(self.first_response_at) - as_utc(self.created_at)
        return int(delta.total_seconds() // 3600)

    @property
    def response_time_category(self) -> str:
        """Bucket the first-response time: pending, excellent, good, average, slow."""
        hours = self.time_to_first_response_hours
        if hours is None:
            return "pending"
        if hours <= 2:
            return "excellent"
        if hours <= 8:
            return "good"
        if hours <= 24:
            return "average"
        return "slow"


@dataclass
class SolutionStep:
    """One step of a solution's step-by-step guide."""
    description: str
    code_example: str = ""
    notes: str = ""


@dataclass
class SolutionResource:
    """Additional reading attached to a solution."""
    title: str
    url: str
    description: str = ""


@dataclass
class Solution:
    """
    Solution entity, one-to-one with a resolved ticket.
    """

    id: str
    ticket_id: str
    moderator_id: str
    body: str
    steps: List[SolutionStep] = field(default_factory=list)
    resources: List[SolutionResource] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    effectiveness: Effectiveness = Effectiveness.PENDING
    time_to_resolve_hours: int = 0
    moderator_notes: str = ""
    follow_up_required: bool = False
    follow_up_notes: str = ""
    user_feedback: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class CategoryRatings:
    """Per-category scores, each 1-5."""
    clarity: int
    helpfulness: int
    completeness: int
    timeliness: int

    @property
    def average(self) -> float:
        total = self.clarity + self.helpfulness + self.completeness + self.timeliness
        return round(total / 4, 1)


@dataclass
class Rating:
    """
    A user's rating of the solution to their ticket.

    Unique per (ticket_id, user_id).
    """

    id: str
    ticket_id: str
    solution_id: str
    user_id: str
    moderator_id: str
    rating: int
    categories: CategoryRatings
    was_helpful: bool
    issue_resolved: bool
    would_recommend: bool = False
    feedback: str = ""
    improvement_suggestions: str = ""
    additional_help_needed: bool = False
    additional_help_description: str = ""
    is_anonymous: bool = False
    created_at: datetime = field(default_factory=utcnow)

    @property
    def category_average(self) -> float:
        return self.categories.average

    @property
    def needs_follow_up(self) -> bool:
        """Ticket needs follow-up if unresolved or the user asked for more help."""
        return not self.issue_resolved or self.additional_help_needed

    @property
    def needs_admin_attention(self) -> bool:
        return (
            self.rating <= 2
            or not self.was_helpful
            or not self.issue_resolved
            or self.additional_help_needed
        )


@dataclass
class TicketStats:
    """Aggregate counts over tickets."""
    total: int = 0
    open: int = 0
    in_progress: int = 0
    resolved: int = 0
    high_priority: int = 0
    medium_priority: int = 0
    low_priority: int = 0


@dataclass
class SolutionStats:
    """Aggregate solution and rating figures."""
    total_solutions: int = 0
    average_time_to_resolve_hours: float = 0.0
    easy_solutions: int = 0
    medium_solutions: int = 0
    hard_solutions: int = 0
    helpful_solutions: int = 0
    partially_helpful_solutions: int = 0
    not_helpful_solutions: int = 0
    total_ratings: int = 0
    average_rating: float = 0.0
    average_clarity: float = 0.0
    average_helpfulness: float = 0.0
    average_completeness: float = 0.0
    average_timeliness: float = 0.0
