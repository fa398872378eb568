"""
Tickets Infrastructure Models
=============================

SQLAlchemy ORM models for tickets, comments, solutions, ratings and users.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketflow.config import (
    Difficulty, Effectiveness, Priority, TicketStatus, UserRole
)
from ticketflow.infrastructure.database import Base
from ticketflow.tickets.domain import utcnow


class UserModel(Base):
    """
    Database model for users.

    Owned by the account service; this system only reads it.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False, index=True)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class TicketModel(Base):
    """
    Database model for the Ticket entity.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        String(20), nullable=False, default=TicketStatus.OPEN, index=True
    )
    priority: Mapped[Optional[Priority]] = mapped_column(String(10), nullable=True)

    created_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    required_skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    triage_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    solution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Satisfaction
    satisfaction_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_rated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rating_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    needs_follow_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    comments: Mapped[List["CommentModel"]] = relationship(
        back_populates="ticket",
        order_by="CommentModel.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class CommentModel(Base):
    """Append-only comment thread entry."""
    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    ticket: Mapped[TicketModel] = relationship(back_populates="comments")


class SolutionModel(Base):
    """
    Database model for the Solution entity.

    The unique ticket_id constraint is what makes a second solution for a
    ticket impossible, even under concurrent submissions.
    """
    __tablename__ = "solutions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    moderator_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    resources: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    difficulty: Mapped[Difficulty] = mapped_column(String(10), nullable=False)
    effectiveness: Mapped[Effectiveness] = mapped_column(
        String(20), nullable=False, default=Effectiveness.PENDING
    )
    time_to_resolve_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    moderator_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    follow_up_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    follow_up_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class RatingModel(Base):
    """Database model for the Rating entity, unique per (ticket, user)."""
    __tablename__ = "ratings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    solution_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("solutions.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    moderator_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    clarity: Mapped[int] = mapped_column(Integer, nullable=False)
    helpfulness: Mapped[int] = mapped_column(Integer, nullable=False)
    completeness: Mapped[int] = mapped_column(Integer, nullable=False)
    timeliness: Mapped[int] = mapped_column(Integer, nullable=False)
    was_helpful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    issue_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    would_recommend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    improvement_suggestions: Mapped[str] = mapped_column(Text, nullable=False, default="")
    additional_help_needed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    additional_help_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_rating_ticket_user"),
    )
