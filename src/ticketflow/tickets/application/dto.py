"""
Tickets Application DTOs
========================

Data Transfer Objects for the ticket lifecycle commands and reports.

Pydantic models for request/response validation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ticketflow.config import Difficulty


# ========== Request DTOs ==========

class CreateTicketRequest(BaseModel):
    """Request model for filing a ticket."""
    title: str = Field(..., min_length=1, max_length=200, description="Ticket title")
    description: str = Field(..., min_length=1, max_length=2000, description="Ticket description")

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Reject whitespace-only text."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CommentRequest(BaseModel):
    """Request model for appending a comment to a ticket."""
    text: str = Field(..., min_length=1, max_length=1000)
    is_internal: bool = Field(default=False, description="Visible to staff only")


class SolutionStepInput(BaseModel):
    description: str = Field(..., min_length=1, max_length=1000)
    code_example: str = Field(default="", max_length=2000)
    notes: str = Field(default="", max_length=500)


class SolutionResourceInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    url: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=300)


class SubmitSolutionRequest(BaseModel):
    """Request model for a moderator submitting a solution."""
    ticket_id: str = Field(..., min_length=1)
    body: str = Field(..., min_length=10, max_length=5000, description="Solution text")
    steps: List[SolutionStepInput] = Field(default_factory=list)
    resources: List[SolutionResourceInput] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    moderator_notes: str = Field(default="", max_length=1000)
    follow_up_required: bool = False
    follow_up_notes: str = Field(default="", max_length=500)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        """Lowercase, strip and de-duplicate tags keeping first-seen order."""
        seen = []
        for tag in v:
            tag = tag.strip().lower()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class CategoryRatingsInput(BaseModel):
    clarity: int = Field(..., ge=1, le=5)
    helpfulness: int = Field(..., ge=1, le=5)
    completeness: int = Field(..., ge=1, le=5)
    timeliness: int = Field(..., ge=1, le=5)


class RateSolutionRequest(BaseModel):
    """Request model for a user rating the solution to their ticket."""
    ticket_id: str = Field(..., min_length=1, description="Ticket whose solution is rated")
    rating: int = Field(..., ge=1, le=5, description="Overall rating")
    categories: CategoryRatingsInput
    was_helpful: bool
    issue_resolved: bool
    would_recommend: bool = False
    feedback: str = Field(default="", max_length=1000)
    improvement_suggestions: str = Field(default="", max_length=500)
    additional_help_needed: bool = False
    additional_help_description: str = Field(default="", max_length=500)
    is_anonymous: bool = False


# ========== Response DTOs ==========

class TicketStatsResponse(BaseModel):
    """Aggregate ticket counts."""
    total: int
    open: int
    in_progress: int
    resolved: int
    high_priority: int
    medium_priority: int
    low_priority: int


class SolutionStatsResponse(BaseModel):
    """Aggregate solution and rating figures."""
    total_solutions: int
    average_time_to_resolve_hours: float
    easy_solutions: int
    medium_solutions: int
    hard_solutions: int
    helpful_solutions: int
    partially_helpful_solutions: int
    not_helpful_solutions: int
    total_ratings: int
    average_rating: float
    average_clarity: float
    average_helpfulness: float
    average_completeness: float
    average_timeliness: float
    moderator_id: Optional[str] = None
