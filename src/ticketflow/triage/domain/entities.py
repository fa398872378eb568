"""
Triage Domain Entities
======================

Domain entities for ticket triage.

Contains the classifier's normalized result, the deterministic fallback
and the prompt used to ask the LLM for a classification.
"""

from dataclasses import dataclass, field
from typing import List

from ticketflow.config import GENERAL_SUPPORT_SKILL, Priority

MANUAL_REVIEW_FLAG = "Manual review required"


@dataclass(frozen=True)
class TriageResult:
    """
    Normalized output of the triage classifier.

    ``is_fallback`` marks results produced without a usable classifier
    answer; they are still valid input for the rest of the pipeline.
    """
    priority: Priority
    notes: str
    skills: List[str] = field(default_factory=list)
    summary: str = ""
    is_fallback: bool = False

    @property
    def is_general_support(self) -> bool:
        """True when the skills carry no routing information."""
        return not self.skills or [s.lower() for s in self.skills] == [GENERAL_SUPPORT_SKILL.lower()]

    @classmethod
    def fallback(cls, title: str = "", description: str = "") -> "TriageResult":
        """Deterministic result used whenever classification fails."""
        return cls(
            priority=Priority.MEDIUM,
            notes=(
                f"{MANUAL_REVIEW_FLAG}: automatic triage was unavailable. "
                f"Original description: {description or 'No description provided'}. "
                "Please assign to appropriate technical staff."
            ),
            skills=[GENERAL_SUPPORT_SKILL],
            summary=f"Issue with {title or 'support request'}",
            is_fallback=True,
        )


class ClassificationPromptBuilder:
    """
    Builds prompts for ticket triage.

    Following DRY principle - all prompt logic in one place.
    """

    SYSTEM_PROMPT = """You are an expert AI assistant that processes technical support tickets.

Your job is to:
1. Summarize the issue.
2. Estimate its priority.
3. Provide helpful notes and resource links for human moderators.
4. List relevant technical skills required.

PRIORITY LEVELS:
- high: Production down, data loss, security incident, many users blocked
- medium: Feature broken with a workaround, single user blocked
- low: Questions, how-to requests, cosmetic issues

Respond ONLY with a JSON object, no markdown and no explanations:
{
    "summary": "Brief summary of the issue",
    "priority": "low|medium|high",
    "helpfulNotes": "Detailed technical explanation with helpful resources",
    "relatedSkills": ["skill1", "skill2"]
}"""

    @classmethod
    def build_prompt(cls, title: str, description: str) -> str:
        """Build triage prompt from ticket content."""
        return f"""Title: {title or 'No title'}

Description:
{description or 'No description'}

Analyze this support ticket (respond with JSON only):"""

    @classmethod
    def get_system_prompt(cls) -> str:
        return cls.SYSTEM_PROMPT

    @classmethod
    def build_messages(cls, title: str, description: str) -> List[dict]:
        return [
            {"role": "system", "content": cls.get_system_prompt()},
            {"role": "user", "content": cls.build_prompt(title, description)},
        ]
