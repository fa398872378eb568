"""
Triage Domain Layer
===================

Triage result, fallback and classification prompt.
"""

from ticketflow.triage.domain.entities import (
    MANUAL_REVIEW_FLAG,
    TriageResult,
    ClassificationPromptBuilder,
)

__all__ = [
    "MANUAL_REVIEW_FLAG",
    "TriageResult",
    "ClassificationPromptBuilder",
]
