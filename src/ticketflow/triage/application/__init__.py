"""
Triage Application Layer
========================

Classifier adapter and moderator matcher.
"""

from ticketflow.triage.application.services import (
    EXTRACTION_STRATEGIES,
    TriageClassifierAdapter,
    validate_payload,
)
from ticketflow.triage.application.matching import ModeratorMatcher

__all__ = [
    "EXTRACTION_STRATEGIES",
    "TriageClassifierAdapter",
    "validate_payload",
    "ModeratorMatcher",
]
