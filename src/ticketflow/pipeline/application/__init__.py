"""
Pipeline Application Layer
==========================

Step runner and event orchestrator.
"""

from ticketflow.pipeline.application.runner import (
    StepStatus,
    StepOutcome,
    PipelineRunReport,
    StepRunner,
)
from ticketflow.pipeline.application.orchestrator import PipelineOrchestrator, notes_excerpt

__all__ = [
    "StepStatus",
    "StepOutcome",
    "PipelineRunReport",
    "StepRunner",
    "PipelineOrchestrator",
    "notes_excerpt",
]
