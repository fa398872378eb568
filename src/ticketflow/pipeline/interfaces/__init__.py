"""
Pipeline Interfaces Layer
=========================

HTTP ingress for pipeline events.
"""

from ticketflow.pipeline.interfaces.controllers import pipeline_router

__all__ = ["pipeline_router"]
