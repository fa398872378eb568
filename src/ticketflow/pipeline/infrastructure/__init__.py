"""
Pipeline Infrastructure Layer
=============================

Event delivery.
"""

from ticketflow.pipeline.infrastructure.bus import InProcessEventBus

__all__ = ["InProcessEventBus"]
