"""
Shared API
==========

Middleware and exception handlers shared by all routers.
"""

from ticketflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
    status_code_for,
)

__all__ = [
    "CorrelationIDMiddleware",
    "LoggingMiddleware",
    "application_exception_handler",
    "global_exception_handler",
    "status_code_for",
]
