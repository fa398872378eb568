"""
TicketFlow - Main Application
=============================

Ticket processing pipeline service.

Modules:
- Tickets: lifecycle commands, persistence and reports
- Triage: LLM classification and moderator matching
- Notifications: templated email dispatch
- Pipeline: event bus, step runner and per-event handlers

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, mail
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ticketflow.config import Settings, get_settings
from ticketflow.container import ServiceContainer
from ticketflow.core import ApplicationException
from ticketflow.pipeline.interfaces import pipeline_router
from ticketflow.shared.api import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from ticketflow.shared.infrastructure.logging import get_logger, setup_logging
from ticketflow.tickets.interfaces import reports_router

logger = get_logger(__name__)

ContainerFactory = Callable[[Settings], ServiceContainer]


def create_app(
    settings: Optional[Settings] = None,
    container_factory: Optional[ContainerFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use, defaults to ``get_settings()``
        container_factory: Builds the service container (tests inject fakes)
    """
    settings = settings or get_settings()
    container_factory = container_factory or ServiceContainer

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        STARTUP: logging, then clients and services.
        SHUTDOWN: drain pipeline runs, close clients.
        """
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting TicketFlow", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        container = container_factory(settings)
        await container.start()
        app.state.container = container

        yield  # Application runs here

        logger.info("Shutting down TicketFlow")
        await container.stop()
        logger.info("TicketFlow shutdown complete")

    app = FastAPI(
        title="TicketFlow API",
        description="Event-driven ticket triage, assignment and notification pipeline.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = settings

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # LoggingMiddleware reads the correlation id, so it must run inside CorrelationIDMiddleware
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(pipeline_router)
    app.include_router(reports_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports the configured LLM provider, mail transport, metrics exporter
        and the number of pipeline runs in flight.
        """
        container: Optional[ServiceContainer] = getattr(request.app.state, "container", None)
        if container is None or not container.started:
            return {"status": "starting", "version": settings.app_version}

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {
                "llm_client": settings.llm_provider,
                "mail_transport": type(container.mail_transport).__name__,
                "metrics": "enabled" if container.metrics.is_enabled() else "disabled",
                "pipeline_in_flight": container.event_bus.in_flight,
            }
        }

    return app


def run() -> None:
    """Development entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ticketflow.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
