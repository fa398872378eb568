"""
Service Container
=================

Builds and owns every client and service of the application.

Clients are created in ``start()`` and released in ``stop()``, both called
from the FastAPI lifespan. Anything passed to the constructor is used as is
and left for the caller to close (tests inject fakes this way).
"""

from typing import Optional

from ticketflow.config import Settings
from ticketflow.infrastructure.database import Database
from ticketflow.infrastructure.llm import ILLMClient, build_llm_client
from ticketflow.infrastructure.mail import IMailTransport, build_mail_transport
from ticketflow.notifications.application import NotificationDispatcher
from ticketflow.pipeline.application import PipelineOrchestrator
from ticketflow.pipeline.infrastructure import InProcessEventBus
from ticketflow.shared.infrastructure.logging import get_logger
from ticketflow.shared.infrastructure.metrics import PipelineMetricsExporter
from ticketflow.tickets.application import (
    IRatingRepository,
    ISolutionRepository,
    ITicketRepository,
    IUserRepository,
    TicketLifecycleService,
)
from ticketflow.tickets.infrastructure import (
    SQLAlchemyRatingRepository,
    SQLAlchemySolutionRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserRepository,
)
from ticketflow.triage.application import ModeratorMatcher, TriageClassifierAdapter

logger = get_logger(__name__)


class ServiceContainer:
    """Wires repositories, clients, the lifecycle service and the pipeline."""

    def __init__(
        self,
        settings: Settings,
        database: Optional[Database] = None,
        mail_transport: Optional[IMailTransport] = None,
        llm_client: Optional[ILLMClient] = None,
        metrics: Optional[PipelineMetricsExporter] = None,
        tickets: Optional[ITicketRepository] = None,
        solutions: Optional[ISolutionRepository] = None,
        ratings: Optional[IRatingRepository] = None,
        users: Optional[IUserRepository] = None,
    ):
        self.settings = settings
        self.database = database
        self.mail_transport = mail_transport
        self.llm_client = llm_client
        self.metrics = metrics
        self.tickets = tickets
        self.solutions = solutions
        self.ratings = ratings
        self.users = users

        self._owned_database = database is None
        self._owned_mail = mail_transport is None
        self._owned_llm = llm_client is None
        self._owned_metrics = metrics is None

        self.event_bus: Optional[InProcessEventBus] = None
        self.lifecycle: Optional[TicketLifecycleService] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def _needs_database(self) -> bool:
        return any(r is None for r in (self.tickets, self.solutions, self.ratings, self.users))

    async def start(self) -> None:
        """
        Create clients and services.

        Raises:
            ConfigurationException: if the configured LLM provider lacks credentials
        """
        if self._started:
            return
        settings = self.settings

        if self.metrics is None:
            self.metrics = PipelineMetricsExporter(
                host=settings.grafana_host,
                api_key=settings.grafana_api_key,
                instance_id=settings.grafana_instance_id,
                service_name=settings.app_name,
                service_version=settings.app_version,
                environment=settings.environment,
            )

        if self._needs_database():
            if self.database is None:
                self.database = Database(
                    settings.database_url,
                    echo=settings.debug,
                    pool_size=settings.db_pool_size,
                    max_overflow=settings.db_max_overflow,
                )
            self.database.connect()
            if settings.db_create_tables:
                logger.info("Creating database tables")
                await self.database.create_tables()

            self.tickets = self.tickets or SQLAlchemyTicketRepository(self.database)
            self.solutions = self.solutions or SQLAlchemySolutionRepository(self.database)
            self.ratings = self.ratings or SQLAlchemyRatingRepository(self.database)
            self.users = self.users or SQLAlchemyUserRepository(self.database)

        if self.mail_transport is None:
            self.mail_transport = build_mail_transport(settings)
        if self.llm_client is None:
            self.llm_client = build_llm_client(settings, metrics=self.metrics)

        self.event_bus = InProcessEventBus()
        self.lifecycle = TicketLifecycleService(
            tickets=self.tickets,
            solutions=self.solutions,
            ratings=self.ratings,
            users=self.users,
            publisher=self.event_bus,
        )
        self.orchestrator = PipelineOrchestrator(
            lifecycle=self.lifecycle,
            tickets=self.tickets,
            solutions=self.solutions,
            ratings=self.ratings,
            users=self.users,
            classifier=TriageClassifierAdapter(
                self.llm_client,
                timeout_seconds=settings.classifier_timeout_seconds,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            ),
            matcher=ModeratorMatcher(self.users),
            dispatcher=NotificationDispatcher(self.mail_transport),
            metrics=self.metrics,
            max_retries=settings.step_max_retries,
            backoff_seconds=settings.step_retry_backoff_seconds,
            max_wait_seconds=settings.step_retry_max_wait_seconds,
            notes_excerpt_length=settings.notes_excerpt_length,
        )
        self.event_bus.subscribe(self.orchestrator.handle)

        self._started = True
        logger.info(
            "Service container started",
            extra={
                "llm_provider": settings.llm_provider,
                "mail_transport": type(self.mail_transport).__name__,
                "metrics_enabled": self.metrics.is_enabled(),
            }
        )

    async def stop(self) -> None:
        """Drain in-flight pipeline runs, then close owned clients."""
        if not self._started:
            return
        self._started = False

        await self.event_bus.close()
        if self._owned_llm:
            await self.llm_client.close()
        if self._owned_mail:
            await self.mail_transport.close()
        if self._owned_metrics:
            await self.metrics.close()
        if self._owned_database and self.database is not None:
            await self.database.close()
        logger.info("Service container stopped")
