"""Shared pytest fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from fakes import (
    InMemoryRatingRepository,
    InMemorySolutionRepository,
    InMemoryTicketRepository,
    InMemoryUserRepository,
    RecordingMailTransport,
    RecordingPublisher,
    ScriptedLLMClient,
)
from ticketflow.config import Settings, TicketStatus, UserRole
from ticketflow.notifications.application import NotificationDispatcher
from ticketflow.pipeline.application import PipelineOrchestrator
from ticketflow.tickets.application import TicketLifecycleService
from ticketflow.tickets.domain import Ticket, User
from ticketflow.triage.application import ModeratorMatcher, TriageClassifierAdapter

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

TRIAGE_ANSWER = (
    '{"summary": "VPN login times out", "priority": "high", '
    '"helpfulNotes": "Check the VPN gateway certificate.", '
    '"relatedSkills": ["Networking", "VPN"]}'
)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        llm_provider="mock",
        mock_mail=True,
        step_retry_backoff_seconds=0,
    )


@pytest.fixture
def customer() -> User:
    return User(id="user-1", email="alice@example.com", role=UserRole.USER)


@pytest.fixture
def network_moderator() -> User:
    return User(
        id="mod-net", email="nina@example.com", role=UserRole.MODERATOR,
        skills=["Networking", "Linux"],
    )


@pytest.fixture
def db_moderator() -> User:
    return User(
        id="mod-db", email="dan@example.com", role=UserRole.MODERATOR,
        skills=["PostgreSQL Databases"],
    )


@pytest.fixture
def admin() -> User:
    return User(id="admin-1", email="root@example.com", role=UserRole.ADMIN)


@pytest.fixture
def users(customer, db_moderator, network_moderator, admin) -> InMemoryUserRepository:
    return InMemoryUserRepository([customer, db_moderator, network_moderator, admin])


@pytest.fixture
def tickets() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def solutions() -> InMemorySolutionRepository:
    return InMemorySolutionRepository()


@pytest.fixture
def ratings() -> InMemoryRatingRepository:
    return InMemoryRatingRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def mail() -> RecordingMailTransport:
    return RecordingMailTransport()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def llm() -> ScriptedLLMClient:
    return ScriptedLLMClient(TRIAGE_ANSWER)


@pytest.fixture
def lifecycle(tickets, solutions, ratings, users, publisher, clock) -> TicketLifecycleService:
    counter = iter(range(1, 10_000))
    return TicketLifecycleService(
        tickets=tickets,
        solutions=solutions,
        ratings=ratings,
        users=users,
        publisher=publisher,
        clock=clock,
        id_factory=lambda: f"id-{next(counter)}",
    )


@pytest.fixture
def make_orchestrator(lifecycle, tickets, solutions, ratings, users, mail):
    """Build an orchestrator around the shared fakes; the LLM client varies per test."""

    def factory(llm_client, max_retries: int = 2, classifier_timeout: float = 5.0):
        return PipelineOrchestrator(
            lifecycle=lifecycle,
            tickets=tickets,
            solutions=solutions,
            ratings=ratings,
            users=users,
            classifier=TriageClassifierAdapter(llm_client, timeout_seconds=classifier_timeout),
            matcher=ModeratorMatcher(users),
            dispatcher=NotificationDispatcher(mail),
            max_retries=max_retries,
            backoff_seconds=0,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator, llm) -> PipelineOrchestrator:
    return make_orchestrator(llm)


@pytest.fixture
def open_ticket(tickets, customer) -> Ticket:
    ticket = Ticket(
        id="t-1",
        title="Cannot connect to VPN",
        description="The VPN client times out on login since this morning.",
        created_by=customer.id,
        status=TicketStatus.OPEN,
        created_at=NOW,
        last_updated_at=NOW,
    )
    tickets.tickets[ticket.id] = ticket
    return ticket
