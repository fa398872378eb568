"""Tests for the outbound mail transports."""

import json

import httpx
import pytest

from ticketflow.infrastructure.mail import (
    CircuitBreaker,
    CircuitState,
    HttpMailTransport,
    LoggingMailTransport,
    build_mail_transport,
)


class MailApi:
    """httpx MockTransport handler answering with scripted status codes."""

    def __init__(self, *statuses):
        self.statuses = list(statuses) or [200]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, json={"ok": status < 400})


def make_transport(api, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    kwargs.setdefault("retry_backoff_seconds", 0)
    return HttpMailTransport(
        api_url="https://mail.example.com/send",
        api_key="secret",
        sender="help@example.com",
        http_client=client,
        **kwargs,
    )


async def test_accepted_message_is_posted_as_json():
    api = MailApi(202)
    transport = make_transport(api)

    assert await transport.send("alice@example.com", "Hello", "Body text")

    request = api.requests[0]
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {
        "from": "help@example.com",
        "to": "alice@example.com",
        "subject": "Hello",
        "text": "Body text",
    }


async def test_client_error_is_not_retried():
    api = MailApi(422)
    transport = make_transport(api, max_attempts=3)

    assert not await transport.send("alice@example.com", "Hello", "Body")
    assert len(api.requests) == 1


async def test_server_error_is_retried_until_success():
    api = MailApi(503, 200)
    transport = make_transport(api, max_attempts=3)

    assert await transport.send("alice@example.com", "Hello", "Body")
    assert len(api.requests) == 2


async def test_server_error_gives_up_after_max_attempts():
    api = MailApi(500)
    transport = make_transport(api, max_attempts=3)

    assert not await transport.send("alice@example.com", "Hello", "Body")
    assert len(api.requests) == 3


async def test_network_error_counts_as_failed_delivery():
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport = make_transport(unreachable, max_attempts=2)
    assert not await transport.send("alice@example.com", "Hello", "Body")


async def test_open_circuit_skips_the_api():
    api = MailApi(500)
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
    transport = make_transport(api, max_attempts=1, circuit_breaker=breaker)

    assert not await transport.send("a@example.com", "s", "b")
    assert not await transport.send("b@example.com", "s", "b")
    assert breaker.state == CircuitState.OPEN

    assert not await transport.send("c@example.com", "s", "b")
    assert len(api.requests) == 2


def test_circuit_half_opens_after_recovery_timeout():
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
    breaker.record_failure()
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.allow_request()

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


async def test_logging_transport_keeps_bounded_outbox():
    transport = LoggingMailTransport(outbox_size=2)
    for n in range(3):
        assert await transport.send(f"user{n}@example.com", f"subject {n}", "body")

    assert [address for address, _, _ in transport.outbox] == [
        "user1@example.com",
        "user2@example.com",
    ]


@pytest.mark.parametrize("mock_mail, url, expected", [
    (True, "https://mail.example.com/send", LoggingMailTransport),
    (False, None, LoggingMailTransport),
    (False, "https://mail.example.com/send", HttpMailTransport),
])
def test_build_mail_transport(settings, mock_mail, url, expected):
    configured = settings.model_copy(update={"mock_mail": mock_mail, "mail_api_url": url})
    assert isinstance(build_mail_transport(configured), expected)
