"""
Mail Transport Infrastructure
=============================

Outbound email delivery.

- HttpMailTransport: JSON POST to a transactional mail API, with a
  circuit breaker and exponential backoff retry
- LoggingMailTransport: logs instead of sending (development, demos)

Transports report success as a bool and never raise for delivery
problems; the notification dispatcher turns the bool into a per-recipient
result.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ticketflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class IMailTransport(ABC):
    """Interface for sending one email."""

    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> bool:
        """Send a plain-text email. Returns True if accepted for delivery."""

    async def close(self) -> None:
        """Release network resources."""


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Mail circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class HttpMailTransport(IMailTransport):
    """
    Transactional mail API client.

    Sends ``{"from", "to", "subject", "text"}`` as JSON with bearer auth.
    2xx means accepted. 4xx responses are not retried since resending the
    same message will not help.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        sender: str = "support@ticketflow.local",
        timeout_seconds: float = 10.0,
        max_attempts: int = 2,
        retry_backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = retry_backoff_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def send(self, address: str, subject: str, body: str) -> bool:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping email",
                extra={"recipient": address, "subject": subject}
            )
            return False

        payload = {"from": self._sender, "to": address, "subject": subject, "text": body}

        for attempt in range(self._max_attempts):
            try:
                client = await self._get_client()
                response = await client.post(self._api_url, json=payload, headers=self._headers())

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Email sent",
                        extra={"recipient": address, "subject": subject}
                    )
                    return True

                logger.warning(
                    "Mail API returned non-2xx",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1,
                        "recipient": address
                    }
                )
                if response.is_client_error:
                    return False

            except httpx.HTTPError as e:
                logger.error(
                    "Email delivery failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "recipient": address
                    }
                )

            if attempt < self._max_attempts - 1:
                await asyncio.sleep(self._backoff * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client if this transport created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingMailTransport(IMailTransport):
    """
    Mail transport that only logs.

    Keeps the last sent messages in ``outbox`` for inspection.
    """

    def __init__(self, outbox_size: int = 100):
        self._outbox_size = outbox_size
        self.outbox: List[Tuple[str, str, str]] = []

    async def send(self, address: str, subject: str, body: str) -> bool:
        self.outbox.append((address, subject, body))
        del self.outbox[:-self._outbox_size]
        logger.info(
            "Email (mock) sent",
            extra={"recipient": address, "subject": subject, "body_length": len(body)}
        )
        return True


def build_mail_transport(settings: Any) -> IMailTransport:
    """Pick the transport from settings: mock flag or missing URL -> logging."""
    if settings.mock_mail or not settings.mail_api_url:
        if not settings.mock_mail:
            logger.warning("MAIL_API_URL not configured, emails will only be logged")
        return LoggingMailTransport()
    return HttpMailTransport(
        api_url=settings.mail_api_url,
        api_key=settings.mail_api_key,
        sender=settings.mail_from,
        timeout_seconds=settings.mail_timeout_seconds,
        max_attempts=settings.mail_max_retries,
        retry_backoff_seconds=settings.mail_retry_backoff_seconds,
    )


__all__ = [
    "IMailTransport",
    "CircuitState",
    "CircuitBreaker",
    "HttpMailTransport",
    "LoggingMailTransport",
    "build_mail_transport",
]
