"""
Step Runner
===========

Runs the named steps of one pipeline run and records their outcomes.

Retry policy (tenacity):
- TransientException: retried up to ``max_retries`` additional attempts
  with exponential backoff
- NonRetriableError: never retried, aborts the run
- anything else: not retried

After the last attempt a required step aborts the run with
StepAbortedError; a non-required step is logged as failed and the run
moves on to the next step.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ticketflow.core import NonRetriableError, StepAbortedError, TransientException

T = TypeVar("T")


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class PipelineRunReport:
    """
    Result of handling one event.

    ``success`` is False only when the run was aborted; failed
    best-effort steps are visible in ``steps`` but do not fail the run.
    """
    event_id: str
    event_name: str
    steps: List[StepOutcome] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def step(self, name: str) -> Optional[StepOutcome]:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        return None

    @property
    def step_names(self) -> List[str]:
        return [outcome.name for outcome in self.steps]

    @property
    def failed_steps(self) -> List[str]:
        return [o.name for o in self.steps if o.status in (StepStatus.FAILED, StepStatus.ABORTED)]


class StepRunner:
    """Executes steps in sequence for one run, feeding a PipelineRunReport."""

    def __init__(
        self,
        report: PipelineRunReport,
        logger: logging.Logger,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        max_wait_seconds: float = 30.0,
    ):
        self.report = report
        self._logger = logger
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._max_wait = max_wait_seconds

    def _retrying(self, name: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self._logger.warning(
                "Step failed with transient error, retrying",
                extra={
                    "step": name,
                    "attempt": retry_state.attempt_number,
                    "error": str(error),
                }
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff, max=self._max_wait),
            retry=retry_if_exception_type(TransientException),
            before_sleep=log_retry,
            reraise=True,
        )

    def skip(self, name: str, reason: str) -> None:
        """Record a step that did not apply to this run."""
        self.report.steps.append(StepOutcome(name, StepStatus.SKIPPED, error=reason))
        self._logger.debug("Step skipped", extra={"step": name, "reason": reason})

    async def step(
        self,
        name: str,
        func: Callable[[], Awaitable[T]],
        required: bool = False,
    ) -> Optional[T]:
        """
        Run one step.

        Returns:
            The step's result, or None if a non-required step failed

        Raises:
            NonRetriableError: the step decided the run cannot continue
            StepAbortedError: a required step failed after all retries
        """
        attempts = 0
        try:
            async for attempt in self._retrying(name):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await func()
        except NonRetriableError as e:
            self.report.steps.append(StepOutcome(name, StepStatus.ABORTED, attempts, e.message))
            raise
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            if required:
                self.report.steps.append(StepOutcome(name, StepStatus.ABORTED, attempts, error))
                raise StepAbortedError(name, e) from e
            self.report.steps.append(StepOutcome(name, StepStatus.FAILED, attempts, error))
            self._logger.error(
                "Step failed, continuing with next step",
                extra={"step": name, "attempts": attempts, "error": error}
            )
            return None

        self.report.steps.append(StepOutcome(name, StepStatus.SUCCEEDED, attempts))
        return result
