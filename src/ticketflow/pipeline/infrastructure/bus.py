"""
In-Process Event Bus
====================

Delivers published events to the pipeline orchestrator as background
asyncio tasks.

Publishing never waits for the run: each event gets its own task, so runs
for different tickets proceed concurrently. ``drain`` waits for the
in-flight runs (used on shutdown and in tests).
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Set

from ticketflow.pipeline.application.runner import PipelineRunReport
from ticketflow.pipeline.domain import IEventPublisher, PipelineEvent
from ticketflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[PipelineEvent], Awaitable[PipelineRunReport]]


class InProcessEventBus(IEventPublisher):
    """Fire-and-forget publisher backed by one asyncio task per event."""

    def __init__(self, handler: Optional[EventHandler] = None, history_size: int = 100):
        self._handler = handler
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closed = False
        self.reports: Deque[PipelineRunReport] = deque(maxlen=history_size)

    def subscribe(self, handler: EventHandler) -> None:
        """Attach the handler that runs each event."""
        self._handler = handler

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def publish(self, event: PipelineEvent) -> None:
        if self._closed:
            raise RuntimeError("Event bus is closed")
        if self._handler is None:
            raise RuntimeError("No handler subscribed to the event bus")

        task = asyncio.create_task(self._run(event), name=f"pipeline:{event.name}:{event.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "Event published",
            extra={"event_id": event.id, "event_name": event.name}
        )

    async def _run(self, event: PipelineEvent) -> None:
        try:
            report = await self._handler(event)
        except Exception as e:
            logger.exception(
                "Pipeline run crashed",
                extra={"event_id": event.id, "event_name": event.name, "error": str(e)}
            )
            return
        self.reports.append(report)

    async def drain(self) -> None:
        """Wait until every in-flight run has finished, including runs they publish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting events and wait for in-flight runs."""
        self._closed = True
        await self.drain()
