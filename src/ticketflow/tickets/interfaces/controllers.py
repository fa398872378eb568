"""
Ticket Report Controllers (API Routes)
======================================

Read-only aggregate reports.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ticketflow.tickets.application import (
    SolutionStatsResponse,
    TicketLifecycleService,
    TicketStatsResponse,
)

router = APIRouter(prefix="/api/reports", tags=["Reports"])


def get_lifecycle_service(request: Request) -> TicketLifecycleService:
    """Get the lifecycle service from the service container."""
    return request.app.state.container.lifecycle


@router.get("/tickets", response_model=TicketStatsResponse, summary="Ticket counts")
async def ticket_report(
    created_by: Optional[str] = Query(None, description="Only tickets filed by this user"),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
) -> TicketStatsResponse:
    stats = await service.get_ticket_stats(created_by=created_by)
    return TicketStatsResponse(**asdict(stats))


@router.get("/solutions", response_model=SolutionStatsResponse, summary="Solution and rating figures")
async def solution_report(
    moderator_id: Optional[str] = Query(None, description="Only solutions by this moderator"),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
) -> SolutionStatsResponse:
    """Counts by difficulty and effectiveness plus rating averages."""
    stats = await service.get_solution_stats(moderator_id=moderator_id)
    return SolutionStatsResponse(**asdict(stats), moderator_id=moderator_id)


# Export router for inclusion in main app
reports_router = router
