"""
Health Routes
=============

FastAPI routes for health check endpoints.
"""

from typing import List

from fastapi import APIRouter, Request

from brandshot import __version__
from brandshot.models.schemas import CompositingStrategyName, DeliveryVariant, HealthStatus

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
@router.get("/api/health", response_model=HealthStatus)
async def health_check(request: Request) -> HealthStatus:
    """Pipeline configuration and session pool occupancy."""
    settings = request.app.state.settings
    orchestrator = getattr(request.app.state, "orchestrator", None)

    if orchestrator is None:
        return HealthStatus(
            status="unhealthy",
            version=__version__,
            compositing_strategy=CompositingStrategyName(settings.compositing_strategy),
            delivery_variant=DeliveryVariant(settings.delivery_variant),
            warnings=["Capture pipeline is not running"],
        )

    stats = orchestrator.pool.stats()
    warnings: List[str] = []
    status = "healthy"
    if stats.available == 0 and stats.waiting > 0:
        status = "degraded"
        warnings.append(f"{stats.waiting} request(s) waiting for a render session")

    return HealthStatus(
        status=status,
        version=__version__,
        compositing_strategy=orchestrator.compositor.strategy.name,
        delivery_variant=orchestrator.formatter.variant,
        pool=stats,
        warnings=warnings,
    )
