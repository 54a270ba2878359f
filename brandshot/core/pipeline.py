"""
Pipeline Orchestrator
=====================

Sequence one capture request through the pipeline:

    acquire session -> navigate -> prepare overlay -> capture -> release session
    -> finish overlay -> package

The render session is held in a scoped block, so it is released before the
orchestrator returns on success, failure, timeout and cancellation alike.
Errors abort the remaining stages, are tagged with the stage they came from,
and are never retried.
"""

from typing import Dict, List, Optional, Any, Tuple, Type, Union, TYPE_CHECKING
from dataclasses import dataclass, field
import asyncio
import time
import uuid

from brandshot.config.logging import get_logger
from brandshot.config.settings import get_settings
from brandshot.core.delivery import DeliveryFormatter
from brandshot.core.errors import (
    CaptureError,
    CompositingError,
    DeliveryError,
    NavigationError,
    NavigationTimeout,
    SessionAcquisitionTimeout,
    SessionLaunchError,
    first_line,
)
from brandshot.core.rendering.navigation import NavigationController
from brandshot.core.rendering.overlay import CompositingStrategyFactory, OverlayCompositor
from brandshot.core.rendering.session_pool import PlaywrightSessionLauncher, SessionPool
from brandshot.models.schemas import (
    CaptureRequest,
    CompositingStrategyName,
    DeliveryArtifact,
    DeliveryVariant,
    PipelineStage,
)

if TYPE_CHECKING:
    from brandshot.config.settings import Settings

logger = get_logger(__name__)

_STAGE_FAILURES: Dict[PipelineStage, Type[CaptureError]] = {
    PipelineStage.QUEUED: SessionLaunchError,
    PipelineStage.ACQUIRING: SessionLaunchError,
    PipelineStage.NAVIGATING: NavigationError,
    PipelineStage.COMPOSITING: CompositingError,
    PipelineStage.DELIVERING: DeliveryError,
}

_STAGE_TIMEOUTS: Dict[PipelineStage, Type[CaptureError]] = {
    PipelineStage.QUEUED: SessionAcquisitionTimeout,
    PipelineStage.ACQUIRING: SessionAcquisitionTimeout,
    PipelineStage.NAVIGATING: NavigationTimeout,
    PipelineStage.COMPOSITING: CompositingError,
    PipelineStage.DELIVERING: DeliveryError,
}


@dataclass
class PipelineRun:
    """State of one request moving through the pipeline."""

    request: CaptureRequest
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stage: PipelineStage = PipelineStage.QUEUED
    failed_stage: Optional[PipelineStage] = None
    history: List[Tuple[PipelineStage, float]] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        self.history.append((self.stage, 0.0))

    def advance(self, stage: PipelineStage) -> None:
        self.stage = stage
        self.history.append((stage, self.elapsed))

    def fail(self) -> None:
        self.failed_stage = self.stage
        self.advance(PipelineStage.FAILED)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def stages(self) -> List[str]:
        return [stage.value for stage, _ in self.history]


@dataclass
class PipelineResult:
    """Successful pipeline outcome."""

    artifact: DeliveryArtifact
    target_url: str
    label: str
    strategy: CompositingStrategyName
    variant: DeliveryVariant
    duration: float
    stages: List[str]


class PipelineOrchestrator:
    """Run capture requests end to end with guaranteed session release."""

    def __init__(
        self,
        pool: SessionPool,
        navigator: Optional[NavigationController] = None,
        compositor: Optional[OverlayCompositor] = None,
        formatter: Optional[DeliveryFormatter] = None,
        request_timeout: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.pool = pool
        self.navigator = navigator or NavigationController()
        self.compositor = compositor or OverlayCompositor()
        self.formatter = formatter or DeliveryFormatter()
        self.request_timeout = (
            request_timeout if request_timeout is not None else self.settings.request_timeout
        )
        self.logger: Any = logger.bind(component="pipeline")  # structlog.BoundLoggerBase

    async def run(
        self,
        request: CaptureRequest,
        variant: Optional[Union[str, DeliveryVariant]] = None,
    ) -> PipelineResult:
        """
        Capture, brand and package ``request``.

        Args:
            request: Validated capture request
            variant: Overrides the formatter's configured delivery variant

        Returns:
            PipelineResult carrying the delivery artifact

        Raises:
            CaptureError: Subclass matching the failure, with ``stage`` set
        """
        run = PipelineRun(request=request)
        log = self.logger.bind(run_id=run.run_id, url=request.target_url)
        log.info("Capture requested", label_length=len(request.label))

        try:
            result = await asyncio.wait_for(
                self._execute(run, variant, log), timeout=self.request_timeout
            )
        except CaptureError as e:
            run.fail()
            log.error(
                "Capture failed",
                kind=e.kind,
                stage=e.stage,
                detail=e.detail,
                elapsed=round(run.elapsed, 3),
            )
            raise
        except asyncio.TimeoutError:
            error_cls = _STAGE_TIMEOUTS.get(run.stage, CompositingError)
            error = error_cls(
                f"Capture exceeded the {self.request_timeout:g}s request timeout",
                stage=run.stage.value,
            )
            run.fail()
            log.error("Capture timed out", stage=error.stage, timeout=self.request_timeout)
            raise error from None

        log.info("Capture completed", duration=round(result.duration, 3), variant=result.variant.value)
        return result

    async def _execute(
        self,
        run: PipelineRun,
        variant: Optional[Union[str, DeliveryVariant]],
        log: Any,
    ) -> PipelineResult:
        request = run.request
        try:
            run.advance(PipelineStage.ACQUIRING)
            async with self.pool.session() as session:
                run.advance(PipelineStage.NAVIGATING)
                await self.navigator.load(session, request.target_url)

                run.advance(PipelineStage.COMPOSITING)
                spec = self.compositor.build_spec(request)
                await self.compositor.prepare(session, spec)
                frame = await self.compositor.capture(session)

            frame = await self.compositor.finish(frame, spec)

            run.advance(PipelineStage.DELIVERING)
            artifact = await asyncio.to_thread(self.formatter.package, frame, request, variant)
        except CaptureError as e:
            raise e.with_stage(run.stage.value)
        except Exception as e:
            log.error("Unexpected pipeline error", stage=run.stage.value, exc_info=True)
            error_cls = _STAGE_FAILURES.get(run.stage, CompositingError)
            raise error_cls(f"Unexpected failure: {first_line(e)}", stage=run.stage.value) from e

        run.advance(PipelineStage.DONE)
        return PipelineResult(
            artifact=artifact,
            target_url=request.target_url,
            label=request.label,
            strategy=self.compositor.strategy.name,
            variant=DeliveryVariant(artifact.kind),
            duration=run.elapsed,
            stages=run.stages,
        )


def create_orchestrator(
    settings: Optional["Settings"] = None, launcher: Optional[Any] = None
) -> PipelineOrchestrator:
    """
    Build a pool and orchestrator wired from ``settings``.

    Raises:
        CompositingError: If the configured compositing strategy is unsupported
        DeliveryError: If the configured delivery variant is unsupported
    """
    settings = settings or get_settings()

    strategy_kwargs: Dict[str, Any] = {}
    if settings.compositing_strategy == CompositingStrategyName.DOM_INJECTION.value:
        strategy_kwargs["settle_delay"] = settings.overlay_settle_delay
    strategy = CompositingStrategyFactory.create_strategy(
        settings.compositing_strategy, **strategy_kwargs
    )

    pool = SessionPool(
        capacity=settings.browser_pool_size,
        launcher=launcher
        or PlaywrightSessionLauncher(
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
            headless=settings.playwright_headless,
        ),
        queue_timeout=settings.pool_queue_timeout,
        backpressure=settings.pool_backpressure,
    )
    return PipelineOrchestrator(
        pool=pool,
        navigator=NavigationController(timeout=settings.navigation_timeout),
        compositor=OverlayCompositor(
            strategy=strategy,
            band_height=settings.overlay_band_height,
            subtitle_mode=settings.overlay_subtitle,
        ),
        formatter=DeliveryFormatter(
            variant=settings.delivery_variant,
            storage_dir=settings.screenshots_path,
            public_prefix=settings.public_screenshots_prefix,
        ),
        request_timeout=settings.request_timeout,
    )
