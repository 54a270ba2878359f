"""
Session Pool
============

Bounded pool of ephemeral Playwright render sessions.

Each session owns one isolated Chromium process, a browser context with a fixed
viewport and a single page. Sessions are created on acquire and destroyed on
release; the pool only ever shares its capacity counter between requests.
"""

from typing import Optional, Dict, Any, AsyncGenerator
import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from brandshot.config.logging import get_logger
from brandshot.config.settings import get_settings
from brandshot.core.errors import (
    PoolExhausted,
    SessionAcquisitionTimeout,
    SessionLaunchError,
    first_line,
)
from brandshot.models.schemas import BackpressurePolicy, CapturedFrame, PoolStats, SessionState

logger = get_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-features=VizDisplayCompositor",
]


@dataclass
class SessionHandle:
    """Browser objects owned by one render session."""

    browser: Browser
    context: BrowserContext
    page: Page


@dataclass
class RenderSession:
    """One browser instance bound to one in-flight request."""

    handle: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.ACTIVE
    supports_dom_injection: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def page(self) -> Page:
        return self.handle.page

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    async def capture(self) -> CapturedFrame:
        """Screenshot the viewport into an immutable frame."""
        png_bytes = await self.page.screenshot(type="png", full_page=False)
        return CapturedFrame.from_png(png_bytes)


class PlaywrightSessionLauncher:
    """Launch and tear down isolated Chromium sessions."""

    def __init__(
        self,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        headless: Optional[bool] = None,
    ):
        self.settings = get_settings()
        self.viewport_width = viewport_width or self.settings.viewport_width
        self.viewport_height = viewport_height or self.settings.viewport_height
        self.headless = self.settings.playwright_headless if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._start_lock = asyncio.Lock()
        self.logger: Any = logger.bind(component="session_launcher")  # structlog.BoundLoggerBase

    async def start(self) -> None:
        """Start the Playwright driver."""
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
                self.logger.info("Playwright driver started", headless=self.headless)

    async def stop(self) -> None:
        """Stop the Playwright driver."""
        async with self._start_lock:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
                self.logger.info("Playwright driver stopped")

    async def launch(self) -> SessionHandle:
        """
        Launch a browser, context and page for one session.

        Raises:
            SessionLaunchError: If any part of the session cannot be created
        """
        try:
            await self.start()
        except Exception as e:
            raise SessionLaunchError(f"Browser driver could not be started: {first_line(e)}")

        browser: Optional[Browser] = None
        try:
            browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=CHROMIUM_ARGS,
            )
            context = await browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height},
                device_scale_factor=1,
            )
            page = await context.new_page()
            return SessionHandle(browser=browser, context=context, page=page)
        except BaseException as e:
            if browser is not None:
                await self._close_quietly(browser)
            if isinstance(e, Exception):
                raise SessionLaunchError(f"Browser launch failed: {first_line(e)}")
            raise

    async def close(self, handle: SessionHandle) -> None:
        """Close the browser owned by ``handle``; closing the browser drops its contexts."""
        await handle.browser.close()

    async def _close_quietly(self, browser: Browser) -> None:
        try:
            await browser.close()
        except Exception as e:
            self.logger.warning("Failed to close partially launched browser", error=str(e))


class SessionPool:
    """Bound the number of concurrently active render sessions."""

    def __init__(
        self,
        capacity: Optional[int] = None,
        launcher: Optional[Any] = None,
        queue_timeout: Optional[float] = None,
        backpressure: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.capacity = capacity if capacity is not None else self.settings.browser_pool_size
        if self.capacity < 1:
            raise ValueError("Pool capacity must be at least 1")
        self.launcher = launcher or PlaywrightSessionLauncher()
        self.queue_timeout = (
            queue_timeout if queue_timeout is not None else self.settings.pool_queue_timeout
        )
        self.backpressure = BackpressurePolicy(backpressure or self.settings.pool_backpressure)

        self._semaphore = asyncio.Semaphore(self.capacity)
        self._active: Dict[str, RenderSession] = {}
        self.waiting = 0
        self.peak_active = 0
        self.acquire_count = 0
        self.release_count = 0
        self.logger: Any = logger.bind(component="session_pool")  # structlog.BoundLoggerBase

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def available(self) -> int:
        return self.capacity - self.active_count

    async def acquire(self, timeout: Optional[float] = None) -> RenderSession:
        """
        Wait for free capacity and launch a new session.

        Args:
            timeout: Queue-wait timeout in seconds; defaults to the pool setting

        Returns:
            A freshly launched, active RenderSession

        Raises:
            PoolExhausted: Pool is full and configured to reject
            SessionAcquisitionTimeout: No capacity freed up within the timeout
            SessionLaunchError: The browser session could not be created
        """
        wait_timeout = self.queue_timeout if timeout is None else timeout

        if not self._semaphore.locked():
            # Free capacity and nobody queued: takes the permit without suspending.
            await self._semaphore.acquire()
        elif self.backpressure is BackpressurePolicy.REJECT:
            self.logger.warning("Session pool exhausted, rejecting request", capacity=self.capacity)
            raise PoolExhausted(f"All {self.capacity} render sessions are busy")
        else:
            await self._wait_for_capacity(wait_timeout)

        try:
            handle = await self.launcher.launch()
        except BaseException as e:
            self._semaphore.release()
            if isinstance(e, SessionLaunchError):
                self.logger.error("Render session launch failed", error=e.detail)
                raise
            if isinstance(e, Exception):
                self.logger.error("Render session launch failed", error=str(e))
                raise SessionLaunchError(f"Browser launch failed: {first_line(e)}")
            raise

        session = RenderSession(
            handle=handle,
            supports_dom_injection=getattr(handle, "supports_dom_injection", True),
        )
        self._active[session.id] = session
        self.acquire_count += 1
        self.peak_active = max(self.peak_active, self.active_count)
        self.logger.debug("Render session acquired", active=self.active_count)
        return session

    async def _wait_for_capacity(self, timeout: float) -> None:
        self.waiting += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Timed out waiting for a render session",
                timeout=timeout,
                capacity=self.capacity,
            )
            raise SessionAcquisitionTimeout(
                f"No render session became available within {timeout:g}s"
            )
        finally:
            self.waiting -= 1

    async def release(self, session: RenderSession) -> None:
        """Tear down ``session`` and return its capacity. Safe to call repeatedly."""
        if session.state is SessionState.RELEASED or session.id not in self._active:
            return

        session.state = SessionState.RELEASED
        del self._active[session.id]
        try:
            await self.launcher.close(session.handle)
        except Exception as e:
            self.logger.warning("Error closing render session", error=str(e))
        finally:
            self.release_count += 1
            self._semaphore.release()
            self.logger.debug("Render session released", active=self.active_count)

    @asynccontextmanager
    async def session(self, timeout: Optional[float] = None) -> AsyncGenerator[RenderSession, None]:
        """Acquire a session for the duration of the block; always released."""
        render_session = await self.acquire(timeout)
        try:
            yield render_session
        finally:
            await self.release(render_session)

    async def close(self) -> None:
        """Release any sessions still active and stop the launcher."""
        for render_session in list(self._active.values()):
            await self.release(render_session)

        stop = getattr(self.launcher, "stop", None)
        if stop is not None:
            await stop()

        self.logger.info("Session pool closed")

    def stats(self) -> PoolStats:
        return PoolStats(
            capacity=self.capacity,
            active=self.active_count,
            available=self.available,
            waiting=self.waiting,
            peak_active=self.peak_active,
            acquired_total=self.acquire_count,
            released_total=self.release_count,
            backpressure=self.backpressure,
        )
