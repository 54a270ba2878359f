"""
Navigation Controller
=====================

Drive a render session to a target page and classify how loading failed.
Navigation completes once the network has gone idle, not at first paint.
"""

from typing import Optional, Any
import asyncio

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from brandshot.config.logging import get_logger
from brandshot.config.settings import get_settings
from brandshot.core.errors import NavigationError, NavigationTimeout, first_line
from brandshot.core.rendering.session_pool import RenderSession

logger = get_logger(__name__)

# Playwright gets the same budget; the asyncio bound only fires if the driver overruns it.
HARD_TIMEOUT_GRACE = 0.25


class NavigationController:
    """Load pages into render sessions with a hard timeout and no retries."""

    def __init__(self, timeout: Optional[float] = None, wait_until: str = "networkidle"):
        self.settings = get_settings()
        self.timeout = timeout if timeout is not None else self.settings.navigation_timeout
        self.wait_until = wait_until
        self.logger: Any = logger.bind(component="navigation")  # structlog.BoundLoggerBase

    async def load(
        self, session: RenderSession, url: str, timeout: Optional[float] = None
    ) -> Optional[int]:
        """
        Navigate ``session`` to ``url`` and wait for the network to settle.

        Args:
            session: Active render session
            url: Absolute http(s) URL
            timeout: Navigation timeout in seconds; defaults to the configured value

        Returns:
            HTTP status of the main document, or None when the browser reports none

        Raises:
            NavigationTimeout: The page did not settle in time
            NavigationError: DNS, connection, TLS or other loading failure
        """
        budget = self.timeout if timeout is None else timeout
        self.logger.info("Navigating", url=url, timeout=budget)

        try:
            response = await asyncio.wait_for(
                session.page.goto(url, wait_until=self.wait_until, timeout=budget * 1000),
                timeout=budget + HARD_TIMEOUT_GRACE,
            )
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            self.logger.warning("Navigation timed out", url=url, timeout=budget)
            raise NavigationTimeout(f"Page did not finish loading within {budget:g}s")
        except PlaywrightError as e:
            self.logger.warning("Navigation failed", url=url, error=e.message)
            raise NavigationError(f"Page could not be loaded: {first_line(e.message)}")

        status = response.status if response is not None else None
        self.logger.info("Navigation completed", url=url, status=status)
        return status
