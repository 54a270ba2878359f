"""
Test Configuration
==================

Pytest configuration with fixtures shared by the unit and integration tests.
The environment is pointed at a throwaway storage directory before the
application package is imported.
"""

import os
import tempfile

os.environ.setdefault("BRANDSHOT_ENVIRONMENT", "testing")
os.environ.setdefault("BRANDSHOT_STORAGE_PATH", tempfile.mkdtemp(prefix="brandshot_test_"))
os.environ.setdefault("BRANDSHOT_LOG_LEVEL", "DEBUG")

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from brandshot.config.settings import Settings
from brandshot.core.delivery import DeliveryFormatter
from brandshot.core.rendering.session_pool import SessionPool
from brandshot.models.schemas import CaptureRequest, CapturedFrame

from tests.utils.mocks import FakeLauncher, make_png


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated to a per-test storage directory."""
    return Settings(
        environment="testing",
        storage_path=tmp_path,
        browser_pool_size=2,
        pool_queue_timeout=1.0,
        navigation_timeout=1.0,
        request_timeout=5.0,
        overlay_settle_delay=0.0,
        log_level="DEBUG",
    )


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher(size=(320, 240))


@pytest_asyncio.fixture
async def pool(launcher: FakeLauncher) -> AsyncGenerator[SessionPool, None]:
    """Two-session pool backed by the fake launcher."""
    session_pool = SessionPool(capacity=2, launcher=launcher, queue_timeout=1.0)
    yield session_pool
    await session_pool.close()


@pytest.fixture
def capture_request() -> CaptureRequest:
    return CaptureRequest(targetUrl="https://example.com/pricing", label="Example Co")


@pytest.fixture
def white_frame() -> CapturedFrame:
    return CapturedFrame.from_png(make_png((320, 240)))


@pytest.fixture
def formatter(tmp_path: Path) -> DeliveryFormatter:
    return DeliveryFormatter(
        variant="binary", storage_dir=tmp_path / "screenshots", public_prefix="/screenshots"
    )
