"""
Unit Tests for Overlay Compositor
=================================

Band geometry, text handling and capability checks for both compositing
strategies.
"""

from datetime import datetime, timezone

import pytest

from brandshot.core.errors import CompositingError
from brandshot.core.rendering.overlay import (
    INJECT_OVERLAY_SCRIPT,
    CompositingStrategyFactory,
    DomInjectionStrategy,
    OverlayCompositor,
    RasterCompositionStrategy,
    _interpolate,
)
from brandshot.core.rendering.session_pool import RenderSession
from brandshot.models.schemas import (
    DEFAULT_GRADIENT_STOPS,
    CaptureRequest,
    CapturedFrame,
    OverlaySpec,
)

from tests.utils.mocks import INJECTED_BAND_COLOR, PAGE_COLOR, FakeHandle, FakePage, make_png

WHITE = PAGE_COLOR


def make_session(supports_dom_injection: bool = True, **page_kwargs) -> RenderSession:
    handle = FakeHandle(FakePage(**page_kwargs), supports_dom_injection)
    return RenderSession(handle=handle, supports_dom_injection=supports_dom_injection)


def pixel(frame: CapturedFrame, x: int, y: int):
    return frame.to_image().getpixel((x, y))


def close_to(actual, expected, tolerance: int = 3) -> bool:
    return all(abs(a - e) <= tolerance for a, e in zip(actual, expected))


class TestRasterComposition:
    """Test drawing the band onto captured pixels."""

    @pytest.fixture
    def strategy(self):
        return RasterCompositionStrategy()

    def test_band_geometry(self, strategy, white_frame):
        """Test the band covers exactly the top rows and the page below is untouched."""
        spec = OverlaySpec(label="Example Co", band_height=60)

        result = strategy.compose(white_frame, spec)

        assert (result.width, result.height) == (white_frame.width, white_frame.height)
        # 95% opaque start colour over white
        assert close_to(pixel(result, 0, 2), (107, 110, 242))
        assert close_to(pixel(result, result.width - 1, 2), (172, 94, 247))
        # First shadow row is darkened, rows past the shadow are untouched
        assert pixel(result, 0, 60)[0] < 255
        assert pixel(result, 0, 60 + spec.shadow_height) == WHITE
        assert pixel(result, 160, 239) == WHITE

    def test_gradient_runs_left_to_right(self, strategy, white_frame):
        """Test red rises and green falls across the band."""
        result = strategy.compose(white_frame, OverlaySpec(label="x", band_height=40))

        left, right = pixel(result, 0, 1), pixel(result, result.width - 1, 1)
        assert left[0] < right[0]
        assert left[1] > right[1]

    def test_label_is_drawn_in_band(self, strategy, white_frame):
        """Test the label produces near-white pixels inside the band."""
        result = strategy.compose(white_frame, OverlaySpec(label="WWWW", band_height=60))
        image = result.to_image()

        band_pixels = [
            image.getpixel((x, y)) for x in range(100, 220) for y in range(10, 50)
        ]
        assert any(min(p) > 240 for p in band_pixels)

    def test_label_never_spills_below_band(self, strategy, white_frame):
        """Test glyphs taller than the band are clipped at its lower edge."""
        spec = OverlaySpec(label="gjpqy Gjpqy", band_height=12, shadow_height=0)

        result = strategy.compose(white_frame, spec)
        image = result.to_image()

        for y in range(12, 40):
            for x in range(0, result.width):
                assert image.getpixel((x, y)) == WHITE

    def test_input_frame_is_not_modified(self, strategy, white_frame):
        """Test composition returns a new frame and leaves the input intact."""
        original_pixels = white_frame.pixels

        result = strategy.compose(white_frame, OverlaySpec(label="Example Co"))

        assert result is not white_frame
        assert white_frame.pixels == original_pixels
        assert pixel(white_frame, 0, 0) == WHITE

    def test_composition_is_deterministic(self, strategy, white_frame):
        """Test identical inputs give identical pixels."""
        spec = OverlaySpec(label="Example Co", subtitle="https://example.com")

        assert strategy.compose(white_frame, spec).pixels == strategy.compose(white_frame, spec).pixels

    def test_long_label_is_truncated(self, strategy, white_frame):
        """Test an oversized label still composes within the frame."""
        result = strategy.compose(white_frame, OverlaySpec(label="L" * 500))

        assert (result.width, result.height) == (320, 240)

    def test_band_taller_than_frame(self, strategy):
        """Test a band that cannot fit is a compositing error."""
        frame = CapturedFrame.from_png(make_png((100, 40)))

        with pytest.raises(CompositingError):
            strategy.compose(frame, OverlaySpec(label="x", band_height=60))

    def test_band_filling_whole_frame(self, strategy):
        """Test a band exactly as tall as the frame leaves no page rows."""
        frame = CapturedFrame.from_png(make_png((100, 60)))

        result = strategy.compose(frame, OverlaySpec(label="x", band_height=60))

        assert result.height == 60
        assert pixel(result, 0, 59) != WHITE

    @pytest.mark.asyncio
    async def test_prepare_does_not_touch_page(self, strategy):
        """Test the raster strategy never scripts the page."""
        session = make_session()

        await strategy.prepare(session, OverlaySpec(label="x"))

        assert session.page.evaluate_calls == []
        assert session.page.waits == []

    @pytest.mark.asyncio
    async def test_finish_composes_off_loop(self, strategy, white_frame):
        """Test finish returns the composed frame."""
        spec = OverlaySpec(label="Example Co")

        result = await strategy.finish(white_frame, spec)

        assert result.pixels == strategy.compose(white_frame, spec).pixels


class TestInterpolate:
    """Test gradient colour interpolation."""

    def test_endpoints(self):
        assert _interpolate(DEFAULT_GRADIENT_STOPS, 0.0) == (99, 102, 241, 242)
        assert _interpolate(DEFAULT_GRADIENT_STOPS, 1.0) == (168, 85, 247, 242)

    def test_midpoint(self):
        assert _interpolate(DEFAULT_GRADIENT_STOPS, 0.5) == (134, 94, 244, 242)

    def test_multi_stop(self):
        stops = ((0.0, (0, 0, 0, 255)), (0.5, (100, 100, 100, 255)), (1.0, (200, 0, 0, 255)))
        assert _interpolate(stops, 0.25) == (50, 50, 50, 255)
        assert _interpolate(stops, 0.75) == (150, 50, 50, 255)


class TestDomInjection:
    """Test injecting the band into the live page."""

    @pytest.fixture
    def strategy(self):
        return DomInjectionStrategy(settle_delay=0.1)

    @pytest.mark.asyncio
    async def test_label_stays_plain_text(self, strategy):
        """Test label and subtitle reach the page verbatim, as data rather than markup."""
        spec = OverlaySpec(label='<img src=x onerror="alert(1)"> & Co', subtitle="<b>sub</b>")

        overlay = await strategy.build_overlay(spec)

        assert overlay["label"] == '<img src=x onerror="alert(1)"> & Co'
        assert overlay["subtitle"] == "<b>sub</b>"
        assert all(value is None or isinstance(value, str) for value in overlay.values())
        for key in ("bandStyle", "labelStyle", "subtitleStyle"):
            assert "<" not in overlay[key]

    def test_script_never_parses_markup(self):
        """Test the injection script builds nodes and assigns text without HTML sinks."""
        assert "innerHTML" not in INJECT_OVERLAY_SCRIPT
        assert "outerHTML" not in INJECT_OVERLAY_SCRIPT
        assert "insertAdjacentHTML" not in INJECT_OVERLAY_SCRIPT
        assert "createElement" in INJECT_OVERLAY_SCRIPT
        assert "textContent = overlay.label" in INJECT_OVERLAY_SCRIPT

    @pytest.mark.asyncio
    async def test_overlay_geometry_and_truncation(self, strategy):
        """Test band height, gradient and truncated text end up in the parameters."""
        spec = OverlaySpec(label="A" * 120, subtitle="https://example.com/" + "p" * 100, band_height=72)

        overlay = await strategy.build_overlay(spec)

        assert overlay["elementId"] == "brandshot-overlay"
        assert "height: 72px" in overlay["bandStyle"]
        assert "rgba(99, 102, 241, 0.95) 0%" in overlay["bandStyle"]
        assert "z-index: 2147483647" in overlay["bandStyle"]
        assert overlay["label"] == "A" * 80 + "…"
        assert "p" * 100 not in overlay["subtitle"]
        assert "font-size: 28px" in overlay["labelStyle"]
        assert "font-size: 14px" in overlay["subtitleStyle"]

    @pytest.mark.asyncio
    async def test_overlay_without_subtitle(self, strategy):
        overlay = await strategy.build_overlay(OverlaySpec(label="Example Co"))

        assert overlay["subtitle"] is None

    @pytest.mark.asyncio
    async def test_prepare_injects_then_settles(self, strategy):
        """Test one fixed script receives the parameter object, followed by the settle delay."""
        session = make_session()
        spec = OverlaySpec(label="Example Co")

        await strategy.prepare(session, spec)

        assert len(session.page.evaluate_calls) == 1
        script, overlay = session.page.evaluate_calls[0]
        assert script == INJECT_OVERLAY_SCRIPT
        assert isinstance(overlay, dict)
        assert overlay["label"] == "Example Co"
        assert session.page.waits == [100.0]

    @pytest.mark.asyncio
    async def test_capture_contains_band(self, strategy):
        """Test the screenshot taken after injection shows the band at the top."""
        session = make_session(size=(320, 240))
        spec = OverlaySpec(label="Example Co", band_height=60)

        await strategy.prepare(session, spec)
        frame = await strategy.finish(await session.capture(), spec)

        assert pixel(frame, 0, 0) == INJECTED_BAND_COLOR
        assert pixel(frame, 0, 59) == INJECTED_BAND_COLOR
        assert pixel(frame, 0, 60) == WHITE


class TestOverlayCompositor:
    """Test strategy selection, capability checks and error wrapping."""

    @pytest.fixture
    def request_model(self):
        return CaptureRequest(targetUrl="https://example.com/", label="Example Co")

    def test_build_spec_url_subtitle(self, request_model):
        compositor = OverlayCompositor(RasterCompositionStrategy(), band_height=50, subtitle_mode="url")

        spec = compositor.build_spec(request_model)

        assert spec.label == "Example Co"
        assert spec.subtitle == "https://example.com/"
        assert spec.band_height == 50

    def test_build_spec_timestamp_subtitle(self, request_model):
        compositor = OverlayCompositor(RasterCompositionStrategy(), subtitle_mode="timestamp")
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        spec = compositor.build_spec(request_model, captured_at=moment)

        assert spec.subtitle == "2024-01-02 03:04:05 UTC"

    def test_build_spec_without_subtitle(self, request_model):
        compositor = OverlayCompositor(RasterCompositionStrategy(), subtitle_mode="none")

        assert compositor.build_spec(request_model).subtitle is None

    @pytest.mark.asyncio
    async def test_dom_strategy_needs_dom_support(self):
        """Test a DOM-less session is refused before anything is injected."""
        compositor = OverlayCompositor(DomInjectionStrategy(settle_delay=0))
        session = make_session(supports_dom_injection=False)

        with pytest.raises(CompositingError, match="requires DOM injection"):
            await compositor.prepare(session, OverlaySpec(label="x"))

        assert session.page.evaluate_calls == []

    @pytest.mark.asyncio
    async def test_raster_strategy_works_without_dom(self, white_frame):
        """Test the raster strategy accepts sessions without DOM support."""
        compositor = OverlayCompositor(RasterCompositionStrategy())
        session = make_session(supports_dom_injection=False)
        spec = OverlaySpec(label="x")

        await compositor.prepare(session, spec)
        result = await compositor.finish(white_frame, spec)

        assert result.height == white_frame.height

    @pytest.mark.asyncio
    async def test_injection_failure_is_wrapped(self):
        compositor = OverlayCompositor(DomInjectionStrategy(settle_delay=0))
        session = make_session(evaluate_error=RuntimeError("Execution context was destroyed"))

        with pytest.raises(CompositingError, match="Execution context was destroyed"):
            await compositor.prepare(session, OverlaySpec(label="x"))

    @pytest.mark.asyncio
    async def test_capture_failure_is_wrapped(self):
        compositor = OverlayCompositor(RasterCompositionStrategy())
        session = make_session(screenshot_error=RuntimeError("Target closed"))

        with pytest.raises(CompositingError, match="Target closed"):
            await compositor.capture(session)

    @pytest.mark.asyncio
    async def test_finish_passes_compositing_errors(self):
        compositor = OverlayCompositor(RasterCompositionStrategy())
        frame = CapturedFrame.from_png(make_png((50, 20)))

        with pytest.raises(CompositingError, match="exceeds frame height"):
            await compositor.finish(frame, OverlaySpec(label="x", band_height=60))


class TestCompositingStrategyFactory:
    """Test compositing strategy factory."""

    def test_create_strategies(self):
        assert isinstance(CompositingStrategyFactory.create_strategy("raster"), RasterCompositionStrategy)
        strategy = CompositingStrategyFactory.create_strategy("dom_injection", settle_delay=0.2)
        assert isinstance(strategy, DomInjectionStrategy)
        assert strategy.settle_delay == 0.2

    def test_unknown_strategy(self):
        with pytest.raises(CompositingError, match="Unsupported compositing strategy"):
            CompositingStrategyFactory.create_strategy("svg")
