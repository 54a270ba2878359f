"""
Overlay Compositor
==================

Brand a capture with a band across its top edge.

Two interchangeable strategies produce the band:
- DomInjectionStrategy builds the band as DOM nodes in the live page, styled
  from templates, before the screenshot, so the capture already contains it.
- RasterCompositionStrategy leaves the page untouched and draws the band onto
  a copy of the captured pixels with Pillow.

Both anchor the band at the top edge and make it exactly ``band_height`` rows tall.
"""

from typing import Dict, Optional, Any, Tuple, Type
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
import asyncio

import jinja2
from PIL import Image, ImageDraw, ImageFont  # type: ignore

from brandshot.config.logging import get_logger
from brandshot.config.settings import get_settings
from brandshot.core.errors import CaptureError, CompositingError, first_line
from brandshot.core.rendering.session_pool import RenderSession
from brandshot.models.schemas import (
    CaptureRequest,
    CapturedFrame,
    CompositingStrategyName,
    OverlaySpec,
)

logger = get_logger(__name__)

OVERLAY_ELEMENT_ID = "brandshot-overlay"

# Builds the band from plain data through DOM APIs; no markup string is ever parsed.
INJECT_OVERLAY_SCRIPT = """(overlay) => {
    const band = document.createElement('div');
    band.id = overlay.elementId;
    band.setAttribute('data-brandshot-overlay', 'true');
    band.style.cssText = overlay.bandStyle;

    const label = document.createElement('div');
    label.style.cssText = overlay.labelStyle;
    label.textContent = overlay.label;
    band.appendChild(label);

    if (overlay.subtitle) {
        const subtitle = document.createElement('div');
        subtitle.style.cssText = overlay.subtitleStyle;
        subtitle.textContent = overlay.subtitle;
        band.appendChild(subtitle);
    }

    (document.body || document.documentElement).appendChild(band);
    return band.getBoundingClientRect().height;
}"""

LABEL_FONT_SIZE = 24
LABEL_COLOR = (255, 255, 255, 255)
TEXT_SHADOW_COLOR = (0, 0, 0, 51)
TEXT_SHADOW_OFFSET = (2, 2)
SHADOW_MAX_ALPHA = 77
FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf", "LiberationSans-Bold.ttf")


class CompositingStrategy(ABC):
    """Abstract base class for overlay compositing strategies."""

    name: CompositingStrategyName
    requires_dom: bool = False

    @abstractmethod
    async def prepare(self, session: RenderSession, spec: OverlaySpec) -> None:
        """Hook run on the live page before the frame is captured."""
        pass

    @abstractmethod
    async def finish(self, frame: CapturedFrame, spec: OverlaySpec) -> CapturedFrame:
        """Hook run on the captured frame; returns the frame to deliver."""
        pass


class DomInjectionStrategy(CompositingStrategy):
    """Build the band inside the rendered document before capture."""

    name = CompositingStrategyName.DOM_INJECTION
    requires_dom = True

    def __init__(self, settle_delay: Optional[float] = None) -> None:
        self.settings = get_settings()
        self.settle_delay = (
            settle_delay if settle_delay is not None else self.settings.overlay_settle_delay
        )
        self.logger: Any = logger.bind(strategy=self.name.value)  # structlog.BoundLoggerBase
        self._setup_jinja2_environment()

    def _setup_jinja2_environment(self) -> None:
        """Setup Jinja2 template environment."""
        template_dir = Path(__file__).parent / "templates"
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
            enable_async=True,
        )

    async def build_overlay(self, spec: OverlaySpec) -> Dict[str, Optional[str]]:
        """
        Parameters for the injection script.

        Style declarations come from the band templates; label and subtitle stay
        plain strings and are only ever assigned as text content.
        """
        context = {"band_height": int(spec.band_height), "gradient": spec.css_gradient()}
        return {
            "elementId": OVERLAY_ELEMENT_ID,
            "label": spec.display_label,
            "subtitle": spec.display_subtitle,
            "bandStyle": await self._render_style("band.css", context),
            "labelStyle": await self._render_style("label.css", context),
            "subtitleStyle": await self._render_style("subtitle.css", context),
        }

    async def _render_style(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.env.get_template(template_name)
        return (await template.render_async(**context)).strip()

    async def prepare(self, session: RenderSession, spec: OverlaySpec) -> None:
        overlay = await self.build_overlay(spec)
        rendered_height = await session.page.evaluate(INJECT_OVERLAY_SCRIPT, overlay)
        if rendered_height is not None and round(rendered_height) != spec.band_height:
            self.logger.warning(
                "Overlay band rendered at unexpected height",
                expected=spec.band_height,
                rendered=rendered_height,
            )

        # Let layout and paint pick up the new node before the screenshot.
        await session.page.wait_for_timeout(self.settle_delay * 1000)

    async def finish(self, frame: CapturedFrame, spec: OverlaySpec) -> CapturedFrame:
        return frame


class RasterCompositionStrategy(CompositingStrategy):
    """Draw the band onto a copy of the captured pixels."""

    name = CompositingStrategyName.RASTER

    def __init__(self, font_size: int = LABEL_FONT_SIZE) -> None:
        self.font_size = font_size
        self.logger: Any = logger.bind(strategy=self.name.value)  # structlog.BoundLoggerBase

    async def prepare(self, session: RenderSession, spec: OverlaySpec) -> None:
        return None

    async def finish(self, frame: CapturedFrame, spec: OverlaySpec) -> CapturedFrame:
        return await asyncio.to_thread(self.compose, frame, spec)

    def compose(self, frame: CapturedFrame, spec: OverlaySpec) -> CapturedFrame:
        """
        Compose the band over ``frame``.

        Args:
            frame: Captured page, left unmodified
            spec: Overlay specification

        Returns:
            New frame of identical dimensions with the band drawn in
        """
        if spec.band_height > frame.height:
            raise CompositingError(
                f"Band height {spec.band_height}px exceeds frame height {frame.height}px"
            )

        base = frame.to_image().convert("RGBA")
        width = base.width

        layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
        layer.paste(self._gradient_band(width, spec), (0, 0))
        self._draw_shadow(layer, spec)
        composed = Image.alpha_composite(base, layer)

        text_layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
        self._draw_label(text_layer, spec)
        composed = Image.alpha_composite(composed, text_layer)

        result = CapturedFrame.from_image(composed.convert("RGB"))
        self.logger.debug(
            "Raster overlay composed",
            width=result.width,
            height=result.height,
            band_height=spec.band_height,
        )
        return result

    def _gradient_band(self, width: int, spec: OverlaySpec) -> Image.Image:
        row = Image.new("RGBA", (width, 1))
        span = max(width - 1, 1)
        row.putdata([_interpolate(spec.gradient_stops, x / span) for x in range(width)])
        return row.resize((width, spec.band_height), Image.NEAREST)

    def _draw_shadow(self, layer: Image.Image, spec: OverlaySpec) -> None:
        draw = ImageDraw.Draw(layer)
        rows = min(spec.shadow_height, layer.height - spec.band_height)
        for offset in range(rows):
            alpha = round(SHADOW_MAX_ALPHA * (1 - offset / spec.shadow_height) ** 2)
            y = spec.band_height + offset
            draw.line([(0, y), (layer.width - 1, y)], fill=(0, 0, 0, alpha))

    def _draw_label(self, layer: Image.Image, spec: OverlaySpec) -> None:
        draw = ImageDraw.Draw(layer)
        font = _load_font(self.font_size)
        text = spec.display_label

        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x = (layer.width - (right - left)) // 2 - left
        y = (spec.band_height - (bottom - top)) // 2 - top

        shadow_x, shadow_y = TEXT_SHADOW_OFFSET
        draw.text((x + shadow_x, y + shadow_y), text, font=font, fill=TEXT_SHADOW_COLOR)
        draw.text((x, y), text, font=font, fill=LABEL_COLOR)

        # Glyph descenders must not spill below the band.
        if spec.band_height < layer.height:
            draw.rectangle(
                [(0, spec.band_height), (layer.width - 1, layer.height - 1)], fill=(0, 0, 0, 0)
            )


def _interpolate(
    stops: Tuple[Tuple[float, Tuple[int, int, int, int]], ...], position: float
) -> Tuple[int, int, int, int]:
    """Colour of a multi-stop linear gradient at ``position`` in [0, 1]."""
    if position <= stops[0][0]:
        return stops[0][1]
    for (start, start_rgba), (end, end_rgba) in zip(stops, stops[1:]):
        if position <= end:
            t = 0.0 if end == start else (position - start) / (end - start)
            return tuple(  # type: ignore[return-value]
                round(a + (b - a) * t) for a, b in zip(start_rgba, end_rgba)
            )
    return stops[-1][1]


@lru_cache(maxsize=8)
def _load_font(size: int) -> Any:
    for candidate in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.debug("No TrueType font found, using Pillow default font", size=size)
    return ImageFont.load_default(size=size)


class CompositingStrategyFactory:
    """Factory for creating compositing strategies."""

    _strategies: Dict[CompositingStrategyName, Type[CompositingStrategy]] = {
        CompositingStrategyName.DOM_INJECTION: DomInjectionStrategy,
        CompositingStrategyName.RASTER: RasterCompositionStrategy,
    }

    @classmethod
    def create_strategy(cls, name: str, **kwargs: Any) -> CompositingStrategy:
        """
        Create a compositing strategy.

        Raises:
            CompositingError: If ``name`` is not a supported strategy
        """
        try:
            strategy_name = CompositingStrategyName(name)
        except ValueError:
            supported = ", ".join(s.value for s in CompositingStrategyName)
            raise CompositingError(
                f"Unsupported compositing strategy {name!r}; expected one of: {supported}"
            )
        return cls._strategies[strategy_name](**kwargs)


class OverlayCompositor:
    """Apply the configured overlay strategy around a capture."""

    def __init__(
        self,
        strategy: Optional[CompositingStrategy] = None,
        band_height: Optional[int] = None,
        subtitle_mode: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.strategy = strategy or CompositingStrategyFactory.create_strategy(
            self.settings.compositing_strategy
        )
        self.band_height = band_height or self.settings.overlay_band_height
        self.subtitle_mode = subtitle_mode or self.settings.overlay_subtitle
        self.logger: Any = logger.bind(  # structlog.BoundLoggerBase
            component="overlay", strategy=self.strategy.name.value
        )

    def build_spec(
        self, request: CaptureRequest, captured_at: Optional[datetime] = None
    ) -> OverlaySpec:
        """Overlay for ``request``; the subtitle follows the configured mode."""
        subtitle: Optional[str] = None
        if self.subtitle_mode == "url":
            subtitle = request.target_url
        elif self.subtitle_mode == "timestamp":
            moment = captured_at or datetime.now(timezone.utc)
            subtitle = moment.strftime("%Y-%m-%d %H:%M:%S UTC")
        return OverlaySpec(label=request.label, subtitle=subtitle, band_height=self.band_height)

    async def prepare(self, session: RenderSession, spec: OverlaySpec) -> None:
        """
        Run the pre-capture step of the strategy.

        Raises:
            CompositingError: Strategy needs DOM access the session lacks, or injection failed
        """
        if self.strategy.requires_dom and not session.supports_dom_injection:
            raise CompositingError(
                f"Strategy {self.strategy.name.value!r} requires DOM injection, "
                "which this session does not support"
            )
        try:
            await self.strategy.prepare(session, spec)
        except CaptureError:
            raise
        except Exception as e:
            self.logger.error("Overlay preparation failed", error=str(e))
            raise CompositingError(f"Overlay could not be applied: {first_line(e)}")

    async def capture(self, session: RenderSession) -> CapturedFrame:
        """
        Capture the session viewport.

        Raises:
            CompositingError: If the screenshot fails or cannot be decoded
        """
        try:
            frame = await session.capture()
        except Exception as e:
            self.logger.error("Frame capture failed", error=str(e))
            raise CompositingError(f"Frame capture failed: {first_line(e)}")
        self.logger.debug("Frame captured", width=frame.width, height=frame.height)
        return frame

    async def finish(self, frame: CapturedFrame, spec: OverlaySpec) -> CapturedFrame:
        """
        Run the post-capture step of the strategy.

        Raises:
            CompositingError: If composition fails
        """
        try:
            return await self.strategy.finish(frame, spec)
        except CaptureError:
            raise
        except Exception as e:
            self.logger.error("Overlay composition failed", error=str(e))
            raise CompositingError(f"Overlay composition failed: {first_line(e)}")
