"""
Pydantic Models and Schemas
===========================

Core data models for capture requests, overlay specifications, captured frames,
delivery artifacts and API responses.
"""

from typing import Annotated, Optional, List, Dict, Any, Union, Literal, Tuple
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlsplit
import io

from PIL import Image
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from brandshot.core.errors import InvalidInput


DISPLAY_TEXT_LIMIT = 80
ELLIPSIS = "…"


# Enums
class CompositingStrategyName(str, Enum):
    """Overlay compositing strategies."""
    DOM_INJECTION = "dom_injection"
    RASTER = "raster"


class DeliveryVariant(str, Enum):
    """Output representations of a composed frame."""
    BINARY = "binary"
    DATA_URI = "data_uri"
    FILE_REF = "file_ref"


class PipelineStage(str, Enum):
    """Per-request pipeline states."""
    QUEUED = "queued"
    ACQUIRING = "acquiring"
    NAVIGATING = "navigating"
    COMPOSITING = "compositing"
    DELIVERING = "delivering"
    DONE = "done"
    FAILED = "failed"


class SessionState(str, Enum):
    """Render session lifecycle."""
    ACTIVE = "active"
    RELEASED = "released"


class BackpressurePolicy(str, Enum):
    """What the pool does with requests beyond capacity."""
    QUEUE = "queue"
    REJECT = "reject"


def truncate_for_display(text: str, limit: int = DISPLAY_TEXT_LIMIT) -> str:
    """Cut ``text`` to ``limit`` characters plus an ellipsis when longer."""
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


# Request Models
class CaptureRequest(BaseModel):
    """Validated request to capture and brand a page."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    target_url: str = Field(
        ...,
        validation_alias=AliasChoices("targetUrl", "target_url", "url"),
        serialization_alias="targetUrl",
        description="Absolute http(s) URL of the page to capture",
    )
    label: str = Field(
        ...,
        validation_alias=AliasChoices("label", "siteName"),
        description="Site name shown in the overlay band",
    )

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        """Require an absolute http or https URL with a host."""
        v = v.strip()
        try:
            parts = urlsplit(v)
            hostname = parts.hostname
        except ValueError as e:
            raise ValueError(f"Malformed URL: {e}")
        if parts.scheme not in ("http", "https"):
            raise ValueError("URL must use the http or https scheme")
        if not hostname:
            raise ValueError("URL must include a host")
        return v

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Validate label is not empty."""
        if not v.strip():
            raise ValueError("Label cannot be empty")
        return v


def validate_capture_request(data: Dict[str, Any]) -> CaptureRequest:
    """
    Build a CaptureRequest from untrusted input.

    Raises:
        InvalidInput: If the URL or label is missing or malformed
    """
    try:
        return CaptureRequest.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidInput(f"Invalid capture request: {problems}")


# Overlay Models
GradientStop = Tuple[float, Tuple[int, int, int, int]]

DEFAULT_GRADIENT_STOPS: Tuple[GradientStop, ...] = (
    (0.0, (99, 102, 241, 242)),
    (1.0, (168, 85, 247, 242)),
)


class OverlaySpec(BaseModel):
    """Branding band drawn across the top of a capture."""

    model_config = ConfigDict(frozen=True)

    label: str = Field(..., min_length=1, description="Untruncated site label")
    subtitle: Optional[str] = Field(None, description="Right-aligned secondary text")
    band_height: int = Field(60, gt=0, description="Band height in pixels")
    gradient_stops: Tuple[GradientStop, ...] = Field(
        DEFAULT_GRADIENT_STOPS, min_length=2, description="(offset, RGBA) colour stops"
    )
    shadow_height: int = Field(8, ge=0, description="Rows of approximate drop shadow")

    @field_validator("gradient_stops")
    @classmethod
    def validate_gradient_stops(cls, v: Tuple[GradientStop, ...]) -> Tuple[GradientStop, ...]:
        offsets = [offset for offset, _ in v]
        if offsets != sorted(offsets) or offsets[0] < 0.0 or offsets[-1] > 1.0:
            raise ValueError("Gradient stop offsets must be ascending within [0, 1]")
        for _, rgba in v:
            if any(channel < 0 or channel > 255 for channel in rgba):
                raise ValueError("Gradient colour channels must be within [0, 255]")
        return v

    @property
    def display_label(self) -> str:
        return truncate_for_display(self.label)

    @property
    def display_subtitle(self) -> Optional[str]:
        if not self.subtitle:
            return None
        return truncate_for_display(self.subtitle)

    def css_gradient(self) -> str:
        """Render the colour stops as a CSS linear-gradient value."""
        stops = ", ".join(
            f"rgba({r}, {g}, {b}, {round(a / 255, 2)}) {round(offset * 100)}%"
            for offset, (r, g, b, a) in self.gradient_stops
        )
        return f"linear-gradient(135deg, {stops})"


# Frames
@dataclass(frozen=True)
class CapturedFrame:
    """Immutable RGB raster produced by a capture."""

    pixels: bytes
    width: int
    height: int
    mode: str = "RGB"

    def __post_init__(self) -> None:
        expected = self.width * self.height * len(self.mode)
        if len(self.pixels) != expected:
            raise ValueError(
                f"Pixel buffer holds {len(self.pixels)} bytes, expected {expected}"
            )

    @classmethod
    def from_image(cls, image: Image.Image) -> "CapturedFrame":
        rgb = image if image.mode == "RGB" else image.convert("RGB")
        return cls(pixels=rgb.tobytes(), width=rgb.width, height=rgb.height)

    @classmethod
    def from_png(cls, png_bytes: bytes) -> "CapturedFrame":
        with Image.open(io.BytesIO(png_bytes)) as image:
            image.load()
            return cls.from_image(image)

    def to_image(self) -> Image.Image:
        """Return a new, independent Pillow image of the frame."""
        return Image.frombytes(self.mode, (self.width, self.height), self.pixels)

    def encode(self, image_format: str = "PNG") -> bytes:
        output = io.BytesIO()
        self.to_image().save(output, format=image_format)
        return output.getvalue()


# Delivery Artifacts
class BinaryArtifact(BaseModel):
    """Raw encoded image, returned as a content-typed body."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["binary"] = "binary"
    content: bytes = Field(..., description="Encoded image bytes", repr=False)
    media_type: str = Field("image/png", description="Content type of the bytes")
    target_url: str = Field(..., description="Captured URL")
    label: str = Field(..., description="Untruncated label")


class DataURIArtifact(BaseModel):
    """Base64 image embedded in a JSON envelope."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data_uri"] = "data_uri"
    data_uri: str = Field(..., description="data:image/png;base64,... string", repr=False)
    target_url: str = Field(..., description="Captured URL")
    label: str = Field(..., description="Untruncated label")

    def envelope(self) -> Dict[str, Any]:
        return {
            "success": True,
            "image": self.data_uri,
            "targetUrl": self.target_url,
            "label": self.label,
        }


class FileRefArtifact(BaseModel):
    """Reference to a screenshot persisted in the storage area."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file_ref"] = "file_ref"
    path: str = Field(..., description="Filesystem path of the stored screenshot")
    url: str = Field(..., description="Relative URL the screenshot is served from")
    filename: str = Field(..., description="Generated file name")
    target_url: str = Field(..., description="Captured URL")
    label: str = Field(..., description="Untruncated label")

    def envelope(self) -> Dict[str, Any]:
        return {
            "success": True,
            "screenshotUrl": self.url,
            "filename": self.filename,
            "targetUrl": self.target_url,
            "label": self.label,
        }


DeliveryArtifact = Annotated[
    Union[BinaryArtifact, DataURIArtifact, FileRefArtifact], Field(discriminator="kind")
]


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Machine-readable error kind")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp"
    )
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")


# Health Check Models
class PoolStats(BaseModel):
    """Session pool counters."""
    capacity: int = Field(..., ge=1)
    active: int = Field(0, ge=0)
    available: int = Field(0, ge=0)
    waiting: int = Field(0, ge=0)
    peak_active: int = Field(0, ge=0)
    acquired_total: int = Field(0, ge=0)
    released_total: int = Field(0, ge=0)
    backpressure: BackpressurePolicy = BackpressurePolicy.QUEUE


class HealthStatus(BaseModel):
    """Health check status."""
    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp"
    )
    version: str = Field(..., description="Application version")
    compositing_strategy: CompositingStrategyName
    delivery_variant: DeliveryVariant
    pool: Optional[PoolStats] = None
    warnings: List[str] = Field(default_factory=list)
