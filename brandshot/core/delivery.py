"""
Delivery Formatter
==================

Package a composed frame into the configured output representation:
raw PNG bytes, a base64 data URI, or a stored file reference.
"""

from typing import Optional, Any, Union
from pathlib import Path
import base64
import os
import secrets
import tempfile
import time

from brandshot.config.logging import get_logger
from brandshot.config.settings import get_settings
from brandshot.core.errors import DeliveryError, first_line
from brandshot.models.schemas import (
    BinaryArtifact,
    CaptureRequest,
    CapturedFrame,
    DataURIArtifact,
    DeliveryArtifact,
    DeliveryVariant,
    FileRefArtifact,
)

logger = get_logger(__name__)

IMAGE_FORMAT = "PNG"
MEDIA_TYPE = "image/png"
FILE_EXTENSION = ".png"


class DeliveryFormatter:
    """Turn composed frames into delivery artifacts."""

    def __init__(
        self,
        variant: Optional[Union[str, DeliveryVariant]] = None,
        storage_dir: Optional[Path] = None,
        public_prefix: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.variant = resolve_variant(variant or self.settings.delivery_variant)
        self.storage_dir = Path(storage_dir or self.settings.screenshots_path)
        self.public_prefix = (public_prefix or self.settings.public_screenshots_prefix).rstrip("/")
        self.logger: Any = logger.bind(component="delivery")  # structlog.BoundLoggerBase

    def package(
        self,
        frame: CapturedFrame,
        request: CaptureRequest,
        variant: Optional[Union[str, DeliveryVariant]] = None,
    ) -> DeliveryArtifact:
        """
        Encode ``frame`` and wrap it in the selected artifact.

        Args:
            frame: Fully composited frame
            request: Request the frame was captured for
            variant: Overrides the configured variant

        Returns:
            BinaryArtifact, DataURIArtifact or FileRefArtifact

        Raises:
            DeliveryError: If encoding or persistence fails
        """
        selected = resolve_variant(variant) if variant is not None else self.variant
        image_bytes = self._encode(frame)

        if selected is DeliveryVariant.BINARY:
            artifact: DeliveryArtifact = BinaryArtifact(
                content=image_bytes,
                media_type=MEDIA_TYPE,
                target_url=request.target_url,
                label=request.label,
            )
        elif selected is DeliveryVariant.DATA_URI:
            encoded = base64.b64encode(image_bytes).decode("utf-8")
            artifact = DataURIArtifact(
                data_uri=f"data:{MEDIA_TYPE};base64,{encoded}",
                target_url=request.target_url,
                label=request.label,
            )
        else:
            artifact = self._persist(image_bytes, request)

        self.logger.info("Capture packaged", variant=selected.value, size=len(image_bytes))
        return artifact

    def _encode(self, frame: CapturedFrame) -> bytes:
        try:
            return frame.encode(IMAGE_FORMAT)
        except Exception as e:
            self.logger.error("Frame encoding failed", error=str(e))
            raise DeliveryError(f"Image could not be encoded: {first_line(e)}")

    def _persist(self, image_bytes: bytes, request: CaptureRequest) -> FileRefArtifact:
        filename = generate_filename()
        target = self.storage_dir / filename
        temp_name: Optional[str] = None
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                dir=self.storage_dir, prefix=".partial-", suffix=FILE_EXTENSION
            )
            with os.fdopen(fd, "wb") as handle:
                handle.write(image_bytes)
            os.replace(temp_name, target)
            temp_name = None
        except OSError as e:
            self.logger.error("Screenshot could not be stored", error=str(e))
            raise DeliveryError(f"Screenshot could not be stored: {e.strerror or e}")
        finally:
            if temp_name is not None:
                Path(temp_name).unlink(missing_ok=True)

        self.logger.info("Screenshot stored", filename=filename)
        return FileRefArtifact(
            path=str(target),
            url=f"{self.public_prefix}/{filename}",
            filename=filename,
            target_url=request.target_url,
            label=request.label,
        )


def resolve_variant(variant: Union[str, DeliveryVariant]) -> DeliveryVariant:
    """
    Map a configured name onto a DeliveryVariant.

    Raises:
        DeliveryError: If the name is not a known variant
    """
    try:
        return DeliveryVariant(variant)
    except ValueError:
        supported = ", ".join(v.value for v in DeliveryVariant)
        raise DeliveryError(f"Unsupported delivery variant {variant!r}; expected one of: {supported}")


def generate_filename() -> str:
    """Collision-resistant screenshot name: epoch milliseconds plus a random suffix."""
    return f"screenshot-{time.time_ns() // 1_000_000}-{secrets.token_hex(4)}{FILE_EXTENSION}"
