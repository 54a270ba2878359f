"""
Capture Errors
==============

Error taxonomy for the capture pipeline. Every error carries a machine-readable
``kind``, a human-readable ``detail`` and, once it has passed through the
orchestrator, the pipeline ``stage`` it originated from.
"""

from typing import Any, Dict, Optional


class CaptureError(Exception):
    """Base class for all capture pipeline failures."""

    kind: str = "capture_error"

    def __init__(self, detail: str, stage: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.stage = stage

    def with_stage(self, stage: str) -> "CaptureError":
        """Tag the error with its originating stage unless already tagged."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "detail": self.detail, "stage": self.stage}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, stage={self.stage!r}, detail={self.detail!r})"


class InvalidInput(CaptureError):
    """Request rejected before the pipeline runs."""

    kind = "invalid_input"


class SessionAcquisitionTimeout(CaptureError):
    """No session became free within the queue-wait timeout."""

    kind = "session_acquisition_timeout"


class PoolExhausted(CaptureError):
    """Pool is full and configured to reject instead of queueing."""

    kind = "pool_exhausted"


class SessionLaunchError(CaptureError):
    """Browser session could not be created."""

    kind = "session_launch_error"


class NavigationTimeout(CaptureError):
    """Page did not settle within the navigation timeout."""

    kind = "navigation_timeout"


class NavigationError(CaptureError):
    """Name resolution, connection or TLS failure while loading the page."""

    kind = "navigation_error"


class CompositingError(CaptureError):
    """Overlay could not be applied or the frame could not be captured."""

    kind = "compositing_error"


class DeliveryError(CaptureError):
    """Composed frame could not be encoded or persisted."""

    kind = "delivery_error"


def first_line(message: object) -> str:
    """
    Headline of an exception message.

    Playwright appends a multi-line call log, and sometimes local executable
    paths, to its messages; only the first line is safe to surface.
    """
    lines = str(message or "").strip().splitlines()
    return lines[0] if lines else "unknown error"
