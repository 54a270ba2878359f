"""
Screenshot Routes
=================

FastAPI route for capturing and branding a page.
"""

from typing import Any, Dict
from urllib.parse import quote

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from brandshot.config.logging import get_logger
from brandshot.core.pipeline import PipelineOrchestrator
from brandshot.models.schemas import BinaryArtifact, validate_capture_request

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Screenshots"])


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Capture pipeline is not running")
    return orchestrator


@router.post("/screenshot")
async def create_screenshot(request: Request, payload: Dict[str, Any] = Body(...)) -> Response:
    """
    Capture ``targetUrl`` (or ``url``) and brand it with ``label`` (or ``siteName``).

    Responds with the PNG itself for the binary variant and with a JSON envelope
    for the data URI and file reference variants.
    """
    capture_request = validate_capture_request(payload)
    orchestrator = get_orchestrator(request)

    result = await orchestrator.run(capture_request)
    artifact = result.artifact

    if isinstance(artifact, BinaryArtifact):
        return Response(
            content=artifact.content,
            media_type=artifact.media_type,
            headers={
                "X-Capture-Label": quote(artifact.label, safe=""),
                "X-Capture-Target": quote(artifact.target_url, safe=":/"),
            },
        )
    return JSONResponse(content=artifact.envelope())
