"""
Health and readiness endpoints.

/health answers as long as the process serves requests.
/readiness reports whether ffmpeg and ffprobe are usable; the first call
triggers each tool's one-time check, later calls replay the cached result.
"""

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..execution.errors import ExecutionError
from ..execution.tool import ExternalTool

router = APIRouter(tags=["health"])


class ToolStatus(BaseModel):
    """Readiness of one external binary."""

    available: bool
    path: Optional[str] = None
    version: Optional[str] = None
    reason: Optional[str] = None


class ReadinessResponse(BaseModel):
    ready: bool
    ffmpeg: ToolStatus
    ffprobe: ToolStatus


def tool_status(tool: ExternalTool) -> ToolStatus:
    try:
        result = tool.ensure_ready()
    except ExecutionError as e:
        return ToolStatus(available=False, reason=str(e))
    return ToolStatus(available=True, path=result.resolved_path, version=result.version)


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/readiness", response_model=ReadinessResponse)
def readiness(request: Request):
    ffmpeg = tool_status(request.app.state.ffmpeg)
    ffprobe = tool_status(request.app.state.ffprobe)
    return ReadinessResponse(
        ready=ffmpeg.available and ffprobe.available,
        ffmpeg=ffmpeg,
        ffprobe=ffprobe,
    )
