"""
Probe endpoint: ffprobe a local file or remote URL.

The format/streams probe always runs. Frames, packets, chapters and
programs are opt-in sections, each one more ffprobe run. A failing
section is reported in `errors` and does not fail the request.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from ..execution.errors import (
    ExecutionError,
    ToolNotFoundError,
    ToolUnhealthyError,
)
from ..inputs import InputError, resolve_input
from ..probe import (
    FFprobeTool,
    FramesSummary,
    PacketsSummary,
    ProbeChapter,
    ProbeFrame,
    ProbePacket,
    ProbeProgram,
    ProbeView,
    key_frames_only,
    summarize,
    summarize_frames,
    summarize_packets,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["probe"])

DEFAULT_FRAMES_LIMIT = 300
DEFAULT_PACKETS_LIMIT = 200


class ProbeRequest(BaseModel):
    """
    Probe options. Limits of 0 keep everything.
    """

    model_config = ConfigDict(extra="forbid")

    input: str

    frames: bool = False
    frames_streams: str = ""  # e.g. "v:0", all streams if empty
    frames_intervals: str = ""  # e.g. "0%+5"
    frames_key_only: bool = False
    frames_limit: int = Field(default=DEFAULT_FRAMES_LIMIT, ge=0)

    packets: bool = False
    packets_streams: str = ""
    packets_limit: int = Field(default=DEFAULT_PACKETS_LIMIT, ge=0)

    chapters: bool = False
    programs: bool = False


class FramesSection(BaseModel):
    summary: FramesSummary
    frames: List[ProbeFrame]


class PacketsSection(BaseModel):
    summary: PacketsSummary
    packets: List[ProbePacket]


class ChaptersSection(BaseModel):
    count: int
    chapters: List[ProbeChapter]


class ProgramsSection(BaseModel):
    count: int
    programs: List[ProbeProgram]


class ProbeResponse(BaseModel):
    summary: ProbeView
    raw: Dict[str, Any]
    frames: Optional[FramesSection] = None
    packets: Optional[PacketsSection] = None
    chapters: Optional[ChaptersSection] = None
    programs: Optional[ProgramsSection] = None
    errors: List[str] = Field(default_factory=list)


def _limit(items: list, limit: int) -> list:
    return items[:limit] if limit > 0 else items


def probe_sections(tool: FFprobeTool, source: str, body: ProbeRequest, response: ProbeResponse) -> None:
    """Run the requested optional sections into `response`."""
    if body.frames:
        try:
            frames = tool.probe_frames(source, body.frames_streams, body.frames_intervals).frames
            if body.frames_key_only:
                frames = key_frames_only(frames)
            frames = _limit(frames, body.frames_limit)
            response.frames = FramesSection(summary=summarize_frames(frames), frames=frames)
        except ExecutionError as e:
            response.errors.append(f"frames: {e}")

    if body.packets:
        try:
            packets = _limit(tool.probe_packets(source, body.packets_streams).packets, body.packets_limit)
            response.packets = PacketsSection(summary=summarize_packets(packets), packets=packets)
        except ExecutionError as e:
            response.errors.append(f"packets: {e}")

    if body.chapters:
        try:
            chapters = tool.probe_chapters(source).chapters
            response.chapters = ChaptersSection(count=len(chapters), chapters=chapters)
        except ExecutionError as e:
            response.errors.append(f"chapters: {e}")

    if body.programs:
        try:
            programs = tool.probe_programs(source).programs
            response.programs = ProgramsSection(count=len(programs), programs=programs)
        except ExecutionError as e:
            response.errors.append(f"programs: {e}")

    for error in response.errors:
        logger.warning(f"[Probe] {source}: {error}")


@router.post("/probe", response_model=ProbeResponse)
def probe(body: ProbeRequest, request: Request):
    """
    Probe format and streams, plus any requested sections.

    Status codes:
        400: Bad input
        422: ffprobe failed on the input or returned unusable output
        503: ffprobe is not available
    """
    try:
        source = resolve_input(body.input)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    tool = request.app.state.ffprobe
    try:
        raw = tool.probe_raw(source)
        result = tool.parse(raw)
    except (ToolNotFoundError, ToolUnhealthyError) as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ExecutionError as e:
        logger.warning(f"[Probe] {source}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    response = ProbeResponse(summary=summarize(result, source, tool.version()), raw=raw)
    probe_sections(tool, source, body, response)
    return response
