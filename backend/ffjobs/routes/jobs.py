"""
Job endpoints.

POST /jobs starts an ffmpeg preset in the background and returns at once.
Progress is followed over /jobs/{id}/events (server-sent events) and the
result fetched from /jobs/{id}/download once the job is done.
"""

import logging
import os
import tempfile
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..execution import presets
from ..execution.errors import ToolNotFoundError, ToolUnhealthyError
from ..inputs import InputError, output_suffix, resolve_input, sanitize_filename
from ..jobs.errors import ArtifactNotReadyError, JobNotFoundError
from ..jobs.models import JobStatus, JobView
from ..sse import KEEP_ALIVE_SECONDS, SSE_HEADERS, SSE_MEDIA_TYPE, sse_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class CreateJobRequest(BaseModel):
    """Request body for starting a preset job."""

    model_config = ConfigDict(extra="forbid")

    input: str
    action: Literal["transcode", "remux", "extract_aac", "snapshot"] = "transcode"
    out_name: Optional[str] = None
    crf: int = Field(default=presets.DEFAULT_CRF, ge=0, le=51)
    preset: str = presets.DEFAULT_X264_PRESET
    audio_bitrate: str = presets.DEFAULT_AUDIO_BITRATE
    at: float = 0.0


class CreateJobResponse(BaseModel):
    id: str
    status: JobStatus
    events: str
    download: str


def build_command(body: CreateJobRequest, source: str, output_path: str):
    if body.action == "extract_aac":
        return presets.extract_aac(source, output_path, body.audio_bitrate)
    if body.action == "snapshot":
        return presets.snapshot(source, output_path, max(0.0, body.at))
    if body.action == "remux":
        return presets.remux(source, output_path)
    return presets.transcode_mp4_h264_aac(source, output_path, body.crf, body.preset)


def _allocate_output(suffix: str, work_dir: Optional[str]) -> str:
    fd, path = tempfile.mkstemp(prefix="ffout-", suffix=suffix, dir=work_dir)
    os.close(fd)
    return path


@router.post("", response_model=CreateJobResponse, status_code=202)
def create_job(body: CreateJobRequest, request: Request):
    """
    Start a preset job.

    Status codes:
        400: Bad input
        503: ffmpeg is not available
    """
    engine = request.app.state.engine
    try:
        source = resolve_input(body.input)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        engine.tool.ensure_ready()
    except (ToolNotFoundError, ToolUnhealthyError) as e:
        raise HTTPException(status_code=503, detail=str(e))

    out_name = (body.out_name or "").strip() or presets.DEFAULT_OUTPUT_NAMES[body.action]
    output_path = _allocate_output(output_suffix(out_name), request.app.state.settings.work_dir)
    command = build_command(body, source, output_path)

    job_id = engine.start_job(command, output_path, out_name, input_ref=source)
    logger.info(f"[API] Job {job_id} started: {body.action} {source}")
    return CreateJobResponse(
        id=job_id,
        status=JobStatus.CREATED,
        events=f"/jobs/{job_id}/events",
        download=f"/jobs/{job_id}/download",
    )


@router.get("", response_model=List[JobView])
def list_jobs(request: Request):
    return [job.view() for job in request.app.state.store.list()]


@router.get("/{job_id}", response_model=JobView)
def get_job(job_id: str, request: Request):
    try:
        return request.app.state.engine.get_job(job_id).view()
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")


@router.post("/{job_id}/cancel", response_model=JobView)
def cancel_job(job_id: str, request: Request):
    engine = request.app.state.engine
    try:
        engine.cancel_job(job_id)
        return engine.get_job(job_id).view()
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")


@router.get("/{job_id}/events")
async def job_events(job_id: str, request: Request):
    """
    Server-sent event stream: current status first, then live events.

    Runs on the event loop; an idle viewer holds no threadpool worker.
    """
    try:
        events = request.app.state.engine.events_async(job_id, heartbeat=KEEP_ALIVE_SECONDS)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return StreamingResponse(sse_stream(events), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/{job_id}/download")
def download(job_id: str, request: Request):
    """
    Status codes:
        404: Unknown or evicted job
        400: Job not done
    """
    try:
        path, name = request.app.state.engine.get_artifact(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    except ArtifactNotReadyError:
        raise HTTPException(status_code=400, detail="job not done")
    return FileResponse(path, filename=sanitize_filename(name))
