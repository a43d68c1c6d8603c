"""
ffprobe collaborator.

Request/response only: run ffprobe once, parse its JSON dump into typed
models. Shares the readiness cache and error taxonomy with FFmpegTool.
"""

import json
import logging
import subprocess
from fractions import Fraction
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .execution.errors import (
    DecodeFailedError,
    ExecutionTimeoutError,
    LaunchFailedError,
    ProcessFailedError,
)
from .execution.tool import ExternalTool

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 15.0


class ProbeStream(BaseModel):
    """One entry of ffprobe's "streams" array."""

    model_config = ConfigDict(extra="allow")

    index: int = 0
    codec_name: str = ""
    codec_long_name: str = ""
    codec_type: str = ""  # video / audio / subtitle / data
    profile: str = ""
    width: int = 0
    height: int = 0
    pix_fmt: str = ""
    r_frame_rate: str = ""  # e.g. "30000/1001"
    avg_frame_rate: str = ""
    time_base: str = ""
    bit_rate: str = ""
    sample_rate: str = ""
    channels: int = 0
    channel_layout: str = ""
    duration: str = ""
    disposition: Dict[str, int] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)


class ProbeFormat(BaseModel):
    """ffprobe's "format" object."""

    model_config = ConfigDict(extra="allow")

    filename: str = ""
    nb_streams: int = 0
    nb_programs: int = 0
    format_name: str = ""
    format_long_name: str = ""
    start_time: str = ""
    duration: str = ""
    size: str = ""
    bit_rate: str = ""
    probe_score: int = 0
    tags: Dict[str, str] = Field(default_factory=dict)


class ProbeResult(BaseModel):
    """Output of `ffprobe -show_format -show_streams -of json`."""

    model_config = ConfigDict(extra="allow")

    streams: List[ProbeStream] = Field(default_factory=list)
    format: ProbeFormat = Field(default_factory=ProbeFormat)

    def first_video(self) -> Optional[ProbeStream]:
        return next((s for s in self.streams if s.codec_type == "video"), None)

    def first_audio(self) -> Optional[ProbeStream]:
        return next((s for s in self.streams if s.codec_type == "audio"), None)


# ============================================================================
# Frames, packets, chapters, programs (-show_frames etc.)
# ============================================================================

class ProbeFrame(BaseModel):
    """One decoded frame from -show_frames."""

    model_config = ConfigDict(extra="allow")

    media_type: str = ""  # video / audio
    stream_index: int = 0
    key_frame: int = 0  # 1 or 0
    pict_type: str = ""  # I / P / B
    pts_time: str = ""
    pkt_dts_time: str = ""
    best_effort_timestamp_time: str = ""
    pkt_duration_time: str = ""
    width: int = 0
    height: int = 0
    pix_fmt: str = ""
    sample_rate: str = ""
    nb_samples: int = 0
    channels: int = 0
    tags: Dict[str, str] = Field(default_factory=dict)
    side_data_list: List[Dict[str, Any]] = Field(default_factory=list)


class ProbePacket(BaseModel):
    """One demuxed packet from -show_packets."""

    model_config = ConfigDict(extra="allow")

    codec_type: str = ""
    stream_index: int = 0
    pts: Optional[int] = None
    pts_time: str = ""
    dts: Optional[int] = None
    dts_time: str = ""
    duration: Optional[int] = None
    duration_time: str = ""
    size: str = ""
    pos: str = ""
    flags: str = ""  # "K__" for key packets


class ProbeChapter(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int = 0
    time_base: str = ""
    start: int = 0
    start_time: str = ""
    end: int = 0
    end_time: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)


class ProbeProgram(BaseModel):
    model_config = ConfigDict(extra="allow")

    program_id: int = 0
    program_num: int = 0
    nb_streams: int = 0
    tags: Dict[str, str] = Field(default_factory=dict)


class FramesResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    frames: List[ProbeFrame] = Field(default_factory=list)


class PacketsResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    packets: List[ProbePacket] = Field(default_factory=list)


class ChaptersResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    chapters: List[ProbeChapter] = Field(default_factory=list)


class ProgramsResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    programs: List[ProbeProgram] = Field(default_factory=list)


M = TypeVar("M", bound=BaseModel)


def _validate(model: Type[M], document: Dict[str, Any]) -> M:
    try:
        return model.model_validate(document)
    except ValidationError as e:
        raise DecodeFailedError(f"unexpected ffprobe json: {e}") from e


class FFprobeTool(ExternalTool):
    """
    ffprobe wrapper.

    Usage:
        tool = FFprobeTool(timeout=25)
        info = tool.probe("input.mp4")
        video = info.first_video()
    """

    name = "ffprobe"

    def __init__(self, path: Optional[str] = None, timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT):
        super().__init__(path=path, timeout=timeout or DEFAULT_PROBE_TIMEOUT)

    def probe(self, source: str) -> ProbeResult:
        """
        Probe format and streams of `source` (local path or URL).

        Raises:
            ToolNotFoundError / ToolUnhealthyError: ffprobe unusable
            ExecutionTimeoutError: Probe exceeded the tool timeout
            ProcessFailedError: ffprobe exited non-zero
            DecodeFailedError: Output was not the expected JSON document
        """
        return self.parse(self.probe_raw(source))

    @staticmethod
    def parse(document: Dict[str, Any]) -> ProbeResult:
        """
        Raises:
            DecodeFailedError: Document does not match the probe schema
        """
        return _validate(ProbeResult, document)

    def probe_raw(self, source: str) -> Dict[str, Any]:
        """Run the format/streams probe and return the JSON document as-is."""
        return self._run_json(source, ["-show_format", "-show_streams"])

    def probe_frames(self, source: str, select_streams: str = "", read_intervals: str = "") -> FramesResult:
        """
        Decode frames and report them one by one.

        Args:
            select_streams: Stream specifier such as "v:0" or "a:0", all if empty
            read_intervals: Limit the read, e.g. "0%+5" for the first 5 seconds
        """
        options = ["-show_frames"]
        if select_streams:
            options += ["-select_streams", select_streams]
        if read_intervals:
            options += ["-read_intervals", read_intervals]
        return _validate(FramesResult, self._run_json(source, options))

    def probe_packets(self, source: str, select_streams: str = "") -> PacketsResult:
        options = ["-show_packets"]
        if select_streams:
            options += ["-select_streams", select_streams]
        return _validate(PacketsResult, self._run_json(source, options))

    def probe_chapters(self, source: str) -> ChaptersResult:
        return _validate(ChaptersResult, self._run_json(source, ["-show_chapters"]))

    def probe_programs(self, source: str) -> ProgramsResult:
        return _validate(ProgramsResult, self._run_json(source, ["-show_programs"]))

    def _run_json(self, source: str, options: List[str]) -> Dict[str, Any]:
        """
        Run ffprobe with `options` and JSON output, return the document.

        Raises:
            ToolNotFoundError / ToolUnhealthyError: ffprobe unusable
            ExecutionTimeoutError: Probe exceeded the tool timeout
            ProcessFailedError: ffprobe exited non-zero
            DecodeFailedError: Output was not a JSON object
        """
        readiness = self.ensure_ready()
        args = [
            readiness.resolved_path,
            "-v", "error",
            "-hide_banner",
            *options,
            "-of", "json",
            source,
        ]
        logger.debug(f"[FFprobe] Executing: {' '.join(args)}")

        try:
            completed = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise ExecutionTimeoutError(self.name, self.timeout, stderr=stderr) from e
        except OSError as e:
            raise LaunchFailedError(f"{self.name} start: {e}") from e

        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        if completed.returncode != 0:
            raise ProcessFailedError(self.name, completed.returncode, stderr=stderr)

        try:
            document = json.loads(completed.stdout)
        except ValueError as e:
            raise DecodeFailedError(f"parse ffprobe json: {e}", stderr=stderr) from e
        if not isinstance(document, dict):
            raise DecodeFailedError("parse ffprobe json: top level is not an object", stderr=stderr)
        return document


# ============================================================================
# Human-readable summary
# ============================================================================

class VideoView(BaseModel):
    codec: str = ""
    profile: str = ""
    resolution: str = ""
    fps_label: str = ""
    pix_fmt: str = ""
    bitrate: int = 0


class AudioView(BaseModel):
    codec: str = ""
    profile: str = ""
    sample_rate: int = 0
    channels: int = 0
    layout: str = ""
    bitrate: int = 0


class ProbeView(BaseModel):
    """Condensed probe result for display."""

    source: str
    tool_version: str = ""
    container: str = ""
    duration_seconds: float = 0.0
    size_bytes: int = 0
    total_bitrate: int = 0
    video: Optional[VideoView] = None
    audio: Optional[AudioView] = None


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def frame_rate(value: str) -> float:
    """Parse "30000/1001" or "25" into frames per second, 0.0 if unusable."""
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return float(rate)


def fps_label(r_frame_rate: str, avg_frame_rate: str) -> str:
    """Label like "29.97 fps", flagging variable frame rate when r and avg differ."""
    real = frame_rate(r_frame_rate)
    avg = frame_rate(avg_frame_rate)
    if real <= 0 and avg <= 0:
        return ""
    if real > 0 and avg > 0 and abs(real - avg) > 0.01:
        return f"{avg:.3f} fps (VFR, r={real:.3f})"
    return f"{(avg or real):.3f}".rstrip("0").rstrip(".") + " fps"


def summarize(result: ProbeResult, source: str, tool_version: str = "") -> ProbeView:
    fmt = result.format
    view = ProbeView(
        source=source,
        tool_version=tool_version,
        container=fmt.format_long_name or fmt.format_name,
        duration_seconds=_to_float(fmt.duration),
        size_bytes=_to_int(fmt.size),
        total_bitrate=_to_int(fmt.bit_rate),
    )

    video = result.first_video()
    if video is not None:
        view.video = VideoView(
            codec=video.codec_name,
            profile=video.profile,
            resolution=f"{video.width}x{video.height}" if video.width and video.height else "",
            fps_label=fps_label(video.r_frame_rate, video.avg_frame_rate),
            pix_fmt=video.pix_fmt,
            bitrate=_to_int(video.bit_rate),
        )

    audio = result.first_audio()
    if audio is not None:
        view.audio = AudioView(
            codec=audio.codec_name,
            profile=audio.profile,
            sample_rate=_to_int(audio.sample_rate),
            channels=audio.channels,
            layout=audio.channel_layout,
            bitrate=_to_int(audio.bit_rate),
        )

    return view


# ============================================================================
# Frame and packet digests
# ============================================================================

class FramesSummary(BaseModel):
    total: int = 0
    key_frames: int = 0
    i_frames: int = 0
    p_frames: int = 0
    b_frames: int = 0


class PacketsSummary(BaseModel):
    total: int = 0
    video: int = 0
    audio: int = 0


def key_frames_only(frames: List[ProbeFrame]) -> List[ProbeFrame]:
    """Video key frames, in order."""
    return [f for f in frames if f.media_type == "video" and f.key_frame == 1]


def summarize_frames(frames: List[ProbeFrame]) -> FramesSummary:
    """Count key frames and I/P/B picture types among video frames."""
    summary = FramesSummary(total=len(frames))
    for frame in frames:
        if frame.media_type != "video":
            continue
        if frame.key_frame == 1:
            summary.key_frames += 1
        pict_type = frame.pict_type.upper()
        if pict_type == "I":
            summary.i_frames += 1
        elif pict_type == "P":
            summary.p_frames += 1
        elif pict_type == "B":
            summary.b_frames += 1
    return summary


def summarize_packets(packets: List[ProbePacket]) -> PacketsSummary:
    summary = PacketsSummary(total=len(packets))
    for packet in packets:
        if packet.codec_type == "video":
            summary.video += 1
        elif packet.codec_type == "audio":
            summary.audio += 1
    return summary
