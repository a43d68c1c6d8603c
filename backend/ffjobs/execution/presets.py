"""
Command presets.

Pure data: each function returns a fully built FFmpegCommand for one
common operation. Defaults match the upload form of the HTTP layer.
"""

from typing import Optional

from .command import FFmpegCommand


DEFAULT_CRF = 23
DEFAULT_X264_PRESET = "medium"
DEFAULT_AUDIO_BITRATE = "128k"


def _base() -> FFmpegCommand:
    return FFmpegCommand().hide_banner().log_level("error")


def transcode_mp4_h264_aac(
    input_path: str,
    output_path: str,
    crf: Optional[int] = None,
    preset: Optional[str] = None,
) -> FFmpegCommand:
    """Transcode to MP4 (H.264 + AAC) with the moov atom up front."""
    if not crf or crf <= 0:
        crf = DEFAULT_CRF
    if not preset:
        preset = DEFAULT_X264_PRESET
    return (
        _base()
        .input(input_path)
        .video_codec("libx264")
        .audio_codec("aac")
        .crf(crf)
        .preset(preset)
        .movflags_faststart()
        .output(output_path)
    )


def remux(input_path: str, output_path: str) -> FFmpegCommand:
    """Change container only, streams copied as-is."""
    return (
        _base()
        .input(input_path)
        .copy_video()
        .copy_audio()
        .output(output_path)
    )


def extract_aac(
    input_path: str,
    output_path: str,
    bitrate: Optional[str] = None,
) -> FFmpegCommand:
    """Drop video and encode the audio track to AAC."""
    return (
        _base()
        .input(input_path)
        .no_video()
        .audio_codec("aac")
        .audio_bitrate(bitrate or DEFAULT_AUDIO_BITRATE)
        .output(output_path)
    )


def snapshot(input_path: str, output_path: str, at_seconds: float = 0.0) -> FFmpegCommand:
    """
    Grab a single frame at `at_seconds`.

    -ss goes before -i for a fast seek; precision is bounded by the GOP.
    """
    return (
        _base()
        .start_at(max(0.0, at_seconds))
        .input(input_path)
        .frames(1)
        .output(output_path)
    )


PRESETS = {
    "transcode": transcode_mp4_h264_aac,
    "remux": remux,
    "extract_aac": extract_aac,
    "snapshot": snapshot,
}

# Default output names per action when the caller gives none
DEFAULT_OUTPUT_NAMES = {
    "transcode": "out.mp4",
    "remux": "out.mp4",
    "extract_aac": "out.aac",
    "snapshot": "shot.jpg",
}
