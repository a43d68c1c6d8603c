"""
FFmpeg progress decoding.

With `-progress pipe:1 -nostats` ffmpeg writes machine-readable progress
to stdout, one key=value pair per line:

    frame=24
    fps=12.00
    bitrate= 512.3kbits/s
    out_time_ms=1000000
    speed=1.02x
    progress=continue

Each block ends with progress=continue, the final one with progress=end.
out_time_ms is in microseconds despite its name.

Decoding never fails. Lines without "=" or with an empty key are ignored,
malformed numbers keep the previous value, unknown keys are kept verbatim.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional

# Plain ASCII decimal forms; " 7", "1_000" and the like are malformed
_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE,
)


@dataclass
class ProgressSnapshot:
    """Decoded progress state of a running ffmpeg invocation."""

    frame: int = 0
    fps: float = 0.0
    bitrate: str = ""
    speed: str = ""

    # Microseconds of output written so far
    out_time_ms: int = 0

    # Set by progress=end
    done: bool = False

    # Keys this decoder does not know (total_size, dup_frames, ...)
    extra: Dict[str, str] = field(default_factory=dict)

    def copy(self) -> "ProgressSnapshot":
        return replace(self, extra=dict(self.extra))

    @property
    def out_time_seconds(self) -> float:
        return self.out_time_ms / 1_000_000

    def to_payload(self) -> Dict[str, Any]:
        """Subset published to job subscribers."""
        return {
            "frame": self.frame,
            "fps": self.fps,
            "bitrate": self.bitrate,
            "out_time_ms": self.out_time_ms,
            "speed": self.speed,
        }


class ProgressDecoder:
    """
    Fold key=value progress lines into a ProgressSnapshot.

    Usage:
        decoder = ProgressDecoder()
        for line in ffmpeg_stdout:
            snapshot = decoder.feed(line)
            if snapshot.done:
                break
    """

    def __init__(self):
        self._snapshot = ProgressSnapshot()

    def feed(self, line: str) -> ProgressSnapshot:
        """
        Fold one line into the running snapshot.

        Returns:
            The live snapshot (use .copy() to keep it)
        """
        line = line.strip()
        if not line:
            return self._snapshot

        key, sep, value = line.partition("=")
        if not sep or not key:
            return self._snapshot

        self._apply(key, value)
        return self._snapshot

    def _apply(self, key: str, value: str) -> None:
        p = self._snapshot
        if key == "frame":
            parsed = _parse_int(value)
            if parsed is not None:
                p.frame = parsed
        elif key == "fps":
            parsed_fps = _parse_float(value)
            if parsed_fps is not None:
                p.fps = parsed_fps
        elif key == "bitrate":
            p.bitrate = value
        elif key == "speed":
            p.speed = value
        elif key == "out_time_ms":
            parsed = _parse_int(value)
            if parsed is not None:
                p.out_time_ms = parsed
        elif key == "progress":
            p.done = value == "end"
        else:
            p.extra[key] = value

    @property
    def done(self) -> bool:
        return self._snapshot.done

    def snapshot(self) -> ProgressSnapshot:
        """Get a detached copy of the current state."""
        return self._snapshot.copy()

    def reset(self) -> None:
        self._snapshot = ProgressSnapshot()


def _parse_int(value: str) -> Optional[int]:
    if not _INT_RE.fullmatch(value):
        return None
    return int(value)


def _parse_float(value: str) -> Optional[float]:
    if not _FLOAT_RE.fullmatch(value):
        return None
    return float(value)


def decode_lines(lines: Iterable[str]) -> ProgressSnapshot:
    """
    Decode a whole sequence of lines, stopping at progress=end.

    Lines after the end marker are not read.
    """
    decoder = ProgressDecoder()
    for line in lines:
        if decoder.feed(line).done:
            break
    return decoder.snapshot()


def format_out_time(micros: int) -> str:
    """Render microseconds as HH:MM:SS.ss for display."""
    if micros < 0:
        micros = 0
    total = micros / 1_000_000
    hours = int(total // 3600)
    minutes = int((total % 3600) // 60)
    seconds = total % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:05.2f}"
