"""
FFmpeg command builder.

An ordered argument list with fluent mutators. Every flag that takes a
value is appended together with its value, so the list is always a
complete invocation.

The builder is owned by its caller. RunSupervisor snapshots args() at
launch; mutating the builder afterwards never reaches an in-flight run.
"""

from typing import List


def trim_float(value: float) -> str:
    """Format seconds with at most millisecond precision, no trailing zeros."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text


class FFmpegCommand:
    """
    Fluent ffmpeg argument builder.

    Usage:
        cmd = (
            FFmpegCommand()
            .hide_banner()
            .input("in.mov")
            .video_codec("libx264")
            .output("out.mp4")
        )
        args = cmd.args()
    """

    def __init__(self):
        # Overwrite by default so ffmpeg never stops to ask on stdin
        self._args: List[str] = ["-y"]

    def args(self) -> List[str]:
        """Return a copy of the argument list."""
        return list(self._args)

    def append_args(self, *args: str) -> "FFmpegCommand":
        self._args.extend(str(a) for a in args)
        return self

    def hide_banner(self) -> "FFmpegCommand":
        return self.append_args("-hide_banner")

    def log_level(self, level: str) -> "FFmpegCommand":
        """Set verbosity: "error", "warning", "info", "quiet"."""
        return self.append_args("-v", level)

    def input(self, path: str) -> "FFmpegCommand":
        return self.append_args("-i", path)

    def overwrite(self, on: bool) -> "FFmpegCommand":
        """
        Set the overwrite policy.

        on=True keeps the default "-y". on=False removes every "-y" and
        appends "-n" so ffmpeg refuses to clobber an existing output.
        """
        if on:
            if "-y" not in self._args:
                self._args = [a for a in self._args if a != "-n"]
                self._args.insert(0, "-y")
            return self
        self._args = [a for a in self._args if a != "-y"]
        if "-n" not in self._args:
            self._args.append("-n")
        return self

    def output(self, path: str) -> "FFmpegCommand":
        return self.append_args(path)

    def video_codec(self, codec: str) -> "FFmpegCommand":
        return self.append_args("-c:v", codec)

    def audio_codec(self, codec: str) -> "FFmpegCommand":
        return self.append_args("-c:a", codec)

    def copy_video(self) -> "FFmpegCommand":
        return self.video_codec("copy")

    def copy_audio(self) -> "FFmpegCommand":
        return self.audio_codec("copy")

    def no_video(self) -> "FFmpegCommand":
        return self.append_args("-vn")

    def video_bitrate(self, bitrate: str) -> "FFmpegCommand":
        return self.append_args("-b:v", bitrate)

    def audio_bitrate(self, bitrate: str) -> "FFmpegCommand":
        return self.append_args("-b:a", bitrate)

    def crf(self, value: int) -> "FFmpegCommand":
        return self.append_args("-crf", str(int(value)))

    def preset(self, name: str) -> "FFmpegCommand":
        return self.append_args("-preset", name)

    def tune(self, name: str) -> "FFmpegCommand":
        return self.append_args("-tune", name)

    def movflags_faststart(self) -> "FFmpegCommand":
        return self.append_args("-movflags", "+faststart")

    def map(self, spec: str) -> "FFmpegCommand":
        # e.g. "0:v:0" or "0:a?"
        return self.append_args("-map", spec)

    def video_filters(self, *filters: str) -> "FFmpegCommand":
        """Append one -vf chain built from the given filters, comma-joined."""
        chain = ",".join(f for f in filters if f)
        if not chain:
            return self
        return self.append_args("-vf", chain)

    def scale(self, width: int, height: int) -> "FFmpegCommand":
        return self.video_filters(f"scale={int(width)}:{int(height)}")

    def fps(self, rate: str) -> "FFmpegCommand":
        # "30" or "30000/1001"
        return self.append_args("-r", str(rate))

    def frames(self, count: int) -> "FFmpegCommand":
        return self.append_args("-frames:v", str(int(count)))

    def start_at(self, seconds: float) -> "FFmpegCommand":
        """
        Seek to `seconds`.

        Placed before input() this is a fast keyframe seek, after input()
        it is frame accurate.
        """
        return self.append_args("-ss", trim_float(seconds))

    def __repr__(self) -> str:
        return f"FFmpegCommand({self._args!r})"
