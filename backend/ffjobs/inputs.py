"""
Input and output naming rules for jobs submitted over HTTP.

Remote inputs are limited to http/https URLs with a host; other schemes
(file, rtsp, concat, ...) would let a caller make ffmpeg read anything
the server can reach. Local inputs must be existing regular files.
"""

import os
from urllib.parse import urlparse

DEFAULT_DOWNLOAD_NAME = "output.bin"
ALLOWED_SCHEMES = ("http", "https")


class InputError(ValueError):
    """Raised when a job input or output name is unacceptable."""
    pass


def is_remote(source: str) -> bool:
    return "://" in source


def validate_remote_url(raw: str) -> str:
    """
    Raises:
        InputError: If `raw` is not a complete http(s) URL
    """
    try:
        parsed = urlparse(raw)
    except ValueError as e:
        raise InputError(f"invalid URL: {e}") from e
    if not parsed.scheme or not parsed.netloc:
        raise InputError("must be a complete URL (e.g. https://example.com/a.mp4)")
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InputError(f"scheme {parsed.scheme!r} not allowed, only http/https")
    return raw


def resolve_input(source: str) -> str:
    """
    Validate a job input and return the value handed to ffmpeg.

    Raises:
        InputError: Empty input, bad URL, or missing local file
    """
    source = (source or "").strip()
    if not source:
        raise InputError("input is required")
    if is_remote(source):
        return validate_remote_url(source)
    path = os.path.abspath(source)
    if not os.path.isfile(path):
        raise InputError(f"input file not found: {source}")
    return path


def output_suffix(name: str) -> str:
    ext = os.path.splitext(name)[1]
    return ext or ".bin"


def sanitize_filename(name: str) -> str:
    """Make `name` safe for a Content-Disposition header."""
    for ch in ('"', "\n", "\r"):
        name = name.replace(ch, "")
    name = os.path.basename(name.replace("\\", "/")).strip()
    return name or DEFAULT_DOWNLOAD_NAME
