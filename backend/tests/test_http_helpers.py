"""
Tests for SSE framing and input validation helpers.
"""

import asyncio

import pytest

from ffjobs.inputs import (
    DEFAULT_DOWNLOAD_NAME,
    InputError,
    output_suffix,
    resolve_input,
    sanitize_filename,
    validate_remote_url,
)
from ffjobs.jobs.models import JobEvent
from ffjobs.sse import KEEP_ALIVE, format_sse, sse_stream


class TestFormatSSE:
    def test_frame(self):
        assert format_sse("status", "running") == b"event: status\ndata: running\n\n"

    def test_newlines_escaped_and_cr_stripped(self):
        frame = format_sse("error", "line one\r\nline two\n")
        assert frame == b"event: error\ndata: line one\\nline two\\n\n\n"
        assert frame.count(b"\n") == 3

    def test_stream_stops_after_terminal(self):
        closed = []

        async def source():
            try:
                yield JobEvent("status", "running")
                yield None
                yield JobEvent("done", '{"name":"out.mp4"}')
                yield JobEvent("status", "ignored")
            finally:
                closed.append(True)

        async def collect():
            return [frame async for frame in sse_stream(source())]

        frames = asyncio.run(collect())
        assert closed == [True]
        assert frames == [
            b"event: status\ndata: running\n\n",
            KEEP_ALIVE,
            b'event: done\ndata: {"name":"out.mp4"}\n\n',
        ]


class TestInputs:
    @pytest.mark.parametrize("url", [
        "http://example.com/a.mp4",
        "HTTPS://cdn.example.com/v/b.mov?sig=1",
    ])
    def test_valid_urls(self, url):
        assert validate_remote_url(url) == url

    @pytest.mark.parametrize("url", [
        "file:///etc/passwd",
        "rtsp://camera.local/stream",
        "https://",
        "example.com/a.mp4",
    ])
    def test_rejected_urls(self, url):
        with pytest.raises(InputError):
            validate_remote_url(url)

    def test_resolve_local_file(self, media_file):
        assert resolve_input(f"  {media_file}  ") == media_file

    def test_resolve_missing_file(self, tmp_path):
        with pytest.raises(InputError):
            resolve_input(str(tmp_path / "nope.mov"))

    def test_resolve_empty(self):
        with pytest.raises(InputError):
            resolve_input("   ")

    def test_resolve_rejects_other_schemes(self):
        with pytest.raises(InputError):
            resolve_input("concat://a.mp4|b.mp4")

    @pytest.mark.parametrize("name,expected", [
        ("out.mp4", "out.mp4"),
        ('my "clip".mp4', "my clip.mp4"),
        ("evil\r\nX-Header: 1.mp4", "evilX-Header: 1.mp4"),
        ("../../etc/passwd", "passwd"),
        ('  "" ', DEFAULT_DOWNLOAD_NAME),
        ("", DEFAULT_DOWNLOAD_NAME),
    ])
    def test_sanitize_filename(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_output_suffix(self):
        assert output_suffix("shot.jpg") == ".jpg"
        assert output_suffix("noext") == ".bin"
