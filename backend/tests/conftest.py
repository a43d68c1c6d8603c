"""
Shared fixtures for the ffjobs test suite.

Most tests run against a fake ffmpeg: a small Python script written into
tmp_path that answers -version, prints -progress blocks, writes its
output file and fails on demand. Behavior is steered through FAKE_FFMPEG_*
environment variables set with monkeypatch.
"""

import os
import stat
import sys
import textwrap

import pytest

FAKE_FFMPEG = textwrap.dedent(
    """\
    #!{python}
    import os
    import sys
    import time

    args = sys.argv[1:]
    env = os.environ

    counter = env.get("FAKE_FFMPEG_COUNTER")
    if "-version" in args:
        if counter:
            with open(counter, "a") as f:
                f.write("x")
        delay = float(env.get("FAKE_FFMPEG_VERSION_SLEEP", "0"))
        if delay:
            time.sleep(delay)
        if env.get("FAKE_FFMPEG_VERSION_FAIL"):
            sys.stderr.write("broken install\\n")
            sys.exit(3)
        print(env.get("FAKE_FFMPEG_BANNER", "ffmpeg version 6.1.1-fake Copyright (c) 2000-2023"))
        sys.exit(0)

    sys.stderr.write(env.get("FAKE_FFMPEG_STDERR", ""))
    sys.stderr.flush()

    flood = int(env.get("FAKE_FFMPEG_TERM_FLOOD", "0"))
    if flood:
        import signal

        def on_term(signum, frame):
            sys.stdout.write("x" * flood + "\\n")
            sys.stdout.flush()
            sys.exit(255)

        signal.signal(signal.SIGTERM, on_term)

    blocks = int(env.get("FAKE_FFMPEG_BLOCKS", "3"))
    sleep = float(env.get("FAKE_FFMPEG_SLEEP", "0"))
    progress = "-progress" in args

    for i in range(1, blocks + 1):
        if progress:
            sys.stdout.write(
                "frame=%d\\nfps=25.0\\nbitrate=1000.0kbits/s\\n"
                "out_time_ms=%d\\nspeed=1.0x\\nprogress=continue\\n" % (i * 10, i * 400000)
            )
            sys.stdout.flush()
        if sleep:
            time.sleep(sleep)
    if progress:
        sys.stdout.write("progress=end\\n")
        sys.stdout.flush()

    out = args[-1] if args else ""
    if progress:
        out = args[args.index("-progress") - 1]
    if out and not out.startswith("-"):
        try:
            with open(out, "w") as f:
                f.write("fake media")
        except OSError as e:
            sys.stderr.write("%s: %s\\n" % (out, e))
            sys.exit(1)

    sys.exit(int(env.get("FAKE_FFMPEG_EXIT", "0")))
    """
)

FAKE_FFPROBE = textwrap.dedent(
    """\
    #!{python}
    import json
    import os
    import sys

    args = sys.argv[1:]
    if "-version" in args:
        print("ffprobe version 6.1.1-fake Copyright (c) 2007-2023")
        sys.exit(0)
    if os.environ.get("FAKE_FFPROBE_GARBAGE"):
        print("not json")
        sys.exit(0)
    source = args[-1]
    if not os.path.exists(source):
        sys.stderr.write("%s: No such file or directory\\n" % source)
        sys.exit(1)

    record = os.environ.get("FAKE_FFPROBE_ARGS")
    if record:
        with open(record, "w") as f:
            json.dump(args, f)
    selected = ""
    if "-select_streams" in args:
        selected = args[args.index("-select_streams") + 1]

    if "-show_frames" in args:
        frames = [
            {{"media_type": "video", "key_frame": 1, "pict_type": "I", "pts_time": "0.000000", "width": 1920}},
            {{"media_type": "video", "key_frame": 0, "pict_type": "B", "pts_time": "0.033367", "width": 1920}},
            {{"media_type": "audio", "key_frame": 1, "nb_samples": 1024, "sample_rate": "48000"}},
            {{"media_type": "video", "key_frame": 0, "pict_type": "P", "pts_time": "0.066733", "width": 1920}},
            {{"media_type": "video", "key_frame": 1, "pict_type": "I", "pts_time": "2.002000", "width": 1920}},
            {{"media_type": "video", "key_frame": 0, "pict_type": "P", "pts_time": "2.035367", "width": 1920}},
        ]
        if selected.startswith("v"):
            frames = [f for f in frames if f["media_type"] == "video"]
        print(json.dumps({{"frames": frames}}))
        sys.exit(0)
    if "-show_packets" in args:
        packets = [
            {{"codec_type": "video", "stream_index": 0, "pts": 0, "pts_time": "0.000000", "size": "5120", "flags": "K__"}},
            {{"codec_type": "audio", "stream_index": 1, "pts": 0, "pts_time": "0.000000", "size": "371", "flags": "K__"}},
            {{"codec_type": "video", "stream_index": 0, "pts": 1001, "pts_time": "0.033367", "size": "880", "flags": "___"}},
            {{"codec_type": "video", "stream_index": 0, "pts": 2002, "pts_time": "0.066733", "size": "912", "flags": "___"}},
            {{"codec_type": "audio", "stream_index": 1, "pts": 1024, "pts_time": "0.021333", "size": "368", "flags": "K__"}},
        ]
        if selected.startswith("a"):
            packets = [p for p in packets if p["codec_type"] == "audio"]
        print(json.dumps({{"packets": packets}}))
        sys.exit(0)
    if "-show_chapters" in args:
        print(json.dumps({{"chapters": [
            {{"id": 0, "time_base": "1/1000", "start": 0, "start_time": "0.000000",
             "end": 6000, "end_time": "6.000000", "tags": {{"title": "Intro"}}}},
            {{"id": 1, "time_base": "1/1000", "start": 6000, "start_time": "6.000000",
             "end": 12500, "end_time": "12.500000", "tags": {{"title": "Main"}}}}
        ]}}))
        sys.exit(0)
    if "-show_programs" in args:
        print(json.dumps({{"programs": []}}))
        sys.exit(0)
    print(json.dumps({{
        "streams": [
            {{"index": 0, "codec_type": "video", "codec_name": "h264", "profile": "High",
             "width": 1920, "height": 1080, "pix_fmt": "yuv420p",
             "r_frame_rate": "30000/1001", "avg_frame_rate": "30000/1001", "bit_rate": "4000000"}},
            {{"index": 1, "codec_type": "audio", "codec_name": "aac", "profile": "LC",
             "sample_rate": "48000", "channels": 2, "channel_layout": "stereo", "bit_rate": "128000"}}
        ],
        "format": {{"filename": source, "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
                   "format_long_name": "QuickTime / MOV", "duration": "12.5",
                   "size": "6400000", "bit_rate": "4096000"}}
    }}))
    """
)


def _write_script(path, body):
    path.write_text(body.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Absolute path of an executable fake ffmpeg."""
    if os.name == "nt":
        pytest.skip("fake ffmpeg relies on a shebang script")
    return _write_script(tmp_path / "ffmpeg", FAKE_FFMPEG)


@pytest.fixture
def fake_ffprobe(tmp_path):
    """Absolute path of an executable fake ffprobe."""
    if os.name == "nt":
        pytest.skip("fake ffprobe relies on a shebang script")
    return _write_script(tmp_path / "ffprobe", FAKE_FFPROBE)


@pytest.fixture
def media_file(tmp_path):
    """An existing input file; its content is never decoded."""
    path = tmp_path / "input.mov"
    path.write_bytes(b"\x00" * 64)
    return str(path)
