"""
ffjobs CLI - thin entrypoint for operator commands.

Commands:
- version: check ffmpeg/ffprobe and print their versions
- run:     run ffmpeg with the given arguments, printing progress lines
- serve:   start the HTTP service

Design Principles:
==================
- CLI is a dispatcher only
- Surface errors verbatim from the execution layer
- Exit non-zero on failure

Exit Codes:
===========
- 0: Success
- 1: Validation error (bad arguments, bad settings)
- 2: Execution error (ffmpeg failed, timed out, was interrupted)
- 4: System error (binary missing or unusable)
"""

import argparse
import sys
from typing import List, NoReturn, Optional

from . import __version__
from .execution.command import FFmpegCommand
from .execution.errors import ExecutionError, ToolNotFoundError, ToolUnhealthyError
from .execution.progress import ProgressSnapshot, format_out_time
from .execution.runner import RunScope
from .execution.tool import FFmpegTool
from .logging_config import configure_logging
from .probe import FFprobeTool
from .settings import ServiceSettings, SettingsError

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_EXECUTION = 2
EXIT_SYSTEM = 4


def _load_settings() -> ServiceSettings:
    try:
        return ServiceSettings.from_env()
    except SettingsError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)


def format_progress(snapshot: ProgressSnapshot) -> str:
    line = (
        f"frame={snapshot.frame} fps={snapshot.fps:g} "
        f"time={format_out_time(snapshot.out_time_ms)} "
        f"bitrate={snapshot.bitrate or '-'} speed={snapshot.speed or '-'}"
    )
    if snapshot.done:
        line += " (end)"
    return line


def cmd_version(args: argparse.Namespace) -> NoReturn:
    """
    Print ffjobs, ffmpeg and ffprobe versions.

    Exit codes:
        0: Both tools ready
        4: A tool is missing or unusable
    """
    settings = _load_settings()
    print(f"ffjobs {__version__}")
    exit_code = EXIT_OK
    for tool in (FFmpegTool(path=settings.ffmpeg_path), FFprobeTool(path=settings.ffprobe_path)):
        try:
            result = tool.ensure_ready()
            print(f"{tool.name} {result.version} ({result.resolved_path})")
        except ExecutionError as e:
            print(f"✗ {e}", file=sys.stderr)
            exit_code = EXIT_SYSTEM
    sys.exit(exit_code)


def cmd_run(args: argparse.Namespace) -> NoReturn:
    """
    Run ffmpeg with the remaining arguments and stream progress to stdout.

    Exit codes:
        0: ffmpeg exited cleanly
        1: No arguments
        2: ffmpeg failed, timed out or was interrupted
        4: ffmpeg missing or unusable
    """
    ffmpeg_args: List[str] = list(args.ffmpeg_args)
    if ffmpeg_args and ffmpeg_args[0] == "--":
        ffmpeg_args = ffmpeg_args[1:]
    if not ffmpeg_args:
        print("ERROR: no ffmpeg arguments given", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)

    settings = _load_settings()
    timeout = args.timeout if args.timeout is not None else settings.run_timeout
    tool = FFmpegTool(path=settings.ffmpeg_path, timeout=timeout, stderr_limit=settings.stderr_limit)
    command = FFmpegCommand().append_args(*ffmpeg_args)
    scope = RunScope()

    def on_progress(snapshot: ProgressSnapshot) -> None:
        print(format_progress(snapshot), flush=True)

    try:
        result = tool.run_with_progress(command, on_progress if not args.quiet else None, scope)
    except (ToolNotFoundError, ToolUnhealthyError) as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    except ExecutionError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(EXIT_EXECUTION)
    except KeyboardInterrupt:
        scope.cancel()
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_EXECUTION)

    print(f"✓ ffmpeg exited {result.returncode} after {result.snapshot.frame} frame(s)")
    sys.exit(EXIT_OK)


def cmd_serve(args: argparse.Namespace) -> NoReturn:
    """Run the HTTP service under uvicorn."""
    import uvicorn

    from .main import create_app

    settings = _load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())
    sys.exit(EXIT_OK)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ffjobs",
        description="ffjobs - ffmpeg job runner with live progress",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    parser_version = subparsers.add_parser("version", help="Check ffmpeg/ffprobe and print versions")
    parser_version.set_defaults(func=cmd_version)

    parser_run = subparsers.add_parser("run", help="Run ffmpeg with progress reporting")
    parser_run.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Deadline in seconds (default: FFJOBS_RUN_TIMEOUT, 0 = unbounded)",
    )
    parser_run.add_argument("--quiet", action="store_true", help="Do not print progress lines")
    parser_run.add_argument("ffmpeg_args", nargs="*", help="Arguments passed to ffmpeg, after --")
    parser_run.set_defaults(func=cmd_run)

    parser_serve = subparsers.add_parser("serve", help="Start the HTTP service")
    parser_serve.add_argument("--host", default="127.0.0.1")
    parser_serve.add_argument("--port", type=int, default=8080)
    parser_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """
    Main CLI entrypoint.

    Parses arguments and dispatches to subcommands.
    """
    args = build_parser().parse_args(argv)
    if args.command != "serve":
        configure_logging("WARNING")
    args.func(args)


if __name__ == "__main__":
    main()
