"""
Timestamped console output for the ptxbuild CLI.

All output is prefixed with the elapsed time since the timer was started, in
MM:SS.cc format, so slow phases of a build (waiting on the manifest lock,
cargo itself) are visible at a glance.

Example output:
    00:00.01 ptxbuild v0.6.0
    00:00.02 Building crate: kernels (release)
    00:04.51       Assembly: /tmp/ptx-builder/kernels/nvptx64-nvidia-cuda/release/examples/kernels_.ptx

Usage:
    from ptxbuild.output import log, log_detail, init_timer

    init_timer()
    log("Building crate: kernels")
    log_detail("Assembly: ...")

Library modules use the logging module; this is for user-facing CLI output.
"""

import sys
import time
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Start the elapsed-time clock.

    Called automatically on first use if not called explicitly.

    Args:
        output_stream: Stream to write to (defaults to sys.stdout at write time)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """Enable or disable verbose-only messages."""
    global _verbose
    _verbose = verbose


def get_elapsed() -> float:
    if _start_time is None:
        init_timer(_output_stream)
    return time.time() - _start_time  # type: ignore[operator]


def format_timestamp() -> str:
    """Format the elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(f"{format_timestamp()} {message}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print in verbose mode
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Log an indented detail line."""
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_header(title: str, version: str) -> None:
    _print(f"{title} v{version}")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")
