"""External tool execution.

This module wraps the two tools a PTX build depends on, ``cargo`` and
``ptx-linker``, behind a small runner that:

- resolves the executable on PATH and reports a missing tool with an
  actionable hint instead of a bare OSError
- applies platform-safe subprocess flags (no console window on Windows,
  stdin redirected to DEVNULL)
- streams stdout and stderr line-by-line to caller-supplied sinks

Streaming:
    Each pipe is drained by its own reader thread so neither can fill up and
    stall the child. Lines are handed back through a queue and the sinks are
    invoked on the calling thread. Order within one stream is preserved;
    interleaving between the two streams is not.
"""

import logging
import os
import queue
import re
import shlex
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import CARGO_ENV
from .errors import (
    CommandBrokenError,
    CommandFailedError,
    CommandNotFoundError,
    CommandVersionNotFulfilledError,
)

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]

_VERSION_RE = re.compile(r"(\S+)\s+v?(\d+)\.(\d+)\.(\d+)")

_STDOUT = "stdout"
_STDERR = "stderr"


@dataclass(frozen=True)
class Executable:
    """An external tool and the hints shown when it is unusable.

    Attributes:
        name: Executable name looked up on PATH (or an explicit path)
        verification_hint: Shown when the tool cannot be found
        version_hint: Shown when the installed version is too old
        required_version: Minimum (major, minor, patch), or None for any
    """

    name: str
    verification_hint: str
    version_hint: str
    required_version: Optional[Tuple[int, int, int]] = None


def cargo_executable() -> Executable:
    """Cargo, honoring the CARGO variable cargo sets for build scripts."""
    return Executable(
        name=os.environ.get(CARGO_ENV) or "cargo",
        verification_hint="Please make sure you have it installed and in PATH",
        version_hint="Please update Rust and Cargo to latest nightly versions",
    )


LINKER = Executable(
    name="ptx-linker",
    verification_hint="You can install it with: 'cargo install ptx-linker'",
    version_hint="You can update it with: 'cargo install -f ptx-linker'",
    required_version=(0, 9, 0),
)


@dataclass
class Output:
    """Result of a finished command."""

    command: str
    returncode: int
    stdout: str
    stderr: str


def parse_version(text: str) -> Optional[Tuple[int, int, int]]:
    """Extract a ``<name> <major>.<minor>.<patch>`` version from tool output.

    Returns:
        Version tuple, or None if the output carries no version
    """
    match = _VERSION_RE.search(text)
    if match is None:
        return None
    return (int(match.group(2)), int(match.group(3)), int(match.group(4)))


def _format_version(version: Tuple[int, int, int]) -> str:
    return ".".join(str(part) for part in version)


def _popen_kwargs() -> Dict[str, Any]:
    """Platform-specific Popen arguments.

    - Windows: CREATE_NO_WINDOW so no console window flashes up
    - All platforms: stdin=DEVNULL so the child cannot steal terminal input
    """
    kwargs: Dict[str, Any] = {"stdin": subprocess.DEVNULL}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kwargs


class ExecutableRunner:
    """Configures and runs one external command.

    Example:
        >>> output = ExecutableRunner(LINKER).with_args(["-V"]).run()
        >>> print(output.stdout)
    """

    def __init__(self, executable: Executable):
        self.executable = executable
        self.args: List[str] = []
        self.cwd: Optional[Path] = None
        self.env: Dict[str, str] = {}

    def with_args(self, args: Sequence[str]) -> "ExecutableRunner":
        self.args = [str(arg) for arg in args]
        return self

    def with_cwd(self, cwd: Path) -> "ExecutableRunner":
        self.cwd = Path(cwd)
        return self

    def with_env(self, key: str, value: Any) -> "ExecutableRunner":
        """Add a variable to the child environment only."""
        self.env[key] = str(value)
        return self

    def command_line(self) -> str:
        """Human-readable command line, for errors and debug logs."""
        return shlex.join([self.executable.name, *self.args])

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env

    def _resolve(self, env: Dict[str, str]) -> str:
        program = shutil.which(self.executable.name, path=env.get("PATH"))
        if program is None:
            raise CommandNotFoundError(self.executable.name, self.executable.verification_hint)
        return program

    def _spawn(self, **kwargs: Any) -> subprocess.Popen:
        env = self._child_env()
        program = self._resolve(env)
        logger.debug(f"Running: {self.command_line()} (cwd={self.cwd})")
        try:
            return subprocess.Popen(
                [program, *self.args],
                cwd=str(self.cwd) if self.cwd is not None else None,
                env=env,
                text=True,
                encoding="utf-8",
                errors="replace",
                **_popen_kwargs(),
                **kwargs,
            )
        except OSError as e:
            raise CommandNotFoundError(self.executable.name, self.executable.verification_hint) from e

    def run(self) -> Output:
        """Run the command to completion, capturing its output.

        Raises:
            CommandNotFoundError: If the executable cannot be found or spawned
            CommandFailedError: If the command exits non-zero
        """
        proc = self._spawn(stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        stdout, stderr = proc.communicate()
        return self._finish(proc.returncode, stdout, stderr)

    def run_live(self, on_stdout_line: LineSink, on_stderr_line: LineSink) -> Output:
        """Run the command, delivering each output line to a sink as it arrives.

        Args:
            on_stdout_line: Called with each stdout line (newline stripped)
            on_stderr_line: Called with each stderr line (newline stripped)

        Returns:
            Output with the complete stderr text; stdout is only delivered
            to the sink and is not retained

        Raises:
            CommandNotFoundError: If the executable cannot be found or spawned
            CommandFailedError: If the command exits non-zero
        """
        proc = self._spawn(stdout=subprocess.PIPE, stderr=subprocess.PIPE, bufsize=1)
        lines: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()

        def _reader(stream: IO[str], tag: str) -> None:
            try:
                for raw in stream:
                    lines.put((tag, raw.rstrip("\r\n")))
            finally:
                stream.close()
                lines.put((tag, None))

        assert proc.stdout is not None and proc.stderr is not None
        readers = [
            threading.Thread(target=_reader, args=(proc.stdout, _STDOUT), daemon=True),
            threading.Thread(target=_reader, args=(proc.stderr, _STDERR), daemon=True),
        ]
        for reader in readers:
            reader.start()

        stderr_lines: List[str] = []
        open_streams = len(readers)
        try:
            while open_streams:
                tag, line = lines.get()
                if line is None:
                    open_streams -= 1
                elif tag == _STDOUT:
                    on_stdout_line(line)
                else:
                    stderr_lines.append(line)
                    on_stderr_line(line)
        except BaseException:
            # A sink raised (or Ctrl-C): do not leave cargo running behind us
            proc.kill()
            proc.wait()
            raise
        finally:
            for reader in readers:
                reader.join(timeout=5)

        returncode = proc.wait()
        return self._finish(returncode, "", "\n".join(stderr_lines))

    def check_version(self) -> Output:
        """Run ``<tool> -V`` and verify the tool meets its minimum version.

        Raises:
            CommandNotFoundError: If the tool is missing
            CommandBrokenError: If the version query itself fails
            CommandVersionNotFulfilledError: If the tool is too old
        """
        try:
            output = self.with_args(["-V"]).run()
        except CommandFailedError as e:
            raise CommandBrokenError(self.executable.name, e.code, e.stderr, self.executable.version_hint) from e
        required = self.executable.required_version
        current = parse_version(output.stdout)
        if required is not None and current is not None and current < required:
            raise CommandVersionNotFulfilledError(
                self.executable.name,
                _format_version(current),
                f">= {_format_version(required)}",
                self.executable.version_hint,
            )
        logger.debug(f"{self.executable.name} version: {output.stdout.strip()}")
        return output

    def _finish(self, returncode: int, stdout: str, stderr: str) -> Output:
        output = Output(command=self.command_line(), returncode=returncode, stdout=stdout, stderr=stderr)
        if returncode != 0:
            raise CommandFailedError(output.command, returncode, stderr)
        return output
