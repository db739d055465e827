"""
ptxbuild error taxonomy.

Every failure surfaces to the caller as a subclass of PtxBuildError.
Underlying I/O errors are preserved as ``__cause__``.
"""

from typing import List, Optional, Sequence


class PtxBuildError(Exception):
    """Base class for all ptxbuild failures."""

    pass


class ToolUnavailableError(PtxBuildError):
    """A required external tool is missing or unusable."""

    pass


class CommandNotFoundError(ToolUnavailableError):
    """The executable could not be found or spawned."""

    def __init__(self, command: str, hint: str):
        self.command = command
        self.hint = hint
        super().__init__(f"Command not found in PATH: '{command}'. {hint}")


class CommandVersionNotFulfilledError(ToolUnavailableError):
    """The installed executable is older than required."""

    def __init__(self, command: str, current: str, required: str, hint: str):
        self.command = command
        self.current = current
        self.required = required
        self.hint = hint
        super().__init__(f"Command version is not '{required}': '{command}' {current}. {hint}")


class CommandBrokenError(ToolUnavailableError):
    """The executable is installed but its version query exits non-zero."""

    def __init__(self, command: str, code: Optional[int], stderr: str, hint: str):
        self.command = command
        self.code = code
        self.stderr = stderr
        self.hint = hint
        super().__init__(f"Command is broken: '{command}' exited with code '{code}'. {hint}\n{stderr}")


class CommandFailedError(PtxBuildError):
    """A command ran and exited with a non-zero status."""

    def __init__(self, command: str, code: Optional[int], stderr: str):
        self.command = command
        self.code = code
        self.stderr = stderr
        super().__init__(f"Command failed: '{command}' with code '{code}' and output:\n{stderr}")


class AnalysisError(PtxBuildError):
    """The crate directory has no usable description."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unable to analyse source crate at '{path}': {reason}")


class MissingCrateTypeError(PtxBuildError):
    """A crate with both lib.rs and main.rs was built without a crate type."""

    def __init__(self) -> None:
        super().__init__(
            "Missing crate type: the crate has both a library and a binary target, "
            "call set_crate_type() to select one"
        )


class InvalidCrateTypeError(PtxBuildError):
    """The requested crate type is not available in the crate."""

    def __init__(self, requested: str):
        self.requested = requested
        super().__init__(f"Impossible crate type: the crate has no '{requested}' target")


class LockError(PtxBuildError):
    """The naming-slot lock file could not be created, acquired or released."""

    pass


class ManifestIOError(PtxBuildError):
    """Reading or writing the crate manifest failed."""

    def __init__(self, path: str, action: str):
        self.path = path
        self.action = action
        super().__init__(f"Unable to {action} manifest '{path}'")


class BuildFailedError(PtxBuildError):
    """Cargo exited non-zero. Carries the filtered diagnostics in order."""

    def __init__(self, diagnostics: Sequence[str]):
        self.diagnostics: List[str] = list(diagnostics)
        super().__init__("Unable to build a PTX crate!\n" + "\n".join(self.diagnostics))


class InternalError(PtxBuildError):
    """What cargo reported does not match what is on disk."""

    pass
