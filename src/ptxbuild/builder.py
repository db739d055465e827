"""PTX build coordinator.

This module defines:
- Profile / MessageFormat: how cargo is asked to build and report
- BuildConfig: immutable build configuration
- BuildContext: whether this process is a top-level or nested build
- Builder: analyses a crate once, then runs cargo to produce the .ptx assembly
- BuildOutput / BuildStatus: what a build returns

Design:
    Builder values are never mutated. Each setter returns a new Builder that
    shares the analysed SourceCrate and carries a changed BuildConfig.

    The nested-build marker (PTX_CRATE_BUILDING=1) is only written into the
    environment of the cargo child, never into os.environ. When cargo re-enters
    this tool (a crate that is both host and device code), the child detects
    the marker and reports NotNeeded.

Usage:
    status = Builder.new("kernels").set_profile(Profile.DEBUG).build()
    if status.is_success:
        print(status.output.get_assembly_path())
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Union

from .config import (
    ASSEMBLY_EXTENSION,
    DEPS_EXTENSION,
    EXAMPLES_DIR,
    MANIFEST_FILE,
    MANIFEST_LOCK_FILE,
    NESTED_BUILD_ENV,
    SLOT_LOCK_FILE,
    TARGET_NAME,
    canonical_name,
)
from .diagnostics import filter_diagnostics, is_signal
from .errors import BuildFailedError, CommandFailedError, InternalError, LockError
from .executable import LINKER, ExecutableRunner, cargo_executable
from .naming_slot import NamingSlotArbiter
from .source import CrateType, SourceCrate

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]

# Cargo escapes spaces inside dep-info paths as "\ "
_DEPS_SPLIT_RE = re.compile(r"(?<!\\)\s+")


class Profile(Enum):
    """Debug / Release profile (cargo's ``--release`` flag)."""

    DEBUG = "debug"
    RELEASE = "release"

    def __str__(self) -> str:
        """Return the profile directory name cargo uses."""
        return self.value


class MessageFormatKind(Enum):
    HUMAN = "human"
    SHORT = "short"
    JSON = "json"


@dataclass(frozen=True)
class MessageFormat:
    """Cargo ``--message-format`` selection.

    The json options only apply to MessageFormatKind.JSON:
        render_diagnostics: cargo renders rustc diagnostics itself
        short: the ``rendered`` field uses the short rendering
        ansi: the ``rendered`` field embeds ANSI color codes
    """

    kind: MessageFormatKind = MessageFormatKind.HUMAN
    render_diagnostics: bool = False
    short: bool = False
    ansi: bool = False

    @classmethod
    def human(cls) -> "MessageFormat":
        return cls(MessageFormatKind.HUMAN)

    @classmethod
    def short_format(cls) -> "MessageFormat":
        return cls(MessageFormatKind.SHORT)

    @classmethod
    def json(cls, render_diagnostics: bool = False, short: bool = False, ansi: bool = False) -> "MessageFormat":
        return cls(MessageFormatKind.JSON, render_diagnostics=render_diagnostics, short=short, ansi=ansi)

    def to_arg(self) -> str:
        """Single cargo argument, with json options comma-joined."""
        if self.kind is not MessageFormatKind.JSON:
            return f"--message-format={self.kind.value}"

        arg = "--message-format=json"
        if self.render_diagnostics:
            arg += ",json-render-diagnostics"
        if self.short:
            arg += ",json-diagnostic-short"
        if self.ansi:
            arg += ",json-diagnostic-rendered-ansi"
        return arg


@dataclass(frozen=True)
class BuildConfig:
    """Immutable build configuration.

    Attributes:
        profile: Build profile (default release)
        colors: Whether cargo output is colored
        crate_type: Explicit crate type, required for mixed crates
        message_format: Cargo message format
        prefix: Appended to the crate name to form the invocation name
    """

    profile: Profile = Profile.RELEASE
    colors: bool = True
    crate_type: Optional[CrateType] = None
    message_format: MessageFormat = field(default_factory=MessageFormat.human)
    prefix: str = ""

    def with_profile(self, profile: Profile) -> "BuildConfig":
        return replace(self, profile=profile)

    def with_colors(self, colors: bool) -> "BuildConfig":
        return replace(self, colors=colors)

    def with_crate_type(self, crate_type: Optional[CrateType]) -> "BuildConfig":
        return replace(self, crate_type=crate_type)

    def with_message_format(self, message_format: MessageFormat) -> "BuildConfig":
        return replace(self, message_format=message_format)

    def with_prefix(self, prefix: str) -> "BuildConfig":
        return replace(self, prefix=prefix)


class BuildContext(Enum):
    """Whether a build runs at top level or inside a cargo invocation we started."""

    TOP_LEVEL = "top-level"
    NESTED = "nested"

    @classmethod
    def detect(cls, environ: Optional[Mapping[str, str]] = None) -> "BuildContext":
        """Read the nested-build marker from ``environ`` (default os.environ)."""
        if environ is None:
            environ = os.environ
        return cls.NESTED if environ.get(NESTED_BUILD_ENV) == "1" else cls.TOP_LEVEL


class Builder:
    """PTX assembly build controller for one crate.

    Can also point at the calling crate itself, for single-source setups
    where one crate holds both host and device code.
    """

    def __init__(self, source_crate: SourceCrate, config: Optional[BuildConfig] = None):
        self.source_crate = source_crate
        self.config = config if config is not None else BuildConfig()

    @classmethod
    def new(cls, path: Union[str, Path]) -> "Builder":
        """Construct a builder for the crate at ``path``.

        Raises:
            AnalysisError: If the directory is not a usable crate
        """
        return cls(SourceCrate.analyse(path))

    @staticmethod
    def is_build_needed(environ: Optional[Mapping[str, str]] = None) -> bool:
        """Whether a real build is needed in this process context.

        False when running inside a cargo invocation started by ptxbuild.
        """
        return BuildContext.detect(environ) is BuildContext.TOP_LEVEL

    def get_crate_name(self) -> str:
        return self.source_crate.name

    @property
    def invocation_name(self) -> str:
        """The ``--example`` name selecting this builder's target."""
        return f"{self.source_crate.name}-{self.config.prefix}"

    def _with_config(self, config: BuildConfig) -> "Builder":
        return Builder(self.source_crate, config)

    def disable_colors(self) -> "Builder":
        return self._with_config(self.config.with_colors(False))

    def set_profile(self, profile: Profile) -> "Builder":
        return self._with_config(self.config.with_profile(profile))

    def set_crate_type(self, crate_type: CrateType) -> "Builder":
        """Select the crate type. Mandatory for crates with both lib.rs and main.rs."""
        return self._with_config(self.config.with_crate_type(crate_type))

    def set_message_format(self, message_format: MessageFormat) -> "Builder":
        return self._with_config(self.config.with_message_format(message_format))

    def set_prefix(self, prefix: str) -> "Builder":
        return self._with_config(self.config.with_prefix(prefix))

    def cargo_args(self, crate_type: CrateType) -> List[str]:
        """Assemble the cargo argument vector for this configuration."""
        args = ["rustc"]
        if self.config.profile is Profile.RELEASE:
            args.append("--release")
        args += ["--color", "always" if self.config.colors else "never"]
        args.append(self.config.message_format.to_arg())
        args += ["--target", TARGET_NAME]
        args += ["--example", self.invocation_name]
        args.append("-v")
        args.append("--")
        args += ["--crate-type", str(crate_type)]
        return args

    def build(self, context: Optional[BuildContext] = None) -> "BuildStatus":
        """Run the build, discarding cargo's output."""
        return self.build_live(lambda _line: None, lambda _line: None, context=context)

    def build_live(
        self,
        on_stdout_line: LineSink,
        on_stderr_line: LineSink,
        context: Optional[BuildContext] = None,
    ) -> "BuildStatus":
        """Run the build, streaming cargo's output.

        Stderr lines that are build-system noise are not forwarded.

        Args:
            on_stdout_line: Called with each cargo stdout line
            on_stderr_line: Called with each diagnostic stderr line
            context: Build context (detected from the environment if None)

        Returns:
            BuildStatus.not_needed() for nested builds, otherwise a success
            status carrying the BuildOutput

        Raises:
            PtxBuildError: Any failure; BuildFailedError for compile errors
        """
        if context is None:
            context = BuildContext.detect()
        if context is BuildContext.NESTED:
            logger.debug(f"Nested build of '{self.source_crate.name}', skipping")
            return BuildStatus.not_needed()

        crate_type = self.source_crate.get_crate_type(self.config.crate_type)

        ExecutableRunner(LINKER).check_version()

        try:
            output_path = self.source_crate.get_output_path()
        except OSError as e:
            raise LockError(f"Unable to create output path for '{self.source_crate.name}'") from e

        arbiter = NamingSlotArbiter(
            lock_path=output_path / SLOT_LOCK_FILE,
            manifest_path=self.source_crate.manifest_path,
            canonical_name=canonical_name(self.source_crate.name),
        )
        cargo = (
            ExecutableRunner(cargo_executable())
            .with_args(self.cargo_args(crate_type))
            .with_cwd(self.source_crate.path)
            .with_env(NESTED_BUILD_ENV, "1")
            .with_env("CARGO_TARGET_DIR", output_path)
        )

        def _forward_stderr(line: str) -> None:
            if is_signal(line):
                on_stderr_line(line)

        with arbiter.claim(self.invocation_name):
            try:
                cargo.run_live(on_stdout_line, _forward_stderr)
            except CommandFailedError as e:
                raise BuildFailedError(filter_diagnostics(e.stderr)) from e

        output = BuildOutput(self, output_path, crate_type)
        if not output.get_assembly_path().exists():
            raise InternalError("Unable to find PTX assembly output")
        return BuildStatus.success(output)


class BuildOutput:
    """Successful build output. Paths are recomputed from cargo's naming rules."""

    def __init__(self, builder: Builder, output_path: Path, crate_type: CrateType):
        self._builder = builder
        self.output_path = output_path
        self.crate_type = crate_type

    @property
    def builder(self) -> Builder:
        return self._builder

    def _artifact_path(self, extension: str) -> Path:
        crate = self._builder.source_crate
        if self.crate_type is CrateType.BINARY:
            stem, separator = crate.name, "-"
        else:
            stem, separator = crate.output_file_prefix, "_"
        filename = f"{stem}{separator}{self._builder.config.prefix}.{extension}"
        return self.output_path / TARGET_NAME / str(self._builder.config.profile) / EXAMPLES_DIR / filename

    def get_assembly_path(self) -> Path:
        """Path to the PTX assembly, e.g. for ``cargo:rustc-env=KERNEL_PTX_PATH=...``."""
        return self._artifact_path(ASSEMBLY_EXTENSION)

    def get_deps_path(self) -> Path:
        return self._artifact_path(DEPS_EXTENSION)

    def dependencies(self) -> List[Path]:
        """Files whose change should trigger a rebuild.

        The crate's source files come from cargo's dep-info file; Cargo.toml
        and the nearest Cargo.lock are appended.

        Raises:
            InternalError: If the dep-info file is unreadable or empty, or no
                Cargo.lock exists above the crate
        """
        deps_path = self.get_deps_path()
        try:
            contents = deps_path.read_text(encoding="utf-8")
        except OSError as e:
            raise InternalError(f"Unable to get crate deps from '{deps_path}'") from e

        if not contents:
            raise InternalError("Empty deps file")

        # Skip 3 chars first so a "C:\" drive prefix is not taken as the target separator
        remainder = contents[3:]
        colon = remainder.find(":")
        sources = remainder[colon + 1 :] if colon >= 0 else ""

        paths = [
            Path(token.replace("\\ ", " "))
            for token in _DEPS_SPLIT_RE.split(sources.strip())
            if token
        ]
        crate_path = self._builder.source_crate.path
        paths.append(crate_path / MANIFEST_FILE)
        paths.append(find_manifest_lock(crate_path) / MANIFEST_LOCK_FILE)
        return paths


def find_manifest_lock(start: Path) -> Path:
    """Return the nearest directory at or above ``start`` containing Cargo.lock.

    Raises:
        InternalError: If the filesystem root is reached without finding one
    """
    directory = start
    while not (directory / MANIFEST_LOCK_FILE).is_file():
        if directory.parent == directory:
            raise InternalError(f"Unable to find {MANIFEST_LOCK_FILE} file")
        directory = directory.parent
    return directory


@dataclass(frozen=True)
class BuildStatus:
    """Non-failed build status: NotNeeded, or Success with its output."""

    output: Optional[BuildOutput] = None

    @classmethod
    def not_needed(cls) -> "BuildStatus":
        return cls(None)

    @classmethod
    def success(cls, output: BuildOutput) -> "BuildStatus":
        return cls(output)

    @property
    def is_success(self) -> bool:
        return self.output is not None

    @property
    def is_not_needed(self) -> bool:
        return self.output is None

