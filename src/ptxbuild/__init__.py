"""ptxbuild - NVPTX build helper.

Compiles a Rust crate to PTX assembly by driving cargo, with safe sharing of
the crate manifest across concurrent and recursive builds.

Example (from a build script):
    >>> from ptxbuild import Builder
    >>> status = Builder.new("kernels").build()
    >>> if status.is_success:
    ...     print(f"cargo:rustc-env=KERNEL_PTX_PATH={status.output.get_assembly_path()}")
"""

__version__ = "0.6.0"

from ptxbuild.builder import (  # noqa: E402
    BuildConfig,
    BuildContext,
    Builder,
    BuildOutput,
    BuildStatus,
    MessageFormat,
    MessageFormatKind,
    Profile,
)
from ptxbuild.errors import (  # noqa: E402
    AnalysisError,
    BuildFailedError,
    CommandBrokenError,
    CommandFailedError,
    CommandNotFoundError,
    CommandVersionNotFulfilledError,
    InternalError,
    InvalidCrateTypeError,
    LockError,
    ManifestIOError,
    MissingCrateTypeError,
    PtxBuildError,
    ToolUnavailableError,
)
from ptxbuild.source import CrateType, SourceCrate  # noqa: E402

__all__ = [
    "AnalysisError",
    "BuildConfig",
    "BuildContext",
    "BuildFailedError",
    "BuildOutput",
    "BuildStatus",
    "Builder",
    "CommandBrokenError",
    "CommandFailedError",
    "CommandNotFoundError",
    "CommandVersionNotFulfilledError",
    "CrateType",
    "InternalError",
    "InvalidCrateTypeError",
    "LockError",
    "ManifestIOError",
    "MessageFormat",
    "MessageFormatKind",
    "MissingCrateTypeError",
    "Profile",
    "PtxBuildError",
    "SourceCrate",
    "ToolUnavailableError",
    "__version__",
]
