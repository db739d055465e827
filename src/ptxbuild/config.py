"""
ptxbuild configuration.

Fixed names that must match what cargo and rustc produce, plus the
environment-driven output root.

Output root priority:
- PTXBUILD_OUTPUT_DIR (explicit override)
- OUT_DIR (set by cargo when running a build script)
- <system temp>/ptx-builder
"""

import os
import tempfile
from pathlib import Path
from typing import Mapping, Optional

TARGET_NAME = "nvptx64-nvidia-cuda"

MANIFEST_FILE = "Cargo.toml"
MANIFEST_LOCK_FILE = "Cargo.lock"
SLOT_LOCK_FILE = ".ptx-builder.lock"

# Appended to the crate name to form the entry-point name the manifest is restored to
CANONICAL_SUFFIX = "-ptx-builder"

ASSEMBLY_EXTENSION = "ptx"
DEPS_EXTENSION = "d"

# Subdirectory cargo uses for `--example` artifacts
EXAMPLES_DIR = "examples"

NESTED_BUILD_ENV = "PTX_CRATE_BUILDING"
OUTPUT_DIR_ENV = "PTXBUILD_OUTPUT_DIR"
CARGO_OUT_DIR_ENV = "OUT_DIR"
CARGO_ENV = "CARGO"
VERBOSE_ENV = "PTXBUILD_VERBOSE"


def get_output_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Determine the root directory for all ptxbuild output.

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Absolute path of the output root (not created)
    """
    if environ is None:
        environ = os.environ

    override = environ.get(OUTPUT_DIR_ENV)
    if override:
        return Path(override).resolve()

    out_dir = environ.get(CARGO_OUT_DIR_ENV)
    if out_dir:
        return Path(out_dir).resolve()

    return Path(tempfile.gettempdir()) / "ptx-builder"


def canonical_name(crate_name: str) -> str:
    """Return the entry-point name a crate's manifest holds between builds."""
    return f"{crate_name}{CANONICAL_SUFFIX}"


def is_verbose_default(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Check whether PTXBUILD_VERBOSE requests verbose CLI output."""
    if environ is None:
        environ = os.environ
    return environ.get(VERBOSE_ENV) == "1"
