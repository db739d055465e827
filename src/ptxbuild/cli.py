"""
Command-line interface for ptxbuild.

This module provides the `ptxbuild` CLI tool for building PTX assembly from a
Rust crate.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from ptxbuild import __version__
from ptxbuild.builder import Builder, MessageFormat, Profile
from ptxbuild.config import is_verbose_default
from ptxbuild.errors import BuildFailedError, PtxBuildError
from ptxbuild.output import init_timer, log, log_detail, log_error, log_header, set_verbose
from ptxbuild.source import CrateType

_CRATE_TYPES = {"lib": CrateType.LIBRARY, "bin": CrateType.BINARY}


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    crate_dir: Path
    profile: Profile = Profile.RELEASE
    crate_type: Optional[CrateType] = None
    message_format: MessageFormat = MessageFormat()
    prefix: str = ""
    colors: bool = True
    cargo_metadata: bool = False
    verbose: bool = False


def _message_format_from_args(parsed: argparse.Namespace) -> MessageFormat:
    if parsed.message_format == "short":
        return MessageFormat.short_format()
    if parsed.message_format == "json":
        return MessageFormat.json(
            render_diagnostics=parsed.json_render_diagnostics,
            short=parsed.json_diagnostic_short,
            ansi=parsed.json_diagnostic_rendered_ansi,
        )
    return MessageFormat.human()


def build_command(args: BuildArgs, console: Optional[Console] = None) -> int:
    """Build PTX assembly for a crate.

    Examples:
        ptxbuild build kernels                  # Release build
        ptxbuild build kernels --debug          # Debug build
        ptxbuild build . --crate-type lib       # Mixed crate, build the library
        ptxbuild build kernels --cargo-metadata # Emit cargo:* lines for build.rs

    Returns:
        Process exit code
    """
    console = console if console is not None else Console(highlight=False)
    init_timer()
    set_verbose(args.verbose)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    log_header("ptxbuild", __version__)

    try:
        builder = Builder.new(args.crate_dir).set_profile(args.profile)
        builder = builder.set_message_format(args.message_format).set_prefix(args.prefix)
        if args.crate_type is not None:
            builder = builder.set_crate_type(args.crate_type)
        if not args.colors:
            builder = builder.disable_colors()

        log(f"Building crate: {builder.get_crate_name()} ({args.profile})")
        log_detail(f"Path: {builder.source_crate.path}", verbose_only=True)
        log_detail(f"Example: {builder.invocation_name}", verbose_only=True)

        status = builder.build_live(
            lambda line: print(line, flush=True),
            lambda line: print(line, file=sys.stderr, flush=True),
        )
        if not status.is_success:
            log("Nested build detected, nothing to do")
            return 0

        assert status.output is not None
        assembly_path = status.output.get_assembly_path()
        console.print("[bold green]✓ Build successful![/bold green]")
        log_detail(f"Assembly: {assembly_path}")

        if args.cargo_metadata:
            print(f"cargo:rustc-env=KERNEL_PTX_PATH={assembly_path}")
            for path in status.output.dependencies():
                print(f"cargo:rerun-if-changed={path}")
        return 0

    except BuildFailedError as e:
        console.print("[bold red]✗ Build failed![/bold red]")
        for line in e.diagnostics:
            print(line, file=sys.stderr)
        return 1

    except PtxBuildError as e:
        console.print("[bold red]✗ Error[/bold red]")
        log_error(str(e))
        if args.verbose and e.__cause__ is not None:
            log_detail(f"Caused by: {type(e.__cause__).__name__}: {e.__cause__}")
        return 1

    except KeyboardInterrupt:
        console.print("[bold yellow]✗ Build interrupted[/bold yellow]")
        return 130  # Standard exit code for SIGINT


def main(argv: Optional[List[str]] = None) -> None:
    """ptxbuild - NVPTX build helper for Rust crates."""
    parser = argparse.ArgumentParser(
        prog="ptxbuild",
        description="ptxbuild - NVPTX build helper for Rust crates",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ptxbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser(
        "build",
        help="Build PTX assembly for a crate",
    )
    build_parser.add_argument(
        "crate_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Crate directory (default: current directory)",
    )
    profile_group = build_parser.add_mutually_exclusive_group()
    profile_group.add_argument("--debug", action="store_true", help="Build with the debug profile")
    profile_group.add_argument("--release", action="store_true", help="Build with the release profile (default)")
    build_parser.add_argument(
        "--crate-type",
        choices=sorted(_CRATE_TYPES),
        default=None,
        help="Crate type to build (required for crates with both lib.rs and main.rs)",
    )
    build_parser.add_argument(
        "--message-format",
        choices=["human", "short", "json"],
        default="human",
        help="Cargo message format (default: human)",
    )
    build_parser.add_argument("--json-render-diagnostics", action="store_true")
    build_parser.add_argument("--json-diagnostic-short", action="store_true")
    build_parser.add_argument("--json-diagnostic-rendered-ansi", action="store_true")
    build_parser.add_argument(
        "--prefix",
        default="",
        help="Invocation name prefix, to build several kernels from one crate",
    )
    build_parser.add_argument("--no-color", action="store_true", help="Disable colors in cargo output")
    build_parser.add_argument(
        "--cargo-metadata",
        action="store_true",
        help="Print cargo:rustc-env and cargo:rerun-if-changed lines for build scripts",
    )
    build_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=is_verbose_default(),
        help="Show verbose output",
    )

    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    if not parsed_args.crate_dir.is_dir():
        print(f"✗ Error: Path is not a directory: {parsed_args.crate_dir}", file=sys.stderr)
        sys.exit(2)

    if parsed_args.command == "build":
        args = BuildArgs(
            crate_dir=parsed_args.crate_dir,
            profile=Profile.DEBUG if parsed_args.debug else Profile.RELEASE,
            crate_type=_CRATE_TYPES.get(parsed_args.crate_type) if parsed_args.crate_type else None,
            message_format=_message_format_from_args(parsed_args),
            prefix=parsed_args.prefix,
            colors=not parsed_args.no_color,
            cargo_metadata=parsed_args.cargo_metadata,
            verbose=parsed_args.verbose,
        )
        sys.exit(build_command(args))


if __name__ == "__main__":
    main()
