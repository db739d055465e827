"""Source crate analysis.

Reads the facts a build needs from a crate directory:
- package name from Cargo.toml
- available targets from src/lib.rs and src/main.rs
- output file prefix (package name with '-' replaced by '_', as rustc does)
- per-crate output directory under the ptxbuild output root
"""

import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .config import MANIFEST_FILE, get_output_root
from .errors import AnalysisError, InvalidCrateTypeError, MissingCrateTypeError

logger = logging.getLogger(__name__)


class CrateType(Enum):
    """Crate target to build. Mandatory for crates with both lib.rs and main.rs."""

    LIBRARY = "cdylib"
    BINARY = "bin"

    def __str__(self) -> str:
        """Return the value cargo expects after ``--crate-type``."""
        return self.value


class CrateAvailableTypes(Enum):
    """Targets present in a crate."""

    LIBRARY = "library"
    BINARY = "binary"
    MIXED = "mixed"


@dataclass(frozen=True)
class SourceCrate:
    """Immutable description of the crate being built.

    Attributes:
        name: Package name from Cargo.toml
        path: Absolute crate directory
        output_file_prefix: Name used by rustc for library artifacts
        available_types: Which targets the crate provides
        output_root: Root directory all crates build into
    """

    name: str
    path: Path
    output_file_prefix: str
    available_types: CrateAvailableTypes
    output_root: Path

    @classmethod
    def analyse(cls, path: Union[str, Path], output_root: Optional[Path] = None) -> "SourceCrate":
        """Analyse the crate at ``path``.

        Args:
            path: Crate directory (relative paths are resolved)
            output_root: Output root override (defaults to config.get_output_root())

        Returns:
            SourceCrate for the directory

        Raises:
            AnalysisError: If the directory has no usable Cargo.toml or no targets
        """
        crate_path = Path(path).resolve()
        manifest_path = crate_path / MANIFEST_FILE

        try:
            with open(manifest_path, "rb") as f:
                manifest = tomllib.load(f)
        except FileNotFoundError as e:
            raise AnalysisError(str(crate_path), f"{MANIFEST_FILE} not found") from e
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise AnalysisError(str(crate_path), f"unable to parse {MANIFEST_FILE}: {e}") from e

        package = manifest.get("package")
        name = package.get("name") if isinstance(package, dict) else None
        if not isinstance(name, str) or not name:
            raise AnalysisError(str(crate_path), "[package] name is missing")

        has_lib = (crate_path / "src" / "lib.rs").is_file()
        has_main = (crate_path / "src" / "main.rs").is_file()
        if has_lib and has_main:
            available = CrateAvailableTypes.MIXED
        elif has_lib:
            available = CrateAvailableTypes.LIBRARY
        elif has_main:
            available = CrateAvailableTypes.BINARY
        else:
            raise AnalysisError(str(crate_path), "neither src/lib.rs nor src/main.rs exists")

        logger.debug(f"Analysed crate '{name}' at {crate_path} ({available.value})")
        return cls(
            name=name,
            path=crate_path,
            output_file_prefix=name.replace("-", "_"),
            available_types=available,
            output_root=output_root if output_root is not None else get_output_root(),
        )

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILE

    def get_output_path(self) -> Path:
        """Return the crate's output directory, creating it if needed.

        Raises:
            OSError: If the directory cannot be created
        """
        output_path = self.output_root / self.output_file_prefix
        output_path.mkdir(parents=True, exist_ok=True)
        return output_path

    def get_crate_type(self, requested: Optional[CrateType]) -> CrateType:
        """Resolve the crate type to build.

        Args:
            requested: Explicit override, or None

        Raises:
            MissingCrateTypeError: If the crate is mixed and nothing was requested
            InvalidCrateTypeError: If the requested target does not exist
        """
        if self.available_types is CrateAvailableTypes.MIXED:
            if requested is None:
                raise MissingCrateTypeError()
            return requested

        available = (
            CrateType.LIBRARY if self.available_types is CrateAvailableTypes.LIBRARY else CrateType.BINARY
        )
        if requested is not None and requested is not available:
            raise InvalidCrateTypeError(requested.name.lower())
        return available
