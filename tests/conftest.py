"""Pytest configuration and fixtures for ptxbuild tests.

Real builds need a nightly Rust toolchain plus ptx-linker, so the tests put
small Python stand-ins for `cargo` and `ptx-linker` on PATH instead. The fake
cargo behaves like the real one where ptxbuild depends on it:

- requires an `[[example]]` named after the `--example` argument in Cargo.toml
- writes `<stem><sep><prefix>.ptx` and a single-line `.d` dep-info file under
  $CARGO_TARGET_DIR/nvptx64-nvidia-cuda/<profile>/examples/
- fails with rustc-style diagnostics (plus cargo chatter) when src/lib.rs
  calls `external_fn`

Every fake-tool invocation is appended to $FAKE_TOOL_CALLS, one JSON object
per line, including the manifest text cargo saw.
"""

import json
import os
import stat
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import pytest

FAKE_CARGO = textwrap.dedent(
    '''
    import json
    import os
    import sys
    import time
    import tomllib
    from pathlib import Path


    def record(entry):
        calls = os.environ.get("FAKE_TOOL_CALLS")
        if calls:
            with open(calls, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\\n")


    args = sys.argv[1:]
    if args[:1] in (["-V"], ["--version"]):
        print("cargo 1.80.0-nightly (fake)")
        sys.exit(0)

    cwd = Path.cwd()
    manifest_text = (cwd / "Cargo.toml").read_text(encoding="utf-8")
    package = tomllib.loads(manifest_text)["package"]["name"]
    example = args[args.index("--example") + 1]
    profile = "release" if "--release" in args else "debug"
    crate_type = args[args.index("--crate-type") + 1]
    target = args[args.index("--target") + 1]

    record({
        "tool": "cargo",
        "args": args,
        "manifest": manifest_text,
        "nested": os.environ.get("PTX_CRATE_BUILDING"),
        "pid": os.getpid(),
    })

    delay = float(os.environ.get("FAKE_CARGO_SLEEP", "0"))
    if delay:
        time.sleep(delay)

    if os.environ.get("PTX_CRATE_BUILDING") != "1":
        print("error: nested-build marker missing", file=sys.stderr)
        sys.exit(3)

    if f'name = "{example}"' not in manifest_text:
        print(f"error: no example target named `{example}`", file=sys.stderr)
        sys.exit(101)

    print("fake cargo stdout")
    print("+ rustc --crate-name echoed", file=sys.stderr)
    print(f"   Compiling {package} v0.1.0 ({cwd})", file=sys.stderr)
    print("     Running `rustc --crate-name lib src/lib.rs`", file=sys.stderr)

    lib_rs = cwd / "src" / "lib.rs"
    if lib_rs.is_file() and "external_fn" in lib_rs.read_text(encoding="utf-8"):
        sys.stderr.write(
            "error[E0425]: cannot find function `external_fn` in this scope\\n"
            f" --> {Path('src') / 'lib.rs'}:7:20\\n"
            "  |\\n"
            "7 |     *y.offset(0) = external_fn(*x.offset(0)) * a;\\n"
            "  |                    ^^^^^^^^^^^ not found in this scope\\n"
            "\\n"
            "For more information about this error, try `rustc --explain E0425`.\\n"
            f"error: could not compile `{package}` (lib) due to 1 previous error\\n"
            "\\n"
            "Caused by:\\n"
            "  process didn't exit successfully: `rustc --crate-name lib` (exit status: 1)\\n"
        )
        sys.exit(101)

    prefix = example[len(package) + 1:]
    if crate_type == "bin":
        stem = f"{package}-{prefix}"
    else:
        stem = f"{package.replace('-', '_')}_{prefix}"

    out_dir = Path(os.environ["CARGO_TARGET_DIR"]) / target / profile / "examples"
    out_dir.mkdir(parents=True, exist_ok=True)
    ptx_path = out_dir / f"{stem}.ptx"
    if os.environ.get("FAKE_CARGO_SKIP_ARTIFACT") != "1":
        ptx_path.write_text(".version 6.0\\n.visible .entry the_kernel(\\n)\\n", encoding="utf-8")
    sources = sorted(str(p) for p in (cwd / "src").glob("*.rs"))
    (out_dir / f"{stem}.d").write_text(f"{ptx_path}: {' '.join(sources)}\\n", encoding="utf-8")
    print(f"    Finished {profile} [optimized] target(s) in 0.01s", file=sys.stderr)
    '''
)

FAKE_LINKER = textwrap.dedent(
    '''
    import json
    import os
    import sys

    calls = os.environ.get("FAKE_TOOL_CALLS")
    if calls:
        with open(calls, "a", encoding="utf-8") as f:
            f.write(json.dumps({"tool": "ptx-linker", "args": sys.argv[1:]}) + "\\n")

    code = int(os.environ.get("FAKE_LINKER_EXIT", "0"))
    if code:
        print("ptx-linker: broken installation", file=sys.stderr)
        sys.exit(code)
    print(f"ptx-linker {os.environ.get('FAKE_LINKER_VERSION', '0.9.1')}")
    '''
)

SAMPLE_LIB = """\
#![no_std]

mod mod1;
mod mod2;

#[no_mangle]
pub unsafe extern "ptx-kernel" fn the_kernel(x: *const f64, y: *mut f64, a: f64) {
    *y.offset(0) = *x.offset(0) * a;
}
"""

FAULTY_LIB = """\
#![no_std]

extern "C" {}

#[no_mangle]
pub unsafe extern "ptx-kernel" fn the_kernel(x: *const f64, y: *mut f64, a: f64) {
    *y.offset(0) = external_fn(*x.offset(0)) * a;
}
"""


def write_manifest(crate_dir: Path, name: str, example_path: str = "src/lib.rs") -> Path:
    """Write a Cargo.toml with a canonical `<name>-ptx-builder` example entry."""
    manifest = crate_dir / "Cargo.toml"
    manifest.write_text(
        textwrap.dedent(
            f"""\
            [package]
            name = "{name}"
            version = "0.1.0"
            edition = "2021"

            [[example]]
            name = "{name}-ptx-builder"
            path = "{example_path}"
            crate-type = ["cdylib"]
            """
        ),
        encoding="utf-8",
    )
    return manifest


def make_crate(root: Path, dirname: str, name: str, files: Dict[str, str], lock: bool = True) -> Path:
    crate_dir = root / dirname
    (crate_dir / "src").mkdir(parents=True)
    for relative, content in files.items():
        (crate_dir / relative).write_text(content, encoding="utf-8")
    example_path = "src/lib.rs" if "src/lib.rs" in files else "src/main.rs"
    write_manifest(crate_dir, name, example_path)
    if lock:
        (crate_dir / "Cargo.lock").write_text("# fake lock\n", encoding="utf-8")
    return crate_dir.resolve()


@dataclass
class FakeToolchain:
    """Handle on the fake cargo / ptx-linker installation."""

    bin_dir: Path
    calls_file: Path

    def calls(self, tool: str = "") -> List[Dict[str, Any]]:
        if not self.calls_file.exists():
            return []
        entries = [json.loads(line) for line in self.calls_file.read_text(encoding="utf-8").splitlines() if line]
        return [e for e in entries if not tool or e["tool"] == tool]


def _install_script(bin_dir: Path, name: str, body: str) -> None:
    script = bin_dir / name
    script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Every test gets its own output root and no inherited build markers."""
    output_root = tmp_path / "ptx-out"
    monkeypatch.setenv("PTXBUILD_OUTPUT_DIR", str(output_root))
    for var in ("PTX_CRATE_BUILDING", "CARGO", "OUT_DIR", "FAKE_CARGO_SLEEP", "FAKE_CARGO_SKIP_ARTIFACT",
                "FAKE_LINKER_EXIT", "FAKE_LINKER_VERSION", "PTXBUILD_VERBOSE"):
        monkeypatch.delenv(var, raising=False)
    return output_root


@pytest.fixture
def output_root(_isolated_environment: Path) -> Path:
    return _isolated_environment


@pytest.fixture
def fake_toolchain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeToolchain:
    """Put fake `cargo` and `ptx-linker` first on PATH (POSIX only)."""
    if sys.platform == "win32":
        pytest.skip("fake toolchain scripts rely on shebang lines")

    bin_dir = tmp_path / "fake-bin"
    bin_dir.mkdir()
    _install_script(bin_dir, "cargo", FAKE_CARGO)
    _install_script(bin_dir, "ptx-linker", FAKE_LINKER)

    calls_file = tmp_path / "tool_calls.jsonl"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_TOOL_CALLS", str(calls_file))
    return FakeToolchain(bin_dir=bin_dir, calls_file=calls_file)


@pytest.fixture
def fixtures_root(tmp_path: Path) -> Path:
    root = tmp_path / "fixtures"
    root.mkdir()
    return root


@pytest.fixture
def sample_crate(fixtures_root: Path) -> Path:
    return make_crate(
        fixtures_root,
        "sample-crate",
        "sample-ptx_crate",
        {
            "src/lib.rs": SAMPLE_LIB,
            "src/mod1.rs": "pub fn one() {}\n",
            "src/mod2.rs": "pub fn two() {}\n",
        },
    )


@pytest.fixture
def mixed_crate(fixtures_root: Path) -> Path:
    return make_crate(
        fixtures_root,
        "mixed-crate",
        "mixed-crate",
        {"src/lib.rs": SAMPLE_LIB.replace("mod mod1;\nmod mod2;\n", ""), "src/main.rs": "fn main() {}\n"},
    )


@pytest.fixture
def binary_crate(fixtures_root: Path) -> Path:
    return make_crate(
        fixtures_root,
        "binary-crate",
        "sample-app-ptx_crate",
        {"src/main.rs": "#![no_std]\n#![no_main]\n"},
    )


@pytest.fixture
def faulty_crate(fixtures_root: Path) -> Path:
    return make_crate(fixtures_root, "faulty-crate", "faulty-ptx_crate", {"src/lib.rs": FAULTY_LIB})
