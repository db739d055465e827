"""
Naming-slot arbitration for a shared crate manifest.

Cargo selects exactly one target through ``--example <name>``, so every
build temporarily renames the crate's example entry in Cargo.toml to its own
invocation name. Several builders may share one manifest (a crate built for
the host and the device, several kernels built from one crate with different
prefixes), so the rename is guarded by a lock file in the output directory.

The lock file plays two roles, kept apart here:
- FileLock: OS-level exclusive lock (fcntl.flock / msvcrt.locking), blocking,
  no timeout
- NamingSlot: the name currently aliased in the manifest, read and written
  only through the locked handle

Protocol (NamingSlotArbiter.claim):
    1. Acquire the lock
    2. Read the slot; empty means the canonical name
    3. Record the invocation name in the slot
    4. Replace the prior name with the invocation name in the manifest
    5. Run the build
    6. Write the manifest back with the canonical name, even if the build failed
    7. Clear the slot and release the lock

A slot that is non-empty when acquired means the previous holder died
between steps 3 and 6; its name is what the manifest still holds, so
replacing it repairs the manifest.

The slot is cleared after the restore instead of keeping the last invocation
name. The manifest is back to canonical at that point, so a stale name in the
slot would turn the next claim's replace into a no-op and cargo would not
find its example.
"""

import errno
import logging
import os
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Dict, Iterator, Optional

from .errors import LockError, ManifestIOError

logger = logging.getLogger(__name__)

# One in-process lock per lock file; threads queue here before touching the OS lock
_thread_locks: Dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    key = os.path.normcase(str(path.resolve()))
    with _thread_locks_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _thread_locks[key] = lock
        return lock


def _lock_handle(handle: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        # LK_LOCK gives up after ~10 seconds; keep waiting like flock does
        while True:
            try:
                msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
                return
            except OSError as e:
                if e.errno != getattr(errno, "EDEADLOCK", errno.EDEADLK):
                    raise
    else:  # pragma: no cover - Unix only
        import fcntl  # type: ignore[import-not-found]

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_handle(handle: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:  # pragma: no cover - Unix only
        import fcntl  # type: ignore[import-not-found]

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileLock:
    """Exclusive cross-process lock on a file.

    Blocks until the lock is available. Threads of the same process are
    serialized by an in-process lock first, so they never contend on the
    OS lock with each other.

    Example:
        >>> with FileLock(Path("/tmp/out/.ptx-builder.lock")) as handle:
        ...     handle.read()
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle: Optional[IO[str]] = None
        self._thread_lock = _thread_lock_for(self.path)

    @property
    def is_locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> IO[str]:
        """Acquire the lock, creating the file if needed.

        Returns:
            Read/write text handle on the lock file, valid until release()

        Raises:
            LockError: If the file cannot be opened or locked
        """
        self._thread_lock.acquire()
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            handle = os.fdopen(fd, "r+", encoding="utf-8", newline="")
        except OSError as e:
            self._thread_lock.release()
            raise LockError(f"Unable to create the lockfile '{self.path}'") from e

        try:
            _lock_handle(handle)
        except OSError as e:
            handle.close()
            self._thread_lock.release()
            raise LockError(f"Unable to lock the lockfile '{self.path}'") from e

        self._handle = handle
        logger.debug(f"Acquired lock {self.path}")
        return handle

    def release(self) -> None:
        """Release the lock. Does nothing if it is not held.

        Raises:
            LockError: If the OS lock cannot be released
        """
        handle = self._handle
        if handle is None:
            return
        self._handle = None

        try:
            _unlock_handle(handle)
        except OSError as e:
            raise LockError(f"Unable to unlock the lockfile '{self.path}'") from e
        finally:
            handle.close()
            self._thread_lock.release()
        logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> IO[str]:
        return self.acquire()

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class NamingSlot:
    """The persisted entry-point name stored in a locked file."""

    def __init__(self, handle: IO[str], path: Path):
        self._handle = handle
        self.path = path

    def read(self) -> str:
        try:
            self._handle.seek(0)
            return self._handle.read()
        except OSError as e:
            raise LockError(f"Unable to read from the lockfile '{self.path}'") from e

    def write(self, name: str) -> None:
        try:
            self._handle.seek(0)
            self._handle.truncate()
            self._handle.write(name)
            self._handle.flush()
        except OSError as e:
            raise LockError(f"Unable to write to the lockfile '{self.path}'") from e

    def clear(self) -> None:
        self.write("")


class NamingSlotArbiter:
    """Lock-guarded temporary rename of a manifest's entry point.

    Args:
        lock_path: Lock/slot file, shared by every builder of the crate
        manifest_path: Cargo.toml of the crate
        canonical_name: Name the manifest holds between builds
    """

    def __init__(self, lock_path: Path, manifest_path: Path, canonical_name: str):
        self.lock_path = Path(lock_path)
        self.manifest_path = Path(manifest_path)
        self.canonical_name = canonical_name

    @contextmanager
    def claim(self, invocation_name: str) -> Iterator[str]:
        """Hold the lock with the manifest renamed to ``invocation_name``.

        The manifest is restored to the canonical name when the block exits,
        whether it exits normally or with an exception.

        Yields:
            The name the manifest held before the claim

        Raises:
            LockError: If the lock or slot cannot be used
            ManifestIOError: If Cargo.toml cannot be read or written
        """
        lock = FileLock(self.lock_path)
        handle = lock.acquire()
        try:
            slot = NamingSlot(handle, self.lock_path)
            prior_name = slot.read() or self.canonical_name
            original = self._read_manifest()
            restored = original.replace(prior_name, self.canonical_name)

            slot.write(invocation_name)
            logger.debug(f"Claimed naming slot: '{prior_name}' -> '{invocation_name}'")
            try:
                self._write_manifest(original.replace(prior_name, invocation_name))
                yield prior_name
            finally:
                self._write_manifest(restored)
                slot.clear()
                logger.debug(f"Restored manifest entry point to '{self.canonical_name}'")
        finally:
            lock.release()

    def _read_manifest(self) -> str:
        try:
            with open(self.manifest_path, encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise ManifestIOError(str(self.manifest_path), "read") from e

    def _write_manifest(self, text: str) -> None:
        try:
            with open(self.manifest_path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
        except OSError as e:
            raise ManifestIOError(str(self.manifest_path), "write") from e
