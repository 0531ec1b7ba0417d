"""Path-scoped advisory locks around artifact merge-and-write.

Two requests merging into the same build descriptor must not interleave.
Each artifact path maps to one lock file inside the configured lock
directory; the lock files never land in the generated project.
"""

from __future__ import annotations

import hashlib
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from archgen.errors import LockTimeout


def lock_file_for(lock_dir: Path, artifact_path: Path) -> Path:
    """Return the lock file guarding *artifact_path*."""
    digest = hashlib.sha256(str(artifact_path.resolve()).encode("utf-8")).hexdigest()[:24]
    return lock_dir / f"{artifact_path.name}.{digest}.lock"


@contextmanager
def path_lock(lock_dir: Path, artifact_path: Path, timeout: float) -> Generator[None, None, None]:
    """Hold an exclusive lock for *artifact_path* for the duration of the block.

    Raises:
        LockTimeout: If the lock is not acquired within *timeout* seconds.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_file_for(lock_dir, artifact_path)), timeout=timeout)
    try:
        lock.acquire()
    except Timeout:
        raise LockTimeout(str(artifact_path), timeout) from None
    try:
        yield
    finally:
        lock.release()
