"""Advisory inter-process locks for the file-backed stores.

Every process that opens the same registry data takes the lock on a
sidecar `<name>.lock` file before reading-for-write or committing, so
separate CLI runs serialise their writes. POSIX `flock` semantics: the
lock belongs to the open file, so two stores in one process exclude each
other as well.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import time
from pathlib import Path
from typing import Iterator, Optional

_POLL_INTERVAL = 0.01


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextlib.contextmanager
def locked(
    path: Path, shared: bool = False, timeout: Optional[float] = None,
) -> Iterator[None]:
    """Hold an exclusive (or shared) lock on `path` for the block.

    Raises:
        TimeoutError: If the lock is not acquired within timeout seconds.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        mode = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
        if timeout is None:
            fcntl.flock(fd, mode)
        else:
            deadline = time.monotonic() + timeout
            while True:
                try:
                    fcntl.flock(fd, mode | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise TimeoutError(f"lock on {path.name} not acquired in time")
                    time.sleep(_POLL_INTERVAL)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
