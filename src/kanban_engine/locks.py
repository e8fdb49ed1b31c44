"""Combined in-process and inter-process locking for the file stores."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from filelock import FileLock, Timeout

from .errors import LockTimeoutError


@contextmanager
def _hold(thread_lock: threading.RLock, file_lock: FileLock, timeout: Optional[float] = None) -> Iterator[None]:
    """Hold *thread_lock* then *file_lock*.

    *timeout* bounds the combined wait; ``None`` waits on the thread lock
    forever and uses the file lock's own timeout.  Raises
    :class:`LockTimeoutError` when the wait runs out.
    """
    if timeout is not None and timeout <= 0:
        raise LockTimeoutError(file_lock.lock_file)
    started = time.monotonic()
    if not thread_lock.acquire(timeout=-1 if timeout is None else timeout):
        raise LockTimeoutError(file_lock.lock_file)
    try:
        left = None if timeout is None else max(0.0, timeout - (time.monotonic() - started))
        try:
            file_lock.acquire(timeout=left)
        except Timeout as exc:
            raise LockTimeoutError(exc.lock_file) from exc
        try:
            yield
        finally:
            file_lock.release()
    finally:
        thread_lock.release()
