"""
Cross-process execution lock.

Guards a critical section that must not run twice at once across processes
sharing a lock directory.

- Preferred mechanism: an exclusive `fcntl.flock` on `<dir>/<name>.lock`.
  Waiters block until release and the kernel drops the lock if the holder dies.
- Fallback (platforms without flock): a flag file `<dir>/<name>.flag` created
  with O_CREAT|O_EXCL and holding the acquisition timestamp. If the flag
  already exists the section is skipped and the caller gets None. A flag left
  behind by a crashed holder is not cleared automatically.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
import sys
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar, Union

if sys.platform == "win32":
    fcntl = None
    _FLOCK_AVAILABLE = False
else:
    import fcntl

    _FLOCK_AVAILABLE = True

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
DEFAULT_LOCK_DIR = Path(tempfile.gettempdir()) / "delegation-vault-locks"

MECHANISM_FLOCK = "flock"
MECHANISM_FLAG = "flag"


@dataclass(frozen=True)
class ExecutionLockToken:
    """Marker for the current holder; lives only as long as the critical section."""

    name: str
    mechanism: str
    acquired_at: float


class ExecutionLock:
    def __init__(
        self,
        name: str,
        directory: Optional[Union[str, Path]] = None,
        *,
        use_flock: Optional[bool] = None,
    ) -> None:
        if not isinstance(name, str) or not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid lock name: {name!r}")
        self.name = name
        self.directory = Path(directory) if directory else DEFAULT_LOCK_DIR
        if use_flock is None:
            use_flock = _FLOCK_AVAILABLE
        if use_flock and not _FLOCK_AVAILABLE:
            raise ValueError("flock is not available on this platform")
        self.use_flock = use_flock

    @property
    def mechanism(self) -> str:
        return MECHANISM_FLOCK if self.use_flock else MECHANISM_FLAG

    @property
    def lock_path(self) -> Path:
        return self.directory / f"{self.name}.lock"

    @property
    def flag_path(self) -> Path:
        return self.directory / f"{self.name}.flag"

    def _take(self) -> Optional[tuple]:
        """Acquire the lock. Returns a release handle, or None if the flag is held."""
        self.directory.mkdir(parents=True, exist_ok=True)
        if self.use_flock:
            handle = open(self.lock_path, "a+")
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            except OSError:
                handle.close()
                raise
            return (MECHANISM_FLOCK, handle)

        try:
            fd = os.open(self.flag_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            logger.info("Execution lock %s is already held, skipping", self.name)
            return None
        with os.fdopen(fd, "w") as flag:
            flag.write(str(int(time.time() * 1000)))
        return (MECHANISM_FLAG, None)

    def _release(self, handle: tuple) -> None:
        mechanism, lock_file = handle
        if mechanism == MECHANISM_FLOCK:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            finally:
                lock_file.close()
            return
        try:
            self.flag_path.unlink()
        except FileNotFoundError:
            logger.warning("Execution lock flag %s vanished before release", self.flag_path)

    @contextmanager
    def acquire(self) -> Iterator[Optional[ExecutionLockToken]]:
        """
        Scoped acquisition.

        Yields an ExecutionLockToken while the lock is held, or None when the
        fallback flag is already set. The lock is released on every exit path.
        """
        handle = self._take()
        if handle is None:
            yield None
            return
        try:
            yield ExecutionLockToken(self.name, self.mechanism, time.time())
        finally:
            self._release(handle)


def run_exclusive(
    lock_name: str,
    critical_section: Callable[[], T],
    directory: Optional[Union[str, Path]] = None,
    *,
    use_flock: Optional[bool] = None,
) -> Optional[T]:
    """Run `critical_section` under the named lock; None if it was skipped."""
    lock = ExecutionLock(lock_name, directory, use_flock=use_flock)
    with lock.acquire() as token:
        if token is None:
            return None
        return critical_section()


def _release_abandoned(lock: ExecutionLock, done: "asyncio.Future") -> None:
    if done.cancelled() or done.exception() is not None:
        return
    handle = done.result()
    if handle is not None:
        lock._release(handle)
        logger.info("Released execution lock %s taken after its waiter was cancelled", lock.name)


async def arun_exclusive(
    lock_name: str,
    critical_section: Callable[[], Union[T, Awaitable[T]]],
    directory: Optional[Union[str, Path]] = None,
    *,
    use_flock: Optional[bool] = None,
) -> Optional[T]:
    """Async variant; a blocking flock wait runs in a worker thread."""
    lock = ExecutionLock(lock_name, directory, use_flock=use_flock)
    if lock.use_flock:
        waiter = asyncio.ensure_future(asyncio.to_thread(lock._take))
        try:
            handle = await asyncio.shield(waiter)
        except asyncio.CancelledError:
            # The worker thread may still get the lock after we stop waiting.
            waiter.add_done_callback(lambda done: _release_abandoned(lock, done))
            raise
    else:
        handle = lock._take()
    if handle is None:
        return None
    try:
        result: Any = critical_section()
        if inspect.isawaitable(result):
            result = await result
        return result
    finally:
        lock._release(handle)
