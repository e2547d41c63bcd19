from __future__ import annotations

import fcntl
import os


class RunLock:
    """
    Exclusive advisory lock on a file beside the job store (`<jobs_path>.lock`).

    Every controller, thread or process that writes the same store contends on
    this one file, so a scheduled run in `serve` and a `scrape` from another
    process can never interleave load/merge/save.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: int | None = None

    @classmethod
    def for_store(cls, jobs_path: str) -> RunLock:
        return cls(f"{jobs_path}.lock")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, blocking: bool = True) -> bool:
        """Returns False only when blocking=False and another holder has the lock."""
        d = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(d, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError:
            os.close(fd)
            raise
        self._fd = fd
        return True

    def release(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
