"""Pid file guard ensuring a single agent instance per tunnel."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from sixin4.exceptions import TunnelError

LOG = logging.getLogger(__name__)


class AlreadyRunningError(TunnelError):
    def __init__(self, path: Path, pid: int) -> None:
        super().__init__(f"another instance is running (pid {pid}, pid file {path})")
        self.path = path
        self.pid = pid


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists but belongs to someone else
        return True
    return True


class PidFile:
    """Context manager that records our pid and refuses to run twice.

    A pid file whose process is gone is treated as stale and replaced.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._owned = False

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[int]:
        try:
            text = self._path.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            LOG.warning("ignoring malformed pid file %s", self._path)
            return None

    def acquire(self) -> None:
        pid = self.read()
        if pid is not None and pid != os.getpid() and _pid_alive(pid):
            raise AlreadyRunningError(self._path, pid)
        if pid is not None:
            LOG.info("replacing stale pid file %s (pid %s)", self._path, pid)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._path.write_text(f"{os.getpid()}\n")
        except OSError as exc:
            raise TunnelError(f"cannot write pid file {self._path}: {exc}") from exc
        self._owned = True

    def release(self) -> None:
        if not self._owned:
            return
        if self.read() == os.getpid():
            self._path.unlink(missing_ok=True)
        self._owned = False

    def __enter__(self) -> "PidFile":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
