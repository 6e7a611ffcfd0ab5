import os
from pathlib import Path

import pytest

from sixin4_agent import pidfile
from sixin4_agent.pidfile import AlreadyRunningError, PidFile


def test_pid_file_written_and_removed(tmp_path: Path):
    path = tmp_path / "run" / "agent.pid"

    with PidFile(path):
        assert path.read_text().strip() == str(os.getpid())

    assert not path.exists()


def test_live_instance_blocks_start(tmp_path: Path, monkeypatch):
    path = tmp_path / "agent.pid"
    path.write_text("4242\n")
    monkeypatch.setattr(pidfile, "_pid_alive", lambda pid: True)

    with pytest.raises(AlreadyRunningError) as excinfo:
        PidFile(path).acquire()

    assert excinfo.value.pid == 4242
    assert path.read_text() == "4242\n"


def test_stale_pid_file_is_replaced(tmp_path: Path, monkeypatch):
    path = tmp_path / "agent.pid"
    path.write_text("4242\n")
    monkeypatch.setattr(pidfile, "_pid_alive", lambda pid: False)

    guard = PidFile(path)
    guard.acquire()

    assert guard.read() == os.getpid()
    guard.release()
    assert not path.exists()


def test_malformed_pid_file_is_ignored(tmp_path: Path):
    path = tmp_path / "agent.pid"
    path.write_text("garbage")

    with PidFile(path) as guard:
        assert guard.read() == os.getpid()


def test_release_leaves_foreign_pid_file(tmp_path: Path):
    path = tmp_path / "agent.pid"
    guard = PidFile(path)
    guard.acquire()
    path.write_text("4242\n")

    guard.release()

    assert path.exists()
