"""Tests for the single-instance guard."""

import os
import stat
import sys

import pytest

import pkgsweep_lock
from pkgsweep_lock import ERROR_ACCESS_DENIED, InstanceGuard

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="named mutexes are re-entrant per thread")
not_root = pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores file permissions")


@posix_only
def test_second_guard_is_refused_while_first_is_held(tmp_path):
    with InstanceGuard("pkgsweep-test", tmp_path) as first:
        assert first.acquired is True
        with InstanceGuard("pkgsweep-test", tmp_path) as second:
            assert second.acquired is False


@posix_only
def test_lock_is_released_on_exit(tmp_path):
    with InstanceGuard("pkgsweep-test", tmp_path) as first:
        assert first.acquired
    assert first.acquired is False

    with InstanceGuard("pkgsweep-test", tmp_path) as again:
        assert again.acquired is True


@posix_only
def test_lock_is_released_when_body_raises(tmp_path):
    with pytest.raises(RuntimeError):
        with InstanceGuard("pkgsweep-test", tmp_path):
            raise RuntimeError("boom")

    guard = InstanceGuard("pkgsweep-test", tmp_path)
    assert guard.acquire() is True
    guard.release()


@posix_only
def test_lock_file_records_owner_pid(tmp_path):
    with InstanceGuard("pkgsweep-test", tmp_path) as guard:
        assert guard.lock_path.read_text().strip() == str(os.getpid())


@posix_only
def test_different_names_do_not_conflict(tmp_path):
    with InstanceGuard("pkgsweep-a", tmp_path) as a, InstanceGuard("pkgsweep-b", tmp_path) as b:
        assert a.acquired and b.acquired


@posix_only
def test_lock_file_is_writable_by_everyone(tmp_path):
    with InstanceGuard("pkgsweep-test", tmp_path) as guard:
        assert stat.S_IMODE(guard.lock_path.stat().st_mode) == 0o666


@posix_only
def test_read_only_lock_file_left_by_another_user_is_still_lockable(tmp_path):
    lock_file = tmp_path / "pkgsweep-test.lock"
    lock_file.write_text("4242\n")
    lock_file.chmod(0o444)

    with InstanceGuard("pkgsweep-test", tmp_path) as first:
        assert first.acquired is True
        with InstanceGuard("pkgsweep-test", tmp_path) as second:
            assert second.acquired is False


@posix_only
@not_root
def test_unreadable_lock_file_means_not_acquired(tmp_path):
    lock_file = tmp_path / "pkgsweep-test.lock"
    lock_file.write_text("")
    lock_file.chmod(0)
    try:
        guard = InstanceGuard("pkgsweep-test", tmp_path)
        assert guard.acquire() is False
        assert guard.acquired is False
    finally:
        lock_file.chmod(0o600)


class FakeKernel32:
    def __init__(self, handle=0):
        self.handle = handle
        self.closed = []

    def CreateMutexW(self, attrs, initial_owner, name):
        self.name = name
        return self.handle

    def WaitForSingleObject(self, handle, timeout):
        return pkgsweep_lock.WAIT_OBJECT_0

    def CloseHandle(self, handle):
        self.closed.append(handle)


def test_mutex_owned_by_another_account_means_not_acquired(monkeypatch):
    kernel32 = FakeKernel32(handle=0)
    monkeypatch.setattr(pkgsweep_lock, "_kernel32", lambda: kernel32)
    monkeypatch.setattr(pkgsweep_lock, "_last_error", lambda: ERROR_ACCESS_DENIED)

    assert InstanceGuard("pkgsweep-test")._acquire_mutex() is False
    assert kernel32.name == "Global\\pkgsweep-test"


def test_other_mutex_errors_are_raised(monkeypatch):
    monkeypatch.setattr(pkgsweep_lock, "_kernel32", lambda: FakeKernel32(handle=0))
    monkeypatch.setattr(pkgsweep_lock, "_last_error", lambda: 87)

    with pytest.raises(OSError):
        InstanceGuard("pkgsweep-test")._acquire_mutex()
