#!/usr/bin/env python3
# pkgsweep_lock.py
"""
Single-instance guard.

Windows: named kernel mutex (Global\\<name>).
POSIX:   flock on <lock_dir>/<name>.lock.

Acquisition never blocks: if another instance holds the lock, `acquired` is
False and the caller decides what to do. Release happens in __exit__.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

ERROR_ACCESS_DENIED = 5
WAIT_OBJECT_0 = 0
WAIT_ABANDONED = 0x80
LOCK_FILE_MODE = 0o666


def _last_error() -> int:
    import ctypes

    return ctypes.get_last_error()


def _kernel32():
    import ctypes
    from ctypes import wintypes

    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    kernel32.CreateMutexW.restype = wintypes.HANDLE
    kernel32.CreateMutexW.argtypes = (wintypes.LPVOID, wintypes.BOOL, wintypes.LPCWSTR)
    kernel32.WaitForSingleObject.restype = wintypes.DWORD
    kernel32.WaitForSingleObject.argtypes = (wintypes.HANDLE, wintypes.DWORD)
    kernel32.ReleaseMutex.argtypes = (wintypes.HANDLE,)
    kernel32.CloseHandle.argtypes = (wintypes.HANDLE,)
    return kernel32


class InstanceGuard:
    def __init__(self, name: str = "pkgsweep", lock_dir: Optional[str] = None):
        self.name = name
        self.lock_dir = Path(lock_dir) if lock_dir else Path(tempfile.gettempdir())
        self.acquired = False
        self._handle = None
        self._fd: Optional[int] = None

    @property
    def lock_path(self) -> Path:
        return self.lock_dir / f"{self.name}.lock"

    # ---------------- windows ----------------
    def _acquire_mutex(self) -> bool:
        kernel32 = _kernel32()
        handle = kernel32.CreateMutexW(None, False, f"Global\\{self.name}")
        if not handle:
            err = _last_error()
            # mutex exists but was created by another account (SYSTEM, elevated task)
            if err == ERROR_ACCESS_DENIED:
                return False
            raise OSError(err, f"CreateMutexW failed for {self.name}")
        # WAIT_ABANDONED: previous owner died without releasing, we own it now
        rc = kernel32.WaitForSingleObject(handle, 0)
        if rc not in (WAIT_OBJECT_0, WAIT_ABANDONED):
            kernel32.CloseHandle(handle)
            return False
        self._handle = handle
        return True

    def _release_mutex(self) -> None:
        kernel32 = _kernel32()
        try:
            kernel32.ReleaseMutex(self._handle)
        finally:
            kernel32.CloseHandle(self._handle)
            self._handle = None

    # ---------------- posix ----------------
    def _acquire_flock(self) -> bool:
        import fcntl

        self.lock_dir.mkdir(parents=True, exist_ok=True)
        fd = self._open_lock_file()
        if fd is None:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError:
            os.close(fd)
            raise
        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError:
            # opened read-only: the file belongs to another user, the lock still holds
            pass
        self._fd = fd
        return True

    def _open_lock_file(self) -> Optional[int]:
        """
        Open (creating if needed) the lock file. The file outlives the run and
        may belong to another user, so fall back to a read-only descriptor,
        which flock accepts. None means the file exists but cannot be opened.
        """
        try:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, LOCK_FILE_MODE)
        except PermissionError:
            if not self.lock_path.exists():
                raise
            try:
                return os.open(self.lock_path, os.O_RDONLY)
            except PermissionError:
                return None
        try:
            # umask strips group/other write; only the owner can widen it
            os.fchmod(fd, LOCK_FILE_MODE)
        except PermissionError:
            pass
        return fd

    def _release_flock(self) -> None:
        import fcntl

        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    # ---------------- public ----------------
    def acquire(self) -> bool:
        if self.acquired:
            return True
        if sys.platform == "win32":
            self.acquired = self._acquire_mutex()
        else:
            self.acquired = self._acquire_flock()
        return self.acquired

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            if sys.platform == "win32":
                self._release_mutex()
            else:
                self._release_flock()
        finally:
            self.acquired = False

    def __enter__(self) -> "InstanceGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
