#!/usr/bin/env python3
# pkgsweep_runner.py
"""
pkgsweep_runner.py — run the external package manager with a hard timeout

 - spawns the child without a console window / terminal
 - captures stdout/stderr as text and forwards every non-blank line to the
   logger (stdout at INFO, stderr at WARN); blank lines and winget's
   whitespace-only spinner frames are dropped, the full text stays on the
   CommandResult
 - hard timeout: kill the process (group on POSIX) and return timed_out=True
 - exit codes are folded into signed 32-bit so HRESULT-style sentinels compare
   the same on every platform
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from pkgsweep_config import to_signed32

DEFAULT_TIMEOUT = 1800
TIMEOUT_EXIT_CODE = 124
SPAWN_FAILED_EXIT_CODE = 1
KILL_GRACE_SECONDS = 5


# ---------------- results / errors ----------------
@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False
    args: Tuple[str, ...] = ()
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def check(self, ok_codes: Iterable[int] = (0,)) -> "CommandResult":
        """Raise CommandTimeout / NonZeroExit unless the call ended with one of ok_codes."""
        if self.timed_out:
            raise CommandTimeout(self)
        if self.exit_code not in tuple(ok_codes):
            raise NonZeroExit(self)
        return self


class CommandError(Exception):
    def __init__(self, result: CommandResult, message: str):
        super().__init__(message)
        self.result = result

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class CommandTimeout(CommandError):
    def __init__(self, result: CommandResult):
        super().__init__(result, f"command timed out after {result.duration:.0f}s: {' '.join(result.args)}")


class NonZeroExit(CommandError):
    def __init__(self, result: CommandResult):
        super().__init__(result, f"command exited with {result.exit_code}: {' '.join(result.args)}")


# ---------------- spawn options ----------------
def _popen_kwargs() -> dict:
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        si.wShowWindow = 0  # SW_HIDE
        return {"creationflags": subprocess.CREATE_NO_WINDOW, "startupinfo": si}
    return {"start_new_session": True}


def _kill(proc: subprocess.Popen) -> None:
    """Best-effort kill; failures are ignored."""
    if sys.platform != "win32":
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        except OSError:
            pass
    try:
        proc.kill()
    except OSError:
        pass


def _lines(text: str) -> List[str]:
    return [ln for ln in text.splitlines() if ln.strip()]


# ---------------- runner ----------------
class ProcessRunner:
    def __init__(self, logger, timeout: int = DEFAULT_TIMEOUT):
        self.logger = logger
        self.timeout = timeout

    def run(self, executable: str, args: Sequence[str], timeout: Optional[int] = None) -> CommandResult:
        timeout = timeout or self.timeout
        cmd = [executable, *args]
        self.logger.info("runner.exec", f"Running: {' '.join(cmd)} (timeout {timeout}s)")

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                **_popen_kwargs(),
            )
        except OSError as e:
            self.logger.warning("runner.spawn.fail", f"Failed to start {executable}: {e}")
            return CommandResult(SPAWN_FAILED_EXIT_CODE, "", str(e), False, tuple(cmd), time.monotonic() - start)

        timed_out = False
        try:
            out, err = proc.communicate(timeout=timeout)
            rc = to_signed32(proc.returncode)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill(proc)
            try:
                out, err = proc.communicate(timeout=KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                # grandchildren may still hold the pipes
                out, err = "", ""
            rc = TIMEOUT_EXIT_CODE

        duration = time.monotonic() - start
        for line in _lines(out or ""):
            self.logger.info("runner.stdout", line)
        for line in _lines(err or ""):
            self.logger.warning("runner.stderr", line)
        if timed_out:
            self.logger.warning("runner.timeout", f"Timed out after {timeout}s, process killed: {' '.join(cmd)}")

        return CommandResult(rc, out or "", err or "", timed_out, tuple(cmd), duration)
