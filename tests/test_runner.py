"""Tests for ProcessRunner and CommandResult."""

import os
import sys
import time

import pytest

from pkgsweep_runner import (
    TIMEOUT_EXIT_CODE,
    CommandResult,
    CommandTimeout,
    NonZeroExit,
    ProcessRunner,
)

PY = sys.executable


def test_captures_output_and_exit_code(logger, log_path):
    runner = ProcessRunner(logger, timeout=60)
    result = runner.run(PY, ["-c", "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"])

    assert result.exit_code == 3
    assert result.stdout.strip() == "hello"
    assert result.stderr.strip() == "oops"
    assert result.timed_out is False
    assert result.args[0] == PY


def test_output_lines_are_forwarded_to_the_log(logger, log_path):
    ProcessRunner(logger, timeout=60).run(PY, ["-c", "import sys; print('one'); print('two'); print('bad', file=sys.stderr)"])

    text = log_path.read_text(encoding="utf-8")
    assert "[INFO] Running: " in text
    assert "[INFO] one" in text
    assert "[INFO] two" in text
    assert "[WARN] bad" in text


@pytest.mark.skipif(sys.platform == "win32", reason="pid probing via os.kill(pid, 0)")
def test_timeout_kills_the_process(logger, tmp_path):
    pid_file = tmp_path / "child.pid"
    code = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(60)"

    start = time.monotonic()
    result = ProcessRunner(logger).run(PY, ["-c", code], timeout=3)

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert time.monotonic() - start < 30
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_spawn_failure_is_a_failed_result(logger, tmp_path):
    result = ProcessRunner(logger).run(str(tmp_path / "missing-tool"), ["upgrade"])

    assert result.exit_code == 1
    assert result.timed_out is False
    assert result.stderr


def test_check_raises_typed_errors():
    ok = CommandResult(0, "", "")
    assert ok.check() is ok
    assert CommandResult(7, "", "").check(ok_codes=(0, 7)).exit_code == 7

    with pytest.raises(NonZeroExit) as excinfo:
        CommandResult(2, "", "", args=("winget", "upgrade")).check()
    assert excinfo.value.exit_code == 2
    assert "winget upgrade" in str(excinfo.value)

    with pytest.raises(CommandTimeout):
        CommandResult(TIMEOUT_EXIT_CODE, "", "", timed_out=True).check(ok_codes=(TIMEOUT_EXIT_CODE,))


def test_blank_output_lines_are_not_forwarded(logger, log_path):
    result = ProcessRunner(logger, timeout=60).run(PY, ["-c", "print('first'); print(); print('   '); print('last')"])

    assert result.stdout.splitlines() == ["first", "", "   ", "last"]
    lines = log_path.read_text(encoding="utf-8").splitlines()
    forwarded = [ln.split("] ", 1)[1] for ln in lines if "[INFO]" in ln and "Running:" not in ln]
    assert forwarded == ["first", "last"]
