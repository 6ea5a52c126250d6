#!/usr/bin/env python3
# pkgsweep_logger.py
"""
PkgsweepLogger — logger for the pkgsweep upgrade run

Features:
 - Append-only text log, one line per event: `YYYY-MM-DD HH:MM:SS [LEVEL] message`
 - LEVEL is INFO, WARN or ERROR (WARNING is written as WARN)
 - Size based rotation: once the file reaches max_bytes the next write moves it to
   `<path>.<timestamp>.bak` and continues in a fresh file
 - Colorized terminal echo through rich, disabled with quiet
 - Respects config: logging.file, logging.max_size_mb, logging.quiet
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape

from pkgsweep_config import ConfigStore

# ----------------- defaults -----------------
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
LINE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_TS_FORMAT = "%Y%m%d-%H%M%S"

_LEVEL_NAMES = {"WARNING": "WARN", "CRITICAL": "ERROR"}
_LEVEL_STYLES = {"INFO": "green", "WARN": "yellow", "ERROR": "bold red"}


# ----------------- file handling -----------------
class LineFormatter(logging.Formatter):
    """Formats records as `YYYY-MM-DD HH:MM:SS [LEVEL] message`."""

    def __init__(self):
        super().__init__(LINE_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        record.levelname = _LEVEL_NAMES.get(original, original)
        try:
            return super().format(record)
        finally:
            record.levelname = original


class SizeRotatingFileHandler(RotatingFileHandler):
    """
    Rotates once the file on disk has reached max_bytes.

    Unlike the stock handler, the check looks at the current size only (not
    size + pending record) and the old file is renamed to a single timestamped
    `.bak` instead of a numbered backup chain.
    """

    def __init__(self, filename: str, max_bytes: int = DEFAULT_MAX_BYTES, encoding: str = "utf-8"):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, mode="a", maxBytes=max_bytes, backupCount=0, encoding=encoding, delay=True)

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self.maxBytes <= 0:
            return False
        try:
            return os.path.getsize(self.baseFilename) >= self.maxBytes
        except OSError:
            return False

    def backup_name(self) -> str:
        stamp = datetime.now().strftime(BACKUP_TS_FORMAT)
        candidate = f"{self.baseFilename}.{stamp}.bak"
        n = 1
        while os.path.exists(candidate):
            candidate = f"{self.baseFilename}.{stamp}-{n}.bak"
            n += 1
        return candidate

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        if os.path.exists(self.baseFilename):
            os.replace(self.baseFilename, self.backup_name())
        self.stream = self._open()


# ----------------- main logger class -----------------
class PkgsweepLogger:
    """
    PkgsweepLogger writes the run log and echoes it to the terminal.
    Use PkgsweepLogger.from_config(cfg) to build from a ConfigStore.
    """

    def __init__(
        self,
        log_path: str | Path,
        *,
        module: str = "pkgsweep",
        max_bytes: int = DEFAULT_MAX_BYTES,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        self.module = module
        self.quiet = quiet
        self.log_path = Path(log_path).expanduser()
        self._console = console or Console(highlight=False)
        self._lock = threading.RLock()

        self._pylogger = logging.getLogger(f"pkgsweep.{self.module}")
        self._pylogger.setLevel(logging.INFO)
        self._pylogger.propagate = False
        self._handler = SizeRotatingFileHandler(str(self.log_path), max_bytes=max_bytes)
        self._handler.setFormatter(LineFormatter())
        # one file per logger name; a new instance replaces the previous handler
        for h in list(self._pylogger.handlers):
            if isinstance(h, SizeRotatingFileHandler):
                self._pylogger.removeHandler(h)
                h.close()
        self._pylogger.addHandler(self._handler)

    # ----------------- constructor helper -----------------
    @classmethod
    def from_config(cls, cfg: ConfigStore, module: str = "pkgsweep") -> "PkgsweepLogger":
        return cls(
            cfg.get("logging.file"),
            module=module,
            max_bytes=cfg.get_int("logging.max_size_mb") * 1024 * 1024,
            quiet=cfg.get_bool("logging.quiet"),
        )

    # ----------------- emit helpers -----------------
    def _format_line(self, event: str, message: str, meta: dict) -> str:
        text = message or event
        if meta:
            text = f"{text} {json.dumps(meta, ensure_ascii=False, default=str)}"
        return text

    def _emit(self, level: int, event: str, message: str, meta: dict, exc_text: Optional[str] = None) -> None:
        line = self._format_line(event, message, meta)
        with self._lock:
            self._pylogger.log(level, line)
            if exc_text:
                for tb_line in exc_text.rstrip().splitlines():
                    self._pylogger.log(level, tb_line)
            if not self.quiet:
                tag = _LEVEL_NAMES.get(logging.getLevelName(level), logging.getLevelName(level))
                style = _LEVEL_STYLES.get(tag, "cyan")
                self._console.print(f"{time.strftime(DATE_FORMAT)} [{style}]\\[{tag}][/{style}] {escape(line)}")

    # ------------- public API: logging convenience -------------
    def info(self, event: str, message: str = "", **meta: Any) -> None:
        self._emit(logging.INFO, event, message, meta)

    def warning(self, event: str, message: str = "", **meta: Any) -> None:
        self._emit(logging.WARNING, event, message, meta)

    def error(self, event: str, message: str = "", exc: Optional[BaseException] = None, **meta: Any) -> None:
        exc_text = None
        if exc is not None:
            exc_text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._emit(logging.ERROR, event, message, meta, exc_text)

    # ---------------- convenience ----------------
    def close(self):
        with self._lock:
            self._pylogger.removeHandler(self._handler)
            self._handler.close()


# ---------------- module-level convenience factory ----------------
_global_logger: Optional[PkgsweepLogger] = None
_global_lock = threading.RLock()


def get_logger(cfg: Optional[ConfigStore] = None, module: str = "pkgsweep") -> PkgsweepLogger:
    """
    Return a reusable global logger instance created from config.
    """
    global _global_logger
    with _global_lock:
        if _global_logger is None:
            _global_logger = PkgsweepLogger.from_config(cfg or ConfigStore.load(), module=module)
        return _global_logger


def reset_logger() -> None:
    global _global_logger
    with _global_lock:
        if _global_logger is not None:
            _global_logger.close()
        _global_logger = None
