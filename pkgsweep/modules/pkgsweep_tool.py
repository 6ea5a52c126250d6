#!/usr/bin/env python3
# pkgsweep_tool.py
"""
Everything pkgsweep knows about the external package manager (winget).

 - ToolLocator: resolve the executable to an explicit path, with a fallback
   search through user-scoped install dirs, and an optional one-shot
   bootstrap command when it is missing
 - CommandSet: argument lists for list / upgrade-all / upgrade-one / source update
 - ExitCodePolicy: the tool's undocumented sentinel exit codes
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from pkgsweep_config import (
    WINGET_NO_APPLICABLE_UPDATE,
    WINGET_UPDATE_ALL_HAS_FAILURE,
    ConfigStore,
    to_signed32,
)


class ToolNotFound(Exception):
    pass


# ---------------- exit codes ----------------
@dataclass(frozen=True)
class ExitCodePolicy:
    """
    Sentinel exit codes of the external tool.

    These are not part of any documented contract and have moved between
    winget releases, so both are overridable (exit_codes.* in config).
    """

    no_update: int = to_signed32(WINGET_NO_APPLICABLE_UPDATE)
    partial_failure: int = to_signed32(WINGET_UPDATE_ALL_HAS_FAILURE)

    @classmethod
    def from_config(cls, cfg: ConfigStore) -> "ExitCodePolicy":
        return cls(
            no_update=cfg.get_exit_code("exit_codes.no_update"),
            partial_failure=cfg.get_exit_code("exit_codes.partial_failure"),
        )

    @property
    def success_codes(self) -> tuple:
        return (0, self.no_update)


# ---------------- command dialect ----------------
@dataclass(frozen=True)
class CommandSet:
    include_pinned: bool = False
    include_unknown: bool = False
    force: bool = True

    _COMMON = ("--accept-source-agreements", "--disable-interactivity")
    _INSTALL = ("--silent", "--accept-package-agreements")

    def _scope(self) -> List[str]:
        flags = []
        if self.include_unknown:
            flags.append("--include-unknown")
        if self.include_pinned:
            flags.append("--include-pinned")
        return flags

    def list_pending(self) -> List[str]:
        return ["upgrade", *self._COMMON, *self._scope()]

    def upgrade_all(self) -> List[str]:
        return ["upgrade", "--all", *self._INSTALL, *self._COMMON, *self._scope()]

    def upgrade_one(self, pkg_id: str) -> List[str]:
        args = ["upgrade", "--id", pkg_id, "--exact", *self._INSTALL, *self._COMMON]
        if self.force:
            args.append("--force")
        if self.include_pinned:
            args.append("--include-pinned")
        return args

    def heal_sources(self) -> List[str]:
        return ["source", "update"]


# ---------------- locating the executable ----------------
@dataclass
class ToolLocator:
    name: str = "winget"
    fallback_dirs: List[str] = field(default_factory=list)
    bootstrap_command: List[str] = field(default_factory=list)
    path_env: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: ConfigStore) -> "ToolLocator":
        return cls(
            name=cfg.get("tool.name"),
            fallback_dirs=cfg.get_list("tool.fallback_dirs"),
            bootstrap_command=cfg.get_list("tool.bootstrap_command"),
        )

    def _search_path(self) -> str:
        base = self.path_env if self.path_env is not None else os.environ.get("PATH", "")
        parts = [p for p in base.split(os.pathsep) if p]
        parts.extend(d for d in self.fallback_dirs if d and d not in parts)
        return os.pathsep.join(parts)

    def locate(self) -> Optional[str]:
        """Return the absolute executable path, or None. Never touches os.environ."""
        found = shutil.which(self.name, path=self.path_env)
        if found:
            return os.path.abspath(found)
        found = shutil.which(self.name, path=self._search_path())
        return os.path.abspath(found) if found else None

    def bootstrap(self, runner) -> bool:
        if not self.bootstrap_command:
            return False
        exe, *args = self.bootstrap_command
        result = runner.run(exe, args)
        if not result.ok:
            runner.logger.warning(
                "tool.bootstrap.fail",
                f"Bootstrap command failed (exit {result.exit_code}, timed_out={result.timed_out})",
            )
        return result.ok

    def ensure(self, runner) -> str:
        path = self.locate()
        if path:
            return path
        if self.bootstrap_command:
            runner.logger.warning("tool.missing", f"{self.name} not found, running bootstrap command")
            self.bootstrap(runner)
            path = self.locate()
            if path:
                return path
        searched: Sequence[str] = self._search_path().split(os.pathsep)
        raise ToolNotFound(f"{self.name} not found on PATH or in {', '.join(self.fallback_dirs) or 'fallback dirs'} ({len(searched)} dirs searched)")
