#!/usr/bin/env python3
# pkgsweep_upgrade.py
"""
pkgsweep_upgrade.py

Runs the silent upgrade of everything the package manager reports as pending.

Flow (Phase):
  PREPARE -> VERIFY_TOOL_PRESENT -> HEAL_SOURCES (optional) -> PRE_SCAN
  -> BULK_UPGRADE -> PER_PACKAGE_RETRY (only if the bulk pass did not fully
  succeed) -> POST_SCAN -> DONE
FATAL is entered from any phase on an unrecoverable error and the error is
re-raised to the caller.

Exit code policy:
 - bulk: 0 or the "no applicable update" sentinel is success; the
   "partial failure" sentinel, a timeout or any other code triggers the retry
   pass
 - retry: one `upgrade --id <id> --exact` per pending id, one at a time;
   failures are logged and the loop moves on. There is no second round.
"""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from pkgsweep_config import ConfigStore
from pkgsweep_parser import parse_pending
from pkgsweep_runner import CommandResult, CommandTimeout, NonZeroExit
from pkgsweep_tool import CommandSet, ExitCodePolicy, ToolLocator


class Phase(str, enum.Enum):
    PREPARE = "prepare"
    VERIFY_TOOL_PRESENT = "verify_tool_present"
    HEAL_SOURCES = "heal_sources"
    PRE_SCAN = "pre_scan"
    BULK_UPGRADE = "bulk_upgrade"
    PER_PACKAGE_RETRY = "per_package_retry"
    POST_SCAN = "post_scan"
    DONE = "done"
    FATAL = "fatal"


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    NO_UPDATES = "no_updates"
    PARTIAL_FAILURE = "partial_failure"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self in (Outcome.SUCCESS, Outcome.NO_UPDATES)


def classify(result: CommandResult, codes: ExitCodePolicy) -> Outcome:
    """Map a finished command onto an Outcome using the tool's sentinel codes."""
    try:
        result.check(codes.success_codes)
    except CommandTimeout:
        return Outcome.TIMED_OUT
    except NonZeroExit as e:
        if e.exit_code == codes.partial_failure:
            return Outcome.PARTIAL_FAILURE
        return Outcome.FAILED
    return Outcome.NO_UPDATES if result.exit_code == codes.no_update else Outcome.SUCCESS


@dataclass(frozen=True)
class UpgradeSettings:
    timeout: int = 1800
    include_pinned: bool = False
    include_unknown: bool = False
    force: bool = True
    heal_sources: bool = True
    exit_codes: ExitCodePolicy = field(default_factory=ExitCodePolicy)

    @classmethod
    def from_config(cls, cfg: ConfigStore) -> "UpgradeSettings":
        return cls(
            timeout=cfg.get_int("runner.timeout"),
            include_pinned=cfg.get_bool("upgrade.include_pinned"),
            include_unknown=cfg.get_bool("upgrade.include_unknown"),
            force=cfg.get_bool("upgrade.force"),
            heal_sources=cfg.get_bool("upgrade.heal_sources"),
            exit_codes=ExitCodePolicy.from_config(cfg),
        )

    def command_set(self) -> CommandSet:
        return CommandSet(include_pinned=self.include_pinned, include_unknown=self.include_unknown, force=self.force)


@dataclass
class UpgradeReport:
    phase: Phase = Phase.PREPARE
    executable: Optional[str] = None
    pre_pending: List[str] = field(default_factory=list)
    bulk_outcome: Optional[Outcome] = None
    bulk_exit_code: Optional[int] = None
    retried: bool = False
    retry_outcomes: Dict[str, Outcome] = field(default_factory=dict)
    post_pending: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def retry_failures(self) -> List[str]:
        return [pkg for pkg, o in self.retry_outcomes.items() if not o.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["phase"] = self.phase.value
        d["bulk_outcome"] = self.bulk_outcome.value if self.bulk_outcome else None
        d["retry_outcomes"] = {k: v.value for k, v in self.retry_outcomes.items()}
        return d


class UpgradeOrchestrator:
    def __init__(self, settings: UpgradeSettings, runner: Any, locator: ToolLocator, logger: Any, commands: Optional[CommandSet] = None):
        self.settings = settings
        self.runner = runner
        self.locator = locator
        self.logger = logger
        self.commands = commands or settings.command_set()
        self.report = UpgradeReport()

    def _enter(self, phase: Phase) -> None:
        self.report.phase = phase
        self.logger.info("upgrade.phase", f"Phase: {phase.value}")

    def _run(self, args: List[str]) -> CommandResult:
        return self.runner.run(self.report.executable, args, timeout=self.settings.timeout)

    # ---------------- phases ----------------
    def verify_tool(self) -> str:
        self._enter(Phase.VERIFY_TOOL_PRESENT)
        path = self.locator.ensure(self.runner)
        self.report.executable = path
        self.logger.info("upgrade.tool", f"Using {path}")
        return path

    def heal_sources(self) -> Outcome:
        self._enter(Phase.HEAL_SOURCES)
        outcome = classify(self._run(self.commands.heal_sources()), self.settings.exit_codes)
        if not outcome.succeeded:
            self.logger.warning("upgrade.sources.fail", f"Source update did not succeed ({outcome.value}), continuing")
        return outcome

    def scan(self, label: str) -> List[str]:
        result = self._run(self.commands.list_pending())
        if not result.ok:
            self.logger.warning(
                "upgrade.scan.rc",
                f"{label}: listing exited with {result.exit_code} (timed_out={result.timed_out}), using what was parsed",
            )
        pending = parse_pending(result.stdout)
        if pending:
            self.logger.info("upgrade.scan", f"{label}: {len(pending)} pending: {', '.join(pending)}")
        else:
            self.logger.info("upgrade.scan", f"{label}: no pending upgrades")
        return pending

    def bulk_upgrade(self) -> Outcome:
        self._enter(Phase.BULK_UPGRADE)
        result = self._run(self.commands.upgrade_all())
        outcome = classify(result, self.settings.exit_codes)
        self.report.bulk_outcome = outcome
        self.report.bulk_exit_code = result.exit_code
        if outcome is Outcome.SUCCESS:
            self.logger.info("upgrade.bulk.ok", "Bulk upgrade succeeded")
        elif outcome is Outcome.NO_UPDATES:
            self.logger.info("upgrade.bulk.noop", "Bulk upgrade: no applicable updates")
        elif outcome is Outcome.PARTIAL_FAILURE:
            self.logger.warning("upgrade.bulk.partial", f"Bulk upgrade finished with failures (exit {result.exit_code})")
        elif outcome is Outcome.TIMED_OUT:
            self.logger.warning("upgrade.bulk.timeout", f"Bulk upgrade timed out after {self.settings.timeout}s")
        else:
            self.logger.warning("upgrade.bulk.fail", f"Bulk upgrade failed (exit {result.exit_code})")
        return outcome

    def retry_pending(self) -> Dict[str, Outcome]:
        self._enter(Phase.PER_PACKAGE_RETRY)
        self.report.retried = True
        pending = self.scan("retry")
        for pkg_id in pending:
            outcome = classify(self._run(self.commands.upgrade_one(pkg_id)), self.settings.exit_codes)
            self.report.retry_outcomes[pkg_id] = outcome
            if outcome.succeeded:
                self.logger.info("upgrade.pkg.ok", f"{pkg_id}: upgraded ({outcome.value})")
            else:
                self.logger.warning("upgrade.pkg.fail", f"{pkg_id}: upgrade failed ({outcome.value})")
        return self.report.retry_outcomes

    # ---------------- full run ----------------
    def run(self) -> UpgradeReport:
        report = self.report
        try:
            self._enter(Phase.PREPARE)
            self.verify_tool()
            if self.settings.heal_sources:
                self.heal_sources()

            self._enter(Phase.PRE_SCAN)
            report.pre_pending = self.scan("pre-scan")

            if not self.bulk_upgrade().succeeded:
                self.retry_pending()

            self._enter(Phase.POST_SCAN)
            report.post_pending = self.scan("post-scan")
            if report.post_pending:
                self.logger.warning("upgrade.pending", f"{len(report.post_pending)} package(s) still pending: {', '.join(report.post_pending)}")
            self._enter(Phase.DONE)
        except Exception as e:
            report.error = str(e)
            report.phase = Phase.FATAL
            raise
        return report
