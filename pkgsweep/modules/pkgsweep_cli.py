#!/usr/bin/env python3
# pkgsweep_cli.py
"""
pkgsweep CLI

Silently upgrades everything the package manager (winget) reports as pending:
bulk `upgrade --all` first, then one `upgrade --id` per package still pending.

Features:
 - --log-file, --max-log-mb (1-200), --timeout (60-86400), --include-pinned
 - --config FILE (repeatable) on top of system/user config and PKGSWEEP_* env
 - single-instance guard: a second concurrent run logs a warning and exits 0
 - rich summary table, or --json report on stdout
 - exit codes: 0 done (even with packages still pending) / already running, 1 fatal
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from pkgsweep_config import MAX_LOG_MB_RANGE, TIMEOUT_RANGE, ConfigError, ConfigStore, validate
from pkgsweep_lock import InstanceGuard
from pkgsweep_logger import get_logger, reset_logger
from pkgsweep_runner import ProcessRunner
from pkgsweep_tool import ToolLocator
from pkgsweep_upgrade import UpgradeOrchestrator, UpgradeReport, UpgradeSettings

EXIT_OK = 0
EXIT_FATAL = 1

_console = Console()


# ---------------- argument types ----------------
def _ranged_int(lo: int, hi: int):
    def parse(value: str) -> int:
        try:
            n = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
        if not lo <= n <= hi:
            raise argparse.ArgumentTypeError(f"{n} is out of range [{lo}, {hi}]")
        return n

    return parse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pkgsweep", description="silently upgrade installed packages through winget")
    p.add_argument("--log-file", "-l", help="log file path")
    p.add_argument("--max-log-mb", "-m", type=_ranged_int(*MAX_LOG_MB_RANGE), help="rotate the log once it reaches this size (MB, default 10)")
    p.add_argument("--timeout", "-t", type=_ranged_int(*TIMEOUT_RANGE), help="per-call timeout in seconds (default 1800)")
    p.add_argument("--include-pinned", action="store_true", default=None, help="also upgrade pinned packages")
    p.add_argument("--include-unknown", action="store_true", default=None, help="also upgrade packages whose installed version is unknown")
    p.add_argument("--no-heal-sources", dest="heal_sources", action="store_false", default=None, help="skip `source update` before scanning")
    p.add_argument("--config", "-c", action="append", default=[], metavar="FILE", help="extra TOML config file (repeatable)")
    p.add_argument("--quiet", "-q", action="store_true", default=None, help="log to file only")
    p.add_argument("--json", action="store_true", help="print the run report as JSON")
    return p


# ---------------- CLI class ----------------
class PkgsweepCLI:
    def __init__(self, cfg: ConfigStore):
        self.cfg = cfg
        self.logger = get_logger(cfg)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "PkgsweepCLI":
        cfg = ConfigStore.load(extra_paths=[Path(p) for p in args.config])
        overrides = {
            "logging.file": args.log_file,
            "logging.max_size_mb": args.max_log_mb,
            "logging.quiet": True if args.json else args.quiet,
            "runner.timeout": args.timeout,
            "upgrade.include_pinned": args.include_pinned,
            "upgrade.include_unknown": args.include_unknown,
            "upgrade.heal_sources": args.heal_sources,
        }
        for key, value in overrides.items():
            if value is not None:
                cfg.set(key, value)
        validate(cfg)
        return cls(cfg)

    def _guard(self) -> InstanceGuard:
        return InstanceGuard(self.cfg.get("lock.name"), self.cfg.get("lock.dir") or None)

    def cmd_upgrade(self) -> Optional[UpgradeReport]:
        """Returns None when another instance already holds the guard."""
        with self._guard() as guard:
            if not guard.acquired:
                self.logger.warning("cli.locked", "Another pkgsweep instance is already running, exiting")
                return None
            self.logger.info("cli.start", "pkgsweep started", config=self.cfg.sources)
            settings = UpgradeSettings.from_config(self.cfg)
            runner = ProcessRunner(self.logger, timeout=settings.timeout)
            orchestrator = UpgradeOrchestrator(settings, runner, ToolLocator.from_config(self.cfg), self.logger)
            report = orchestrator.run()
            self.logger.info("cli.done", "pkgsweep finished")
            return report


# ---------------- output ----------------
def print_summary(report: UpgradeReport) -> None:
    table = Table(title="pkgsweep")
    table.add_column("Step", style="cyan")
    table.add_column("Result")
    table.add_row("tool", report.executable or "-")
    table.add_row("pending before", str(len(report.pre_pending)))
    bulk = report.bulk_outcome.value if report.bulk_outcome else "-"
    table.add_row("bulk upgrade", f"{bulk} (exit {report.bulk_exit_code})")
    if report.retried:
        ok = len(report.retry_outcomes) - len(report.retry_failures)
        table.add_row("per-package retry", f"{ok}/{len(report.retry_outcomes)} ok")
        for pkg in report.retry_failures:
            table.add_row("", f"[yellow]{pkg}: {report.retry_outcomes[pkg].value}[/yellow]")
    still = ", ".join(report.post_pending) if report.post_pending else "none"
    table.add_row("still pending", f"[yellow]{still}[/yellow]" if report.post_pending else still)
    _console.print(table)


# ---------------- entrypoint ----------------
def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cli = PkgsweepCLI.from_args(args)
    except (ConfigError, OSError) as e:
        print(f"pkgsweep: cannot start: {e}", file=sys.stderr)
        return EXIT_FATAL

    try:
        report = cli.cmd_upgrade()
        if report is not None:
            if args.json:
                print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
            elif not cli.cfg.get_bool("logging.quiet"):
                print_summary(report)
        return EXIT_OK
    except Exception as e:
        cli.logger.error("cli.fatal", f"Fatal: {type(e).__name__}: {e}", exc=e)
        return EXIT_FATAL
    finally:
        reset_logger()


if __name__ == "__main__":
    sys.exit(main())
