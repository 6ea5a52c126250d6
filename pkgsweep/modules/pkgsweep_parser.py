#!/usr/bin/env python3
# pkgsweep_parser.py
"""
Extract package ids from the package manager's "pending upgrades" table.

winget has no machine readable listing for `upgrade`, so this reads the human
table line by line:

    Name        Id                  Version   Available  Source
    ---------------------------------------------------------------
    Notepad++   Notepad.Notepad++   8.1       8.2        winget

A row is a name, a gap of two or more spaces, an id token and two version
fields. Anything else (headers, rulers, footers, progress spinners) is skipped.
Names with two-space runs or versions containing spaces ("< 1.2") can still
misparse.

winget truncates long ids with an ellipsis ("Microsoft.VisualStudio.2022.Buil…").
The truncated token does not match, so the name absorbs it and the installed
version lands in the id slot; ids without a letter are dropped for that reason.
"""

from __future__ import annotations

import re
from typing import Iterable, List

ROW_PATTERN = re.compile(r"^(?P<name>.+?)\s{2,}(?P<id>[\w.+\-]+)\s+(?P<installed>\S+)\s+(?P<available>\S+)")
LETTER = re.compile(r"[^\W\d_]")

HEADER_IDS = {"id"}


def iter_ids(stdout: str) -> Iterable[str]:
    for line in stdout.splitlines():
        m = ROW_PATTERN.match(line.strip())
        if not m:
            continue
        pkg_id = m.group("id")
        if pkg_id.lower() in HEADER_IDS or not LETTER.search(pkg_id):
            continue
        yield pkg_id


def parse_pending(stdout: str) -> List[str]:
    """Return the unique package ids in `stdout`, sorted case-insensitively.

    Ids are compared case-insensitively (winget ids are); the first spelling
    seen is kept.
    """
    seen = {}
    for pkg_id in iter_ids(stdout or ""):
        seen.setdefault(pkg_id.casefold(), pkg_id)
    return sorted(seen.values(), key=lambda s: (s.casefold(), s))
