"""
pkgsweep.config

Configuration module for `pkgsweep`.
- Loads TOML (system file + user file + explicit --config files)
- Priority: defaults < system < user < extra paths < env < cli-overrides
- Variable expansion (${NAME} / ${NAME:-default}) with cycle detection
- Typed accessors and range validation for the CLI knobs
"""

from __future__ import annotations

import os
import re
import sys
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


# -------------------------- Utilities --------------------------
VAR_PATTERN = re.compile(r"\$\{([^}\s:]+)(?::-([^}]*))?\}")

# winget HRESULTs, see ExitCodePolicy in pkgsweep_tool
WINGET_NO_APPLICABLE_UPDATE = 0x8A15002B
WINGET_UPDATE_ALL_HAS_FAILURE = 0x8A15004C

MAX_LOG_MB_RANGE = (1, 200)
TIMEOUT_RANGE = (60, 86400)


def _is_truthy(val: Any) -> bool:
    if isinstance(val, str):
        return val.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(val)


def _read_toml_file(path: Path) -> dict:
    with path.open("rb") as f:
        return tomllib.load(f)


def _merge_dict(a: dict, b: dict) -> dict:
    """Merge b into a (deep), returning new dict."""
    out = dict(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def to_signed32(code: int) -> int:
    """Fold an exit code into the signed 32-bit range.

    Windows hands HRESULT-style codes back unsigned (0x8A15002B == 2316632107)
    while other tooling prints them signed (-1978335189).
    """
    code &= 0xFFFFFFFF
    return code - 0x100000000 if code & 0x80000000 else code


def default_fallback_dirs() -> List[str]:
    local = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    return [str(Path(local) / "Microsoft" / "WindowsApps")]


def system_config_path() -> Path:
    if sys.platform == "win32":
        base = os.environ.get("ProgramData", r"C:\ProgramData")
        return Path(base) / "pkgsweep" / "config.toml"
    return Path("/etc/pkgsweep/config.toml")


def user_config_path() -> Path:
    return Path.home() / ".config" / "pkgsweep" / "config.toml"


def _defaults() -> Dict[str, Any]:
    return {
        "logging": {
            "file": str(Path(tempfile.gettempdir()) / "pkgsweep" / "pkgsweep.log"),
            "max_size_mb": 10,
            "quiet": False,
        },
        "runner": {"timeout": 1800},
        "upgrade": {
            "include_pinned": False,
            "include_unknown": False,
            "force": True,
            "heal_sources": True,
        },
        "tool": {
            "name": "winget",
            "fallback_dirs": default_fallback_dirs(),
            "bootstrap_command": [],
        },
        "exit_codes": {
            "no_update": to_signed32(WINGET_NO_APPLICABLE_UPDATE),
            "partial_failure": to_signed32(WINGET_UPDATE_ALL_HAS_FAILURE),
        },
        "lock": {"name": "pkgsweep", "dir": ""},
    }


# ----------------------- ConfigStore ---------------------------

class ConfigError(Exception):
    pass


@dataclass
class ConfigStore:
    _raw: Dict[str, Any] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)

    # ---------------------------------
    # Construction / loading helpers
    # ---------------------------------
    @classmethod
    def load(
        cls,
        extra_paths: Optional[List[Path]] = None,
        env_prefix: str = "PKGSWEEP_",
        include_system: bool = True,
    ) -> "ConfigStore":
        """Load config following priorities and merge into a ConfigStore.

        Defaults (internal) < system config.toml < ~/.config/pkgsweep/config.toml < extra_paths (ordered) < ENV vars
        """
        store = cls(_raw=_defaults())
        store.sources.append("defaults")

        layers: List[Path] = []
        if include_system:
            layers.extend([system_config_path(), user_config_path()])
        for p in layers:
            if p.is_file():
                store._merge_file(p)

        for p in extra_paths or []:
            p = Path(p)
            if not p.is_file():
                raise ConfigError(f"Config file not found: {p}")
            store._merge_file(p)

        # env overrides: PKGSWEEP_RUNNER__TIMEOUT -> runner.timeout
        for k, v in os.environ.items():
            if not k.startswith(env_prefix):
                continue
            parts = [part.lower() for part in k[len(env_prefix):].split("__") if part]
            if len(parts) < 2:
                continue
            dest = store._raw
            for part in parts[:-1]:
                dest = dest.setdefault(part, {})
                if not isinstance(dest, dict):
                    raise ConfigError(f"{k}: {'.'.join(parts[:-1])} is not a table")
            dest[parts[-1]] = v
            store.sources.append(f"env:{k}")

        return store

    def _merge_file(self, path: Path) -> None:
        try:
            data = _read_toml_file(path)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e
        self._raw = _merge_dict(self._raw, data)
        self.sources.append(str(path))

    # -------------------------------
    # Accessors
    # -------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        """Get a dotted key, expanded.
        Example: get('logging.file')
        """
        node = self._lookup(key)
        if node is None:
            return default
        return self._expand_value(node)

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._raw
        for p in parts[:-1]:
            node = node.setdefault(p, {})
        node[parts[-1]] = value
        self.sources.append(f"cli:{key}")

    def get_int(self, key: str, default: int = 0) -> int:
        v = self.get(key, default)
        try:
            return int(v)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key}: expected an integer, got {v!r}") from e

    def get_bool(self, key: str, default: bool = False) -> bool:
        return _is_truthy(self.get(key, default))

    def get_list(self, key: str) -> List[str]:
        v = self.get(key, [])
        if isinstance(v, str):
            # env values come in as os.pathsep separated strings
            return [x for x in v.split(os.pathsep) if x]
        return [str(x) for x in v or []]

    def get_exit_code(self, key: str) -> int:
        v = self.get(key)
        try:
            code = int(v, 0) if isinstance(v, str) else int(v)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key}: expected an exit code, got {v!r}") from e
        return to_signed32(code)

    def _lookup(self, key: str) -> Any:
        node: Any = self._raw
        for p in key.split("."):
            if isinstance(node, dict) and p in node:
                node = node[p]
            else:
                return None
        return node

    # -------------------------------
    # Expansion logic
    # -------------------------------
    def _expand_value(self, value: Any, _stack: Optional[List[str]] = None) -> Any:
        if isinstance(value, str):
            return self._expand_str(value, _stack=_stack)
        if isinstance(value, dict):
            return {k: self._expand_value(v, _stack=_stack) for k, v in value.items()}
        if isinstance(value, list):
            return [self._expand_value(v, _stack=_stack) for v in value]
        return value

    def _expand_str(self, s: str, _stack: Optional[List[str]] = None) -> str:
        if _stack is None:
            _stack = []

        def _repl(m: re.Match) -> str:
            name, default = m.group(1), m.group(2)
            if name in _stack:
                chain = " -> ".join(_stack + [name])
                raise ConfigError(f"Cycle detected when expanding variables: {chain}")
            val = self._lookup(name) if "." in name else None
            if val is None:
                val = os.environ.get(name)
            if val is None:
                if default is None:
                    raise ConfigError(f"Variable '{name}' not found during expansion and no default provided")
                val = default
            _stack.append(name)
            try:
                return str(self._expand_value(val, _stack=_stack))
            finally:
                _stack.pop()

        return VAR_PATTERN.sub(_repl, s)


# ----------------------- validation ------------------------

def _check_range(key: str, value: int, bounds: tuple) -> None:
    lo, hi = bounds
    if not lo <= value <= hi:
        raise ConfigError(f"{key}={value} is out of range [{lo}, {hi}]")


def validate(cfg: ConfigStore) -> None:
    """Raise ConfigError when a setting is outside its accepted range."""
    _check_range("logging.max_size_mb", cfg.get_int("logging.max_size_mb"), MAX_LOG_MB_RANGE)
    _check_range("runner.timeout", cfg.get_int("runner.timeout"), TIMEOUT_RANGE)
    if not cfg.get("tool.name"):
        raise ConfigError("tool.name must not be empty")
    cfg.get_exit_code("exit_codes.no_update")
    cfg.get_exit_code("exit_codes.partial_failure")
