"""Tests for configuration layering, expansion and validation."""

import os

import pytest

from pkgsweep_config import ConfigError, ConfigStore, to_signed32, validate


def _load(*paths):
    return ConfigStore.load(extra_paths=list(paths), include_system=False)


def test_defaults():
    cfg = _load()
    assert cfg.get_int("runner.timeout") == 1800
    assert cfg.get_int("logging.max_size_mb") == 10
    assert cfg.get_bool("upgrade.include_pinned") is False
    assert cfg.get("tool.name") == "winget"
    assert cfg.get_exit_code("exit_codes.no_update") == -1978335189
    validate(cfg)


def test_user_file_is_picked_up(tmp_path):
    user_conf = tmp_path / "home" / ".config" / "pkgsweep" / "config.toml"
    user_conf.parent.mkdir(parents=True)
    user_conf.write_text('[tool]\nname = "winget-preview"\n')

    cfg = ConfigStore.load()

    assert cfg.get("tool.name") == "winget-preview"
    assert str(user_conf) in cfg.sources


def test_extra_file_then_env_then_cli_precedence(tmp_path, monkeypatch):
    extra = tmp_path / "site.toml"
    extra.write_text("[runner]\ntimeout = 600\n\n[upgrade]\ninclude_pinned = true\n")

    cfg = _load(extra)
    assert cfg.get_int("runner.timeout") == 600
    assert cfg.get_bool("upgrade.include_pinned") is True

    monkeypatch.setenv("PKGSWEEP_RUNNER__TIMEOUT", "900")
    cfg = _load(extra)
    assert cfg.get_int("runner.timeout") == 900

    cfg.set("runner.timeout", 1200)
    assert cfg.get_int("runner.timeout") == 1200


def test_missing_extra_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        _load(tmp_path / "nope.toml")


def test_broken_toml_is_an_error(tmp_path):
    bad = tmp_path / "bad.toml"
    bad.write_text("[runner\ntimeout = ")
    with pytest.raises(ConfigError, match="Failed to read"):
        _load(bad)


def test_expansion_of_config_keys_env_and_defaults(tmp_path, monkeypatch):
    conf = tmp_path / "c.toml"
    conf.write_text(
        '[paths]\nroot = "${PKGSWEEP_TEST_ROOT}"\n\n'
        '[logging]\nfile = "${paths.root}/logs/${LOG_NAME:-upgrade.log}"\n'
    )
    monkeypatch.setenv("PKGSWEEP_TEST_ROOT", "/srv/pkgsweep")
    monkeypatch.delenv("LOG_NAME", raising=False)

    assert _load(conf).get("logging.file") == "/srv/pkgsweep/logs/upgrade.log"


def test_expansion_cycle_is_detected(tmp_path):
    conf = tmp_path / "c.toml"
    conf.write_text('[a]\nx = "${b.y}"\n\n[b]\ny = "${a.x}"\n')
    with pytest.raises(ConfigError, match="Cycle"):
        _load(conf).get("a.x")


def test_unknown_variable_without_default_is_an_error(tmp_path, monkeypatch):
    monkeypatch.delenv("PKGSWEEP_UNSET_VAR", raising=False)
    conf = tmp_path / "c.toml"
    conf.write_text('[logging]\nfile = "${PKGSWEEP_UNSET_VAR}/x.log"\n')
    with pytest.raises(ConfigError):
        _load(conf).get("logging.file")


@pytest.mark.parametrize(
    "key, value",
    [
        ("runner.timeout", 59),
        ("runner.timeout", 86401),
        ("logging.max_size_mb", 0),
        ("logging.max_size_mb", 201),
    ],
)
def test_validate_rejects_out_of_range(key, value):
    cfg = _load()
    cfg.set(key, value)
    with pytest.raises(ConfigError, match="out of range"):
        validate(cfg)


def test_validate_accepts_range_edges():
    cfg = _load()
    cfg.set("runner.timeout", 60)
    cfg.set("logging.max_size_mb", 200)
    validate(cfg)


def test_exit_codes_accept_hex_decimal_and_unsigned(monkeypatch):
    monkeypatch.setenv("PKGSWEEP_EXIT_CODES__NO_UPDATE", "0x8A15002B")
    monkeypatch.setenv("PKGSWEEP_EXIT_CODES__PARTIAL_FAILURE", "2316632140")
    cfg = _load()
    assert cfg.get_exit_code("exit_codes.no_update") == -1978335189
    assert cfg.get_exit_code("exit_codes.partial_failure") == -1978335156

    monkeypatch.setenv("PKGSWEEP_EXIT_CODES__NO_UPDATE", "not-a-code")
    with pytest.raises(ConfigError):
        validate(_load())


def test_to_signed32():
    assert to_signed32(0) == 0
    assert to_signed32(1) == 1
    assert to_signed32(0x8A15002B) == -1978335189
    assert to_signed32(-1978335189) == -1978335189


def test_list_values_from_env_use_pathsep(monkeypatch):
    monkeypatch.setenv("PKGSWEEP_TOOL__FALLBACK_DIRS", os.pathsep.join(["/opt/a", "/opt/b"]))
    assert _load().get_list("tool.fallback_dirs") == ["/opt/a", "/opt/b"]


def test_env_key_nested_under_a_scalar_is_a_config_error(monkeypatch):
    monkeypatch.setenv("PKGSWEEP_RUNNER__TIMEOUT__X", "1")
    with pytest.raises(ConfigError, match="runner.timeout is not a table"):
        _load()
