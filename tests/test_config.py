# tests/test_config.py
from __future__ import annotations

import pytest

from bandfactor.config import EngineConfig, list_profiles, load_settings
from bandfactor.errors import UserInputError
from bandfactor.expreval import parse_int
from bandfactor.runtime import APPLY, CFG, current
from bandfactor.workspace import ensure_workspace_seeded, profiles_dir, seed_workspace, workspace_dir

# ---------- workspace & profiles ----------------------------------------------


def test_workspace_follows_env(tmp_path):
    assert workspace_dir() == (tmp_path / "home").resolve()
    assert profiles_dir() == workspace_dir() / "profiles"


def test_seed_workspace_copies_once_unless_overwrite():
    ws, copied = seed_workspace()
    assert ws == workspace_dir()
    assert copied >= 1
    assert seed_workspace()[1] == 0
    assert seed_workspace(overwrite=True)[1] == copied


def test_ensure_workspace_seeded_is_lazy():
    assert not profiles_dir().exists()
    ensure_workspace_seeded()
    assert (profiles_dir() / "default.toml").is_file()


def test_default_profile():
    s = load_settings()
    assert s.name == "default"
    assert s.data["ENGINE"]["CACHE_SIZE"] == 1000
    assert s.data["DISTRIBUTED"]["NODES"] == 8
    assert "_PROFILE_" not in s.as_dict()
    assert list_profiles() == ["default"]


def test_profile_from_path(tmp_path):
    p = tmp_path / "fast.toml"
    p.write_text('[_PROFILE_]\ndescription = """quick\n  runs"""\n\n[ENGINE]\nRETRY_ATTEMPTS = 1\n')
    s = load_settings(p)
    assert (s.name, s.description) == ("fast", "quick runs")
    assert s.data == {"ENGINE": {"RETRY_ATTEMPTS": 1}}


def test_missing_profile():
    with pytest.raises(UserInputError, match="not found"):
        load_settings("turbo")


def test_bad_toml_reports_location(tmp_path):
    p = tmp_path / "broken.toml"
    p.write_text("[ENGINE]\nCACHE_SIZE = = 3\n")
    with pytest.raises(UserInputError, match="line 2"):
        load_settings(str(p))


# ---------- runtime -----------------------------------------------------------


def test_apply_and_dotted_lookup():
    APPLY(load_settings())
    rt = current()
    assert rt.profile_name == "default"
    assert CFG("SPECTRAL.WINDOW") == "hamming"
    assert CFG("SPECTRAL.NOPE", 7) == 7
    assert CFG("") is None
    assert rt.seed is None and rt.debug is False


def test_apply_reads_debug_and_seed():
    APPLY({"BEHAVIOUR": {"DEBUG": True}, "ENGINE": {"SEED": 42}})
    assert current().debug is True
    assert current().seed == 42
    assert current().profile_name == "default"


def test_engine_config_from_runtime():
    assert EngineConfig.from_runtime() == EngineConfig()
    APPLY({"ENGINE": {"RETRY_ATTEMPTS": 1, "TIMEOUT_MS": 500}})
    cfg = EngineConfig.from_runtime(band=4, strategy=None)
    assert (cfg.retry_attempts, cfg.timeout_ms, cfg.band, cfg.strategy) == (1, 500, 4, None)


# ---------- integer input -----------------------------------------------------


@pytest.mark.parametrize("text,expected", [
    ("42", 42),
    ("-7", -7),
    (" 1_000_003 ", 1000003),
    ("0xFF", 255),
    ("0b1011", 11),
    ("0o17", 15),
    ("2^61-1", 2**61 - 1),
    ("(2**31-1)*(2**61-1)", (2**31 - 1) * (2**61 - 1)),
    ("3 << 4", 48),
    ("-(10 // 3)", -3),
    ("17 % 5", 2),
], ids=["int", "neg", "underscore", "hex", "bin", "oct", "caret", "product", "shift", "floordiv", "mod"])
def test_parse_int(text, expected):
    assert parse_int(text) == expected


@pytest.mark.parametrize("text,message", [
    ("abc", "not an integer"),
    ("", "not an integer"),
    ("2.5", "only integers"),
    ("foo(1)", "unsupported syntax"),
    ("1/2", "unsupported syntax"),
    ("1 // 0", "division by zero"),
    ("1 << -1", "negative shift"),
    ("2**-1", "negative exponents"),
    ("2^5000", "more than 4096 bits"),
    ("2^4096", "more than 4096 bits"),
    ("1 << 5000", "more than 4096 bits"),
])
def test_parse_int_rejects(text, message):
    with pytest.raises(UserInputError, match=message):
        parse_int(text)


def test_parse_int_limit_follows_profile():
    APPLY({"ENGINE": {"MAX_BITS": 64}})
    assert parse_int("2^63") == 2**63
    with pytest.raises(UserInputError, match="more than 64 bits"):
        parse_int("2^64")
