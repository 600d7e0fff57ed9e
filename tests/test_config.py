"""Tests for the configuration management subsystem."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from nabu.auth import AgentAuth
from nabu.config import Config, WatchSettings, parse_size, parse_time
from nabu.source import WatchRoot


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with the original defaults."""
    conf = Config()
    assert conf.watch.delay == 30
    assert conf.watch.max_wait == 0
    assert conf.files.ignore == [".git"]
    assert conf.push.on_exit is False
    assert conf.push.timeout == 5


@pytest.mark.parametrize(
    ("value", "seconds"),
    [(30, 30.0), ("30", 30.0), ("2s", 2.0), ("1.5m", 90.0), ("1hr", 3600.0), ("250ms", 0.25)],
)
def test_parse_time(value: int | str, seconds: float) -> None:
    """Verifies that human-readable durations are converted to seconds."""
    assert parse_time(value) == seconds


@pytest.mark.parametrize("value", ["soon", "-3", "1 fortnight", -1])
def test_parse_time_rejects_garbage(value: int | str) -> None:
    """Verifies that invalid durations raise ValueError."""
    with pytest.raises(ValueError):
        parse_time(value)


def test_parse_size() -> None:
    """Verifies that human-readable sizes are converted to bytes."""
    assert parse_size("5mb") == 5 * 1024 * 1024
    assert parse_size(1024) == 1024


def test_config_load_merges_layers(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies the cascading merge logic (Defaults -> Global -> Local)."""
    global_config_path = tmp_path / "global.toml"
    global_config_path.write_text(
        '[watch]\ndelay = "10s"\n'
        '[push]\non_exit = true\nremote = "upstream"\n'
        '[files]\nignore = ["*.log"]\n'
    )
    watched = tmp_path / "project"
    watched.mkdir()
    (watched / "nabu.toml").write_text(
        '[watch]\ndelay = 3\n[files]\nignore = ["build", "*.log"]\n'
    )
    mocker.patch("nabu.config.CONFIG_FILE", global_config_path)

    conf = Config.load(directory=watched)

    assert conf.watch.delay == 3  # Local overrides Global
    assert conf.push.on_exit is True  # From Global
    assert conf.push.remote == "upstream"
    assert conf.files.ignore == [".git", "*.log", "build"]


def test_explicit_config_replaces_local(tmp_path: Path) -> None:
    """Verifies that --config is used instead of the watched directory's file."""
    (tmp_path / "nabu.toml").write_text("[watch]\ndelay = 1\n")
    explicit = tmp_path / "other.toml"
    explicit.write_text("[watch]\ndelay = 7\nmax_wait = \"1m\"\n")

    conf = Config.load(directory=tmp_path, path=explicit)

    assert conf.watch.delay == 7
    assert conf.watch.max_wait == 60


def test_unknown_keys_and_bad_values_warn(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that typos are reported and invalid values fall back to defaults."""
    (tmp_path / "nabu.toml").write_text('[watch]\ndelai = 3\ndelay = "never"\n')

    conf = Config.load(directory=tmp_path)

    assert conf.watch.delay == 30
    assert "Unknown config keys in [watch]: delai" in caplog.text
    assert "Config error in [watch].delay" in caplog.text


def test_zero_push_timeout_falls_back_to_default(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a non-positive push timeout is rejected with a warning."""
    (tmp_path / "nabu.toml").write_text("[push]\non_exit = true\ntimeout = 0\n")

    conf = Config.load(directory=tmp_path)

    assert conf.push.timeout == 5
    assert conf.push.on_exit is True
    assert "Config error in [push].timeout" in caplog.text


def test_syntax_error_keeps_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a malformed file is logged and otherwise ignored."""
    (tmp_path / "nabu.toml").write_text("[watch\ndelay = 3\n")

    conf = Config.load(directory=tmp_path)

    assert conf.watch.delay == 30
    assert "Config syntax error" in caplog.text


def test_to_toml_is_loadable(tmp_path: Path) -> None:
    """Verifies that the file written by `nabu init` reads back as the defaults."""
    path = tmp_path / "nabu.toml"
    path.write_text(Config().to_toml())

    assert Config.load(path=path) == Config()


def test_watch_settings_validation(tmp_path: Path) -> None:
    """Verifies that inconsistent settings are rejected before a run starts."""
    (tmp_path / ".git").mkdir()
    root = WatchRoot.discover(tmp_path)

    with pytest.raises(ValueError):
        WatchSettings(root=root, delay=-1)
    with pytest.raises(ValueError):
        WatchSettings(root=root, push_on_exit=True)

    settings = WatchSettings(root=root, push_on_exit=True, auth=AgentAuth())
    assert settings.auth == AgentAuth()
