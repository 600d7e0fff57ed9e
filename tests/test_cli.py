"""Tests for the Command Line Interface (CLI) module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from nabu import cli
from nabu.auth import AgentAuth, KeyFileAuth
from nabu.config import Config
from nabu.errors import PassphraseRequired
from nabu.push import PushResult, PushState


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    (tmp_path / ".git").mkdir()
    return tmp_path


def test_auth_flags_are_mutually_exclusive(repo_dir: Path) -> None:
    """Verifies that naming both mechanisms is a usage error, not a runtime choice."""
    with pytest.raises(SystemExit) as exc:
        cli.main(
            ["watch", str(repo_dir), "--push-on-exit", "--ssh-agent", "--ssh-key", "k"]
        )
    assert exc.value.code == 2


def test_passphrase_requires_key(repo_dir: Path) -> None:
    """Verifies that a passphrase without a key file is rejected."""
    with pytest.raises(SystemExit) as exc:
        cli.main(["watch", str(repo_dir), "--ssh-passphrase", "secret"])
    assert exc.value.code == 2


def test_missing_directory_exits_nonzero(
    tmp_path: Path, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that a watch that cannot be established exits with status 1."""
    code = cli.main(["watch", str(tmp_path / "missing")])

    assert code == 1
    assert "WatchSetupError" in capsys.readouterr().err


def test_failed_push_still_exits_zero(repo_dir: Path, mocker: MagicMock) -> None:
    """Verifies that an attempted-but-failed push is a clean shutdown."""
    mock_watch = mocker.patch("nabu.cli.daemon.Watch")
    mock_watch.return_value.run.return_value = PushResult(
        PushState.FAILED, performed=True, error=PassphraseRequired("locked")
    )

    code = cli.main(
        ["watch", str(repo_dir), "--push-on-exit", "--ssh-key", str(repo_dir / "k")]
    )

    assert code == 0
    settings = mock_watch.call_args[0][0]
    assert settings.auth == KeyFileAuth(repo_dir / "k")
    mock_watch.return_value.install_signal_handlers.assert_called_once()


def test_build_settings_merges_flags_over_config(repo_dir: Path) -> None:
    """Verifies that command-line flags win over configuration values."""
    config = Config()
    config.watch.delay = 10
    config.push.on_exit = True
    config.files.ignore = [".git", "build"]
    args = cli.build_parser().parse_args(
        ["watch", str(repo_dir), "-r", "--delay", "2s", "--ignore", "*.swp"]
    )

    settings = cli.build_settings(args, config)

    assert settings.delay == 2.0
    assert settings.root.recursive is True
    assert settings.ignore == (".git", "build", "*.swp")
    assert settings.push_on_exit is True
    # Pushing with no method selected defaults to the agent.
    assert settings.auth == AgentAuth()


def test_invalid_duration_flag(repo_dir: Path) -> None:
    """Verifies that malformed durations are rejected by the parser."""
    with pytest.raises(SystemExit):
        cli.main(["watch", str(repo_dir), "--delay", "soonish"])


@pytest.mark.parametrize("timeout", ["0", "0s"])
def test_push_timeout_must_be_positive(
    repo_dir: Path, timeout: str, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that a zero push timeout is a usage error rather than a crash."""
    with pytest.raises(SystemExit) as exc:
        cli.main(
            ["watch", str(repo_dir), "--push-on-exit", "--push-timeout", timeout]
        )

    assert exc.value.code == 2
    assert "must be positive" in capsys.readouterr().err


def test_init_writes_local_config(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that `nabu init` writes a loadable default config file."""
    mocker.patch.object(Path, "cwd", return_value=tmp_path)

    assert cli.main(["init"]) == 0

    written = tmp_path / "nabu.toml"
    assert written.exists()
    assert Config.load(path=written) == Config()
    assert "Config written" in capsys.readouterr().out


def test_init_global(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that `nabu init --global` writes the global config file."""
    target = tmp_path / "conf" / "nabu.toml"
    mocker.patch("nabu.cli.CONFIG_FILE", target)

    cli.main(["init", "--global"])

    assert target.exists()
