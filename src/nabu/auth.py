"""Credential resolution for the exit-time push.

A run is configured with exactly one `AuthMethod`:

- `AgentAuth`: delegate signing to the running ssh-agent.
- `KeyFileAuth`: use a private key file, decrypting it with a passphrase if
  it is encrypted.

Resolution happens lazily, right before a push, and never falls back from one
method to the other. The result is a `Credential`: the environment `git push`
needs to authenticate with that method.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import socket
import subprocess
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .constants import APP_NAME
from .errors import (
    AgentUnavailable,
    AuthError,
    InvalidPassphrase,
    KeyUnreadable,
    PassphraseRequired,
)

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class AgentAuth:
    """Authenticate through the running ssh-agent."""


@dataclass(frozen=True)
class KeyFileAuth:
    """Authenticate with an explicit private key.

    Attributes:
        path (Path): The private key file.
        passphrase (str | None): Passphrase for an encrypted key.
    """

    path: Path
    passphrase: str | None = field(default=None, repr=False)


AuthMethod = Union[AgentAuth, KeyFileAuth]


@dataclass(frozen=True)
class Credential:
    """A usable authentication handle.

    Attributes:
        env (dict[str, str]): Environment for the `git push` subprocess.
        description (str): Human-readable summary for logs.
    """

    env: dict[str, str] = field(repr=False)
    description: str


class SshAgent:
    """Access to the platform's ssh-agent, located through `SSH_AUTH_SOCK`."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = os.environ if environ is None else environ

    def socket_path(self) -> str | None:
        return self._environ.get("SSH_AUTH_SOCK") or None

    def is_reachable(self) -> bool:
        """Checks that the agent socket accepts connections."""
        path = self.socket_path()
        if not path or not hasattr(socket, "AF_UNIX"):
            return False
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(1)
                sock.connect(path)
            return True
        except OSError as e:
            logger.debug(f"ssh-agent at {path} unreachable: {e}")
            return False


class KeyTool:
    """Key file inspection through `ssh-keygen`."""

    INCORRECT_PASSPHRASE = "incorrect passphrase"

    def probe(self, path: Path, passphrase: str) -> str:
        """Attempts to load a private key.

        Args:
            path (Path): The key file.
            passphrase (str): The passphrase to try ('' for none).

        Returns:
            str: 'ok' if the key loads, 'encrypted' if the passphrase is
                 wrong (or missing), 'invalid' if the file is not a key.
        """
        try:
            res = subprocess.run(
                ["ssh-keygen", "-y", "-P", passphrase, "-f", str(path)],
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise KeyUnreadable(f"Cannot inspect key {path}: {e}") from e
        if res.returncode == 0:
            return "ok"
        if self.INCORRECT_PASSPHRASE in res.stderr.lower():
            return "encrypted"
        logger.debug(f"ssh-keygen rejected {path}: {res.stderr.strip()}")
        return "invalid"

    def decrypt(self, path: Path, passphrase: str, dest: Path) -> None:
        """Writes an unencrypted copy of an encrypted key to `dest` (mode 0600)."""
        shutil.copyfile(path, dest)
        os.chmod(dest, 0o600)
        try:
            subprocess.run(
                ["ssh-keygen", "-p", "-q", "-P", passphrase, "-N", "", "-f", str(dest)],
                capture_output=True,
                text=True,
                check=True,
                stdin=subprocess.DEVNULL,
                timeout=10,
            )
        except subprocess.CalledProcessError as e:
            raise InvalidPassphrase(
                f"Passphrase does not decrypt {path}: {e.stderr.strip()}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise KeyUnreadable(f"Cannot decrypt key {path}: {e}") from e


def _ssh_command(*options: str) -> str:
    return " ".join(["ssh", "-o", "BatchMode=yes", *options])


class CredentialResolver:
    """Resolves one AuthMethod into a Credential.

    The agent and key tool are injected so tests can substitute them.
    """

    def __init__(
        self,
        method: AuthMethod,
        agent: SshAgent | None = None,
        keytool: KeyTool | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.method = method
        self._environ = dict(os.environ if environ is None else environ)
        self._agent = agent or SshAgent(self._environ)
        self._keytool = keytool or KeyTool()

    @contextmanager
    def resolve(self) -> Iterator[Credential]:
        """Yields a Credential valid for the duration of the block.

        Any decrypted key material is removed when the block exits.

        Raises:
            AuthError: If the configured method cannot produce a credential.
        """
        method = self.method
        if isinstance(method, AgentAuth):
            yield self._resolve_agent()
        elif isinstance(method, KeyFileAuth):
            with self._resolve_key(method) as credential:
                yield credential
        else:
            raise AuthError(f"Unsupported authentication method: {method!r}")

    def _resolve_agent(self) -> Credential:
        if not self._agent.is_reachable():
            raise AgentUnavailable("No running ssh-agent is reachable (SSH_AUTH_SOCK)")
        env = dict(self._environ)
        env["SSH_AUTH_SOCK"] = self._agent.socket_path() or ""
        env["GIT_SSH_COMMAND"] = _ssh_command()
        return Credential(env=env, description="ssh-agent")

    @contextmanager
    def _resolve_key(self, method: KeyFileAuth) -> Iterator[Credential]:
        path = Path(method.path).expanduser()
        if not path.is_file() or not os.access(path, os.R_OK):
            raise KeyUnreadable(f"Key file does not exist or is unreadable: {path}")

        passphrase = method.passphrase or ""
        state = self._keytool.probe(path, passphrase)
        if state == "invalid":
            raise KeyUnreadable(f"Not a valid private key: {path}")
        if state == "encrypted":
            if not passphrase:
                raise PassphraseRequired(f"Key {path} is encrypted; no passphrase given")
            raise InvalidPassphrase(f"Passphrase does not decrypt {path}")

        # The key loads. It is encrypted exactly when it refuses an empty passphrase.
        encrypted = bool(passphrase) and self._keytool.probe(path, "") == "encrypted"
        if not encrypted:
            yield self._key_credential(path, str(path))
            return

        with tempfile.TemporaryDirectory(prefix="nabu-key-") as tmp:
            decrypted = Path(tmp) / "id"
            self._keytool.decrypt(path, passphrase, decrypted)
            yield self._key_credential(decrypted, f"{path} (decrypted)")

    def _key_credential(self, key: Path, description: str) -> Credential:
        env = dict(self._environ)
        # No agent fallback when a key file was configured.
        env.pop("SSH_AUTH_SOCK", None)
        env["GIT_SSH_COMMAND"] = _ssh_command(
            "-o", "IdentitiesOnly=yes", "-i", shlex.quote(str(key))
        )
        return Credential(env=env, description=f"key {description}")
