"""Exit-time push of the current branch."""

from __future__ import annotations

import enum
import logging
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .auth import Credential, CredentialResolver
from .constants import APP_NAME, DEFAULT_PUSH_TIMEOUT
from .errors import AuthError, NabuError, PushError, RepositoryError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


class PushState(enum.Enum):
    NOT_ATTEMPTED = "not attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PushResult:
    """What a call to `PushGate.push` observed.

    Attributes:
        state (PushState): The gate's state after the call.
        performed (bool): False when an earlier call had already claimed the push.
        error (NabuError | None): AuthError or PushError when the push failed.
    """

    state: PushState
    performed: bool
    error: NabuError | None = None


def get_remote_host(url: str) -> str | None:
    """Extracts the hostname from a git remote URL.

    Supports both SSH (git@host:path, ssh://host/path) and HTTPS formats.

    Args:
        url (str): The remote URL.

    Returns:
        str | None: The hostname (e.g., 'github.com') or None for local remotes.
    """
    if "://" in url:
        scheme, rest = url.split("://", 1)
        if scheme == "file":
            return None
        host = rest.split("/")[0]
        return host.rsplit("@", 1)[-1].split(":")[0] or None
    if "@" in url:
        return url.split("@", 1)[1].split(":")[0] or None
    return None


def is_remote_reachable(host: str) -> bool:
    """Performs a quick TCP connectivity check on the remote host.

    Args:
        host (str): The hostname to check.

    Returns:
        bool: True if the host accepts connections on port 22 or 443.
    """
    for port in [22, 443]:
        try:
            with socket.create_connection((host, port), timeout=3):
                return True
        except OSError:
            continue
    return False


class PushGate:
    """Pushes the current branch at most once per process.

    The first call claims the push; every later call, including concurrent ones
    from a signal handler, returns immediately with the gate's current state.

    Args:
        repo (GitRepo): The repository to push.
        resolver (CredentialResolver): Produces credentials when the push runs.
        remote (str): Remote used when the branch has no upstream.
        timeout (float): Upper bound for the push subprocess, in seconds.
        dry_run (bool): Log the push instead of performing it.
        reachable (Callable): Host reachability probe.
    """

    def __init__(
        self,
        repo: GitRepo,
        resolver: CredentialResolver,
        remote: str = "origin",
        timeout: float = DEFAULT_PUSH_TIMEOUT,
        dry_run: bool = False,
        reachable: Callable[[str], bool] = is_remote_reachable,
    ):
        self.repo = repo
        self.resolver = resolver
        self.remote = remote
        self.timeout = timeout
        self.dry_run = dry_run
        self._reachable = reachable
        self._lock = threading.Lock()
        self._claimed = False
        self._state = PushState.NOT_ATTEMPTED

    @property
    def state(self) -> PushState:
        return self._state

    def push(self) -> PushResult:
        """Runs the push once. Never raises for auth or network failures."""
        with self._lock:
            if self._claimed:
                logger.debug(f"Push already claimed (state: {self._state.value}).")
                return PushResult(self._state, performed=False)
            self._claimed = True

        try:
            self._push()
        except (AuthError, PushError) as e:
            logger.error(f"PUSH FAILED {self.repo.path.name}: {e.kind}: {e}")
            self._state = PushState.FAILED
            return PushResult(self._state, performed=True, error=e)

        self._state = PushState.SUCCEEDED
        return PushResult(self._state, performed=True)

    def _target(self) -> tuple[str, str]:
        branch = self.repo.current_branch()
        if not branch:
            raise PushError("HEAD is detached; nothing to push")
        if upstream := self.repo.upstream():
            remote, remote_branch = upstream
        else:
            remote, remote_branch = self.remote, branch
        return remote, f"refs/heads/{branch}:refs/heads/{remote_branch}"

    def _push(self) -> None:
        try:
            remote, refspec = self._target()
        except RepositoryError as e:
            raise PushError(f"Cannot determine push target: {e}") from e

        if self.dry_run:
            logger.info(f"DRY RUN: would push {refspec} to {remote}")
            return

        try:
            with self.resolver.resolve() as credential:
                self._push_with(credential, remote, refspec)
        except OSError as e:
            raise PushError(f"Push setup failed: {e}") from e
        logger.info(f"SUCCESS {self.repo.path.name}: Pushed to {remote}.")

    def _push_with(self, credential: Credential, remote: str, refspec: str) -> None:
        url = self.repo.remote_url(remote)
        if url is None:
            raise PushError(f"Remote '{remote}' is not configured")
        host = get_remote_host(url)
        if host and not self._reachable(host):
            raise PushError(f"Network unreachable: {host}")

        logger.info(f"Pushing {refspec} to {remote} using {credential.description}")
        try:
            self.repo.push(remote, refspec, env=credential.env, timeout=self.timeout)
        except RepositoryError as e:
            raise PushError(str(e)) from e
