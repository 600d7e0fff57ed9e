import logging
import subprocess
from collections.abc import Iterable
from pathlib import Path

from .constants import APP_NAME, GIT_DIR_NAME, GIT_LOCK_FILES
from .errors import RepositoryError, WatchSetupError

logger = logging.getLogger(APP_NAME)


def find_repo_root(path: Path) -> Path:
    """Locates the repository enclosing a directory.

    Args:
        path (Path): The directory to start from. It is itself a candidate.

    Returns:
        Path: The nearest ancestor (inclusive) containing a `.git` entry.

    Raises:
        WatchSetupError: If no ancestor holds repository metadata.
    """
    path = path.resolve()
    for candidate in (path, *path.parents):
        if (candidate / GIT_DIR_NAME).exists():
            return candidate
    raise WatchSetupError(f"Not inside a git repository: {path}")


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    This class provides methods to execute the Git operations needed to turn a
    settled batch of paths into a commit and to push the current branch,
    abstracting away the command construction and output handling.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            RepositoryError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / GIT_DIR_NAME).exists():
            raise RepositoryError(f"Not a git repository: {self.path}")

    @property
    def git_dir(self) -> Path:
        """The metadata directory.

        Worktrees and submodules carry a `.git` file holding a `gitdir:`
        pointer instead of a directory; the pointer is followed.
        """
        dot_git = self.path / GIT_DIR_NAME
        if dot_git.is_dir():
            return dot_git
        content = dot_git.read_text().strip()
        if not content.startswith("gitdir:"):
            raise RepositoryError(f"Malformed .git file: {dot_git}")
        return (self.path / content.removeprefix("gitdir:").strip()).resolve()

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        timeout: float | None = None,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Used to hand credentials
                                            to `git push`. Defaults to None.
            timeout (Optional[float], optional): Seconds before the command is
                                                 killed. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            RepositoryError: If the git command fails or times out.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
                timeout=timeout,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise RepositoryError(f"Git error: {stderr or e}") from e
        except subprocess.TimeoutExpired as e:
            raise RepositoryError(f"git {args[0]} timed out after {timeout}s") from e

    def _returncode(self, args: list[str]) -> int:
        """Runs a query command whose exit status is the answer.

        Args:
            args (list[str]): Arguments to pass to git.

        Returns:
            int: The exit status of the command.
        """
        res = subprocess.run(
            ["git", *args], cwd=self.path, capture_output=True, text=True
        )
        if res.returncode > 1:
            raise RepositoryError(f"Git error: {res.stderr.strip()}")
        return res.returncode

    def relative(self, path: Path) -> str:
        """Expresses a path relative to the repository root, as git expects it."""
        return path.relative_to(self.path).as_posix()

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch, or '' on a detached HEAD.
        """
        return self._run(["branch", "--show-current"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except RepositoryError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def is_busy(self) -> str | None:
        """Determines if the repository is locked by another Git operation.

        Returns:
            str | None: The marker that blocks commits (e.g. 'MERGE_HEAD',
                        'index.lock'), or None if the repository is free.
        """
        for marker in [*GIT_LOCK_FILES, "index.lock"]:
            if (self.git_dir / marker).exists():
                return marker
        return None

    def ignored(self, paths: Iterable[Path]) -> set[Path]:
        """Filters paths through the repository's ignore rules.

        Args:
            paths (Iterable[Path]): Absolute paths inside the repository.

        Returns:
            set[Path]: The subset of paths excluded by `.gitignore` and friends.
        """
        by_name = {self.relative(p): p for p in paths}
        if not by_name:
            return set()
        res = subprocess.run(
            ["git", "check-ignore", "-z", "--stdin"],
            cwd=self.path,
            input="\0".join(by_name),
            capture_output=True,
            text=True,
        )
        # Exit status 1 means "nothing ignored".
        if res.returncode > 1:
            raise RepositoryError(f"Git error: {res.stderr.strip()}")
        # NUL-separated I/O keeps git from quoting unusual path names.
        return {by_name[name] for name in res.stdout.split("\0") if name in by_name}

    def stage(self, paths: Iterable[Path]) -> None:
        """Stages additions, modifications and deletions for the given paths.

        A path that no longer exists on disk is staged as a deletion, including
        a path that vanished between the event and this call.

        Args:
            paths (Iterable[Path]): Absolute paths inside the repository.
        """
        present: list[str] = []
        vanished: list[str] = []
        for p in paths:
            (present if p.exists() else vanished).append(self.relative(p))

        if present:
            self._run(["add", "-A", "--", *sorted(present)])
        if vanished:
            self._run(
                ["rm", "--cached", "-r", "-q", "--ignore-unmatch", "--", *sorted(vanished)]
            )

    def has_staged_changes(self) -> bool:
        """Checks whether the index differs from HEAD.

        Returns:
            bool: True if committing would record a change. On an unborn branch,
                  True whenever the index holds any entry.
        """
        if self.rev_parse("HEAD") is None:
            return bool(self._run(["ls-files", "--cached"]))
        return self._returncode(["diff", "--cached", "--quiet", "HEAD", "--"]) == 1

    def commit(self, message: str) -> str:
        """Creates a new commit from the index.

        Args:
            message (str): The commit message.

        Returns:
            str: The SHA-1 hash of the new commit.
        """
        self._run(["commit", "--no-verify", "-q", "-m", message])
        sha = self.rev_parse("HEAD")
        if sha is None:
            raise RepositoryError("HEAD did not resolve after commit")
        return sha

    def upstream(self) -> tuple[str, str] | None:
        """Finds the configured upstream of the current branch.

        Returns:
            tuple[str, str] | None: (remote, remote branch), or None if the
                                    branch does not track anything.
        """
        branch = self.current_branch()
        if not branch:
            return None
        try:
            remote = self._run(["config", "--get", f"branch.{branch}.remote"])
            merge = self._run(["config", "--get", f"branch.{branch}.merge"])
        except RepositoryError:
            return None
        if not remote or not merge:
            return None
        return remote, merge.removeprefix("refs/heads/")

    def remote_url(self, remote: str) -> str | None:
        """Returns the fetch URL of a remote, or None if it is not configured."""
        try:
            return self._run(["remote", "get-url", remote]) or None
        except RepositoryError:
            return None

    def push(
        self,
        remote: str,
        refspec: str,
        env: dict | None = None,
        timeout: float | None = None,
    ) -> None:
        """Pushes a refspec to a remote.

        Args:
            remote (str): The remote name.
            refspec (str): The refspec to push (e.g. 'HEAD:main').
            env (Optional[dict], optional): Environment carrying credentials.
            timeout (Optional[float], optional): Upper bound in seconds.
        """
        self._run(["push", "--porcelain", remote, refspec], env=env, timeout=timeout)
