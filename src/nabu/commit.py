"""Commit engine: turns a settled batch of paths into a commit."""

from __future__ import annotations

import datetime
import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, COMMIT_MESSAGE_FORMAT, TIMESTAMP_FORMAT
from .errors import RepositoryError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


class CommitStatus(enum.Enum):
    COMMITTED = "committed"
    NOOP = "no-op"
    FAILED = "failed"


@dataclass(frozen=True)
class CommitOutcome:
    """Result of one commit attempt.

    Attributes:
        status (CommitStatus): What happened.
        paths (frozenset[Path]): The batch the attempt was made for.
        commit_id (str | None): The new commit's SHA-1, when committed.
        error (RepositoryError | None): The cause, when failed.
    """

    status: CommitStatus
    paths: frozenset[Path]
    commit_id: str | None = None
    error: RepositoryError | None = None

    @classmethod
    def committed(cls, paths: frozenset[Path], commit_id: str) -> "CommitOutcome":
        return cls(CommitStatus.COMMITTED, paths, commit_id=commit_id)

    @classmethod
    def noop(cls, paths: frozenset[Path]) -> "CommitOutcome":
        return cls(CommitStatus.NOOP, paths)

    @classmethod
    def failed(cls, paths: frozenset[Path], error: RepositoryError) -> "CommitOutcome":
        return cls(CommitStatus.FAILED, paths, error=error)


def commit_message(now: datetime.datetime | None = None) -> str:
    """Builds the commit message for a snapshot taken at `now` (UTC)."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return COMMIT_MESSAGE_FORMAT.format(timestamp=now.strftime(TIMESTAMP_FORMAT))


class CommitEngine:
    """Stages a batch of paths and commits them if the index differs from HEAD.

    Args:
        repo (GitRepo): The repository to commit into.
        dry_run (bool): Log what would be staged instead of touching the repo.
        clock (Callable): Source of the commit timestamp.
    """

    def __init__(
        self,
        repo: GitRepo,
        dry_run: bool = False,
        clock: Callable[[], datetime.datetime] | None = None,
    ):
        self.repo = repo
        self.dry_run = dry_run
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    def __call__(self, paths: Iterable[Path]) -> CommitOutcome:
        return self.commit(paths)

    def commit(self, paths: Iterable[Path]) -> CommitOutcome:
        """Attempts one commit for a settled batch.

        Never raises for repository failures; they are returned as a failed
        outcome so the watch loop carries on with the next batch.
        """
        batch = frozenset(paths)
        try:
            return self._commit(batch)
        except RepositoryError as e:
            logger.error(f"COMMIT FAILED {self.repo.path.name}: {e}")
            return CommitOutcome.failed(batch, e)
        except OSError as e:
            logger.error(f"COMMIT FAILED {self.repo.path.name}: {e}")
            return CommitOutcome.failed(batch, RepositoryError(str(e)))

    def _commit(self, batch: frozenset[Path]) -> CommitOutcome:
        if self.dry_run:
            for p in sorted(batch):
                logger.info(f"DRY RUN: would stage {self.repo.relative(p)}")
            return CommitOutcome.noop(batch)

        if marker := self.repo.is_busy():
            raise RepositoryError(f"Repository busy ({marker} present)")
        if not self.repo.current_branch():
            raise RepositoryError("HEAD is detached; refusing to commit")

        candidates = batch - self.repo.ignored(p for p in batch if p.exists())
        if not candidates:
            logger.debug("Batch contains only ignored paths.")
            return CommitOutcome.noop(batch)

        self.repo.stage(candidates)
        if not self.repo.has_staged_changes():
            logger.info(f"NO-OP {self.repo.path.name}: working tree matches HEAD.")
            return CommitOutcome.noop(batch)

        message = commit_message(self._clock())
        sha = self.repo.commit(message)
        logger.info(
            f"COMMITTED {self.repo.path.name}: {sha[:12]} ({len(candidates)} path(s))"
        )
        return CommitOutcome.committed(batch, sha)
