"""Nabu: commit a directory's changes automatically as they happen.

This package provides the command-line interface, the filesystem change source,
the debounce batcher and commit engine that turn bursts of edits into commits,
and the exit-time push of the current branch.
"""

from . import (
    auth,
    batcher,
    cli,
    commit,
    config,
    constants,
    daemon,
    errors,
    git_wrapper,
    push,
    source,
)

__all__ = [
    "auth",
    "batcher",
    "cli",
    "commit",
    "config",
    "constants",
    "daemon",
    "errors",
    "git_wrapper",
    "push",
    "source",
]
