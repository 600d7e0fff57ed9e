"""Filesystem change source for Nabu.

Uses the watchdog library to observe a watched root and forwards every
relevant change, as a `ChangeEvent`, to a sink (normally the debounce
batcher). Events under the repository metadata directory or matching the
ignore list never reach the sink.
"""

from __future__ import annotations

import enum
import fnmatch
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from .constants import APP_NAME, GIT_DIR_NAME
from .errors import WatchSetupError
from .git_wrapper import find_repo_root

logger = logging.getLogger(APP_NAME)


class ChangeKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
    "moved": ChangeKind.RENAMED,
}


@dataclass(frozen=True)
class WatchRoot:
    """The directory under observation.

    Attributes:
        path (Path): Absolute path of the watched directory.
        recursive (bool): Whether descendants are watched too.
        repo_root (Path): The enclosing repository root.
    """

    path: Path
    recursive: bool
    repo_root: Path

    @classmethod
    def discover(cls, path: Path, recursive: bool = False) -> "WatchRoot":
        """Builds a WatchRoot, validating the directory and locating its repository.

        Raises:
            WatchSetupError: If the directory is missing, unreadable, or not
                             inside a git repository.
        """
        path = Path(path).expanduser().resolve()
        if not path.is_dir():
            raise WatchSetupError(f"Watch root does not exist: {path}")
        if not os.access(path, os.R_OK | os.X_OK):
            raise WatchSetupError(f"Watch root is not readable: {path}")
        return cls(path=path, recursive=recursive, repo_root=find_repo_root(path))


@dataclass(frozen=True)
class ChangeEvent:
    """A single observed change.

    Attributes:
        path (Path): The affected path (the destination, for renames).
        kind (ChangeKind): What happened to it.
        src_path (Path | None): The origin of a rename.
    """

    path: Path
    kind: ChangeKind
    src_path: Path | None = None

    def paths(self) -> tuple[Path, ...]:
        """All paths whose state this event may have changed."""
        if self.src_path is not None:
            return (self.src_path, self.path)
        return (self.path,)


class ChangeHandler(FileSystemEventHandler):
    """Watchdog handler translating raw events into filtered ChangeEvents."""

    def __init__(
        self,
        root: WatchRoot,
        sink: Callable[[ChangeEvent], None],
        ignore: list[str] | None = None,
    ):
        super().__init__()
        self._root = root
        self._sink = sink
        self._ignore = [p for p in (ignore or []) if p]

    def is_ignored(self, path: Path) -> bool:
        """Decides whether a path lies outside the committable area.

        Anything under the repository metadata directory is always ignored,
        as is anything outside the repository or matching an ignore pattern.
        """
        try:
            parts = path.relative_to(self._root.repo_root).parts
        except ValueError:
            return True
        if not parts or GIT_DIR_NAME in parts:
            return True
        if not self._root.recursive and path.parent != self._root.path:
            return True
        for part in parts:
            for pattern in self._ignore:
                if fnmatch.fnmatch(part, pattern):
                    logger.debug("Ignoring %s (matches %s)", path, pattern)
                    return True
        return False

    def translate(self, event: FileSystemEvent) -> ChangeEvent | None:
        """Converts a watchdog event, returning None for events to drop."""
        kind = _KINDS.get(event.event_type)
        if kind is None:
            return None
        # New directories announce themselves through the files created in them.
        if isinstance(event, (DirCreatedEvent, DirModifiedEvent)):
            return None

        path = Path(os.fsdecode(event.src_path))
        if isinstance(event, FileSystemMovedEvent):
            dest = Path(os.fsdecode(event.dest_path))
            src_ignored, dest_ignored = self.is_ignored(path), self.is_ignored(dest)
            if src_ignored and dest_ignored:
                return None
            if dest_ignored:
                return ChangeEvent(path, ChangeKind.REMOVED)
            if src_ignored:
                return ChangeEvent(dest, ChangeKind.CREATED)
            return ChangeEvent(dest, ChangeKind.RENAMED, src_path=path)

        if self.is_ignored(path):
            return None
        return ChangeEvent(path, kind)

    def on_any_event(self, event: FileSystemEvent) -> None:
        change = self.translate(event)
        if change is None:
            return
        logger.debug("Change observed: %s %s", change.kind.value, change.path)
        self._sink(change)


class ChangeSource:
    """Observes a WatchRoot and feeds ChangeEvents into a sink until stopped.

    When recursive, watchdog subscribes newly created subdirectories itself,
    so events under them are not missed.

    Usage:
        source = ChangeSource(root, batcher.submit, ignore=[".git"])
        source.start()
        ...
        source.stop()
    """

    def __init__(
        self,
        root: WatchRoot,
        sink: Callable[[ChangeEvent], None],
        ignore: list[str] | None = None,
    ):
        self.root = root
        self._handler = ChangeHandler(root, sink, ignore)
        self._observer: Any | None = None

    def start(self) -> None:
        """Subscribes to the watched root.

        Raises:
            WatchSetupError: If the root vanished or the OS refused the watch.
        """
        path = self.root.path
        if not path.is_dir():
            raise WatchSetupError(f"Watch root does not exist: {path}")

        observer = Observer()
        try:
            observer.schedule(self._handler, str(path), recursive=self.root.recursive)
            observer.start()
        except OSError as e:
            raise WatchSetupError(f"Cannot watch {path}: {e}") from e
        self._observer = observer
        logger.info("Watching '%s' (recursive=%s)", path, self.root.recursive)

    def stop(self) -> None:
        """Stops observing. No event is delivered after this returns."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()
