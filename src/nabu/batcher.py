"""Debounce batching for Nabu.

Bursts of change events (an editor writing a file several times for one save,
a `git checkout` touching hundreds of files) are coalesced into one pending
batch. The batch settles once no event has arrived for the quiet window, and
is then handed to the commit callback on the batcher's own thread.

Commit attempts are strictly serialized: while one runs, new events queue up,
and the quiet window for the next batch only starts counting once they are
drained after the attempt completes.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path

from .commit import CommitOutcome
from .constants import APP_NAME
from .source import ChangeEvent

logger = logging.getLogger(APP_NAME)

_FLUSH = object()


class PendingBatch:
    """Distinct paths accumulated since the last commit attempt."""

    def __init__(self) -> None:
        self._paths: set[Path] = set()
        self.first_event_at: float | None = None
        self.last_event_at: float | None = None

    def __len__(self) -> int:
        return len(self._paths)

    def __bool__(self) -> bool:
        return bool(self._paths)

    @property
    def paths(self) -> frozenset[Path]:
        return frozenset(self._paths)

    def add(self, event: ChangeEvent, at: float) -> None:
        self._paths.update(event.paths())
        if self.first_event_at is None:
            self.first_event_at = at
        self.last_event_at = at

    def drain(self) -> frozenset[Path]:
        """Returns every accumulated path and resets the batch to empty."""
        snapshot = frozenset(self._paths)
        self._paths = set()
        self.first_event_at = None
        self.last_event_at = None
        return snapshot


class DebounceBatcher:
    """Coalesces change events into settled batches and commits them one at a time.

    The state machine is exposed through `record` and `poll`, both of which take
    the current time, so the coalescing rules can be exercised without threads.
    `start` runs the same machine on a background thread fed by `submit`.

    Attributes:
        delay (float): The quiet window in seconds.
        max_wait (float): Force a settle once the oldest pending event is this
                          old, even under continuous activity. 0 disables it.
    """

    def __init__(
        self,
        commit: Callable[[frozenset[Path]], CommitOutcome],
        delay: float,
        max_wait: float = 0,
        clock: Callable[[], float] = time.monotonic,
        on_outcome: Callable[[CommitOutcome], None] | None = None,
    ):
        self.delay = delay
        self.max_wait = max_wait
        self._commit = commit
        self._clock = clock
        self._on_outcome = on_outcome
        self._batch = PendingBatch()
        self._deadline: float | None = None
        # _commit_lock serializes commit attempts; _state_lock guards the batch.
        self._commit_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None

    # ---- state machine ----

    @property
    def pending(self) -> frozenset[Path]:
        return self._batch.paths

    @property
    def deadline(self) -> float | None:
        """The time at which the pending batch settles, or None if empty."""
        return self._deadline

    def record(self, event: ChangeEvent, now: float) -> None:
        """Adds an event to the pending batch and re-arms the quiet window."""
        with self._state_lock:
            self._batch.add(event, now)
            self._arm(now)

    def _arm(self, now: float) -> None:
        deadline = now + self.delay
        if self.max_wait > 0 and self._batch.first_event_at is not None:
            deadline = min(deadline, self._batch.first_event_at + self.max_wait)
        self._deadline = deadline

    def poll(self, now: float) -> CommitOutcome | None:
        """Settles the pending batch if its deadline has passed."""
        if self._deadline is None or now < self._deadline:
            return None
        return self.settle()

    def settle(self) -> CommitOutcome | None:
        """Hands the pending batch to the commit callback and resets it.

        Events recorded while the commit runs start a fresh batch whose quiet
        window is counted from the moment the commit completes.

        Returns:
            CommitOutcome | None: The outcome, or None if nothing was pending.
        """
        with self._commit_lock:
            with self._state_lock:
                paths = self._batch.drain()
                self._deadline = None
            if not paths:
                return None
            logger.debug("Settling batch of %d path(s)", len(paths))
            outcome = self._commit(paths)
            with self._state_lock:
                if self._batch:
                    self._deadline = max(
                        self._deadline or 0.0, self._clock() + self.delay
                    )
        if self._on_outcome is not None:
            self._on_outcome(outcome)
        return outcome

    # ---- threaded driver ----

    def submit(self, event: ChangeEvent) -> None:
        """Queues an event for the batcher thread. Safe from any thread."""
        self._queue.put(event)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="DebounceBatcher"
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Flushes any pending batch, waits for that commit, and stops the thread.

        Events already queued are folded into the final batch.

        Args:
            timeout (float | None): Seconds to wait for the final commit.

        Returns:
            bool: True if the thread finished within the timeout.
        """
        if self._thread is None:
            self.settle()
            return True
        self._queue.put(_FLUSH)
        self._thread.join(timeout)
        finished = not self._thread.is_alive()
        if finished:
            self._thread = None
        return finished

    def _loop(self) -> None:
        while True:
            if self._deadline is None:
                timeout = None
            else:
                timeout = max(0.0, self._deadline - self._clock())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                self._safe(lambda: self.poll(self._clock()))
                continue

            if item is _FLUSH:
                self._drain_queue()
                self._safe(self.settle)
                return
            self.record(item, self._clock())

    def _drain_queue(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _FLUSH:
                self.record(item, self._clock())

    def _safe(self, step: Callable[[], object]) -> None:
        try:
            step()
        except Exception:
            # The commit callback contains its own failures; anything else
            # escaping here must not kill the loop.
            logger.exception("Unexpected error while settling batch")
