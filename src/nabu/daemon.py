import logging
import signal
import sys
import threading
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from rich.console import Console

from .auth import AgentAuth, CredentialResolver
from .batcher import DebounceBatcher
from .commit import CommitEngine, CommitOutcome, CommitStatus
from .config import WatchSettings
from .constants import APP_NAME
from .git_wrapper import GitRepo
from .push import PushGate, PushResult, PushState
from .source import ChangeSource

logger = logging.getLogger(APP_NAME)

console = Console()
err_console = Console(stderr=True)


def setup_logging(
    debug: bool = False, log_file: Path | None = None, max_bytes: int = 5 * 1024 * 1024
) -> None:
    """Configures the logging subsystem.

    Args:
        debug (bool): Log at DEBUG instead of INFO.
        log_file (Path | None): If given, also log to this file with rotation.
        max_bytes (int): Rotation threshold for the log file.
    """
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=5
            )
        except OSError as e:
            logger.warning(f"Could not open log file {log_file}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def report_commit(outcome: CommitOutcome) -> None:
    """Prints a user-visible diagnostic for a commit attempt."""
    if outcome.status is CommitStatus.COMMITTED:
        console.print(
            f"[bold green]COMMITTED:[/bold green] {outcome.commit_id[:12]} "
            f"({len(outcome.paths)} path(s))"
        )
    elif outcome.status is CommitStatus.NOOP:
        console.print("[dim]Nothing to commit: working tree matches HEAD.[/dim]")
    else:
        err_console.print(
            f"[bold red]COMMIT FAILED:[/bold red] {outcome.error.kind}: {outcome.error}"
        )


def report_push(result: PushResult) -> None:
    """Prints the final diagnostic for the exit-time push."""
    if not result.performed:
        return
    if result.state is PushState.SUCCEEDED:
        console.print("[bold green]SUCCESS:[/bold green] Pushed to remote.")
    elif result.error is None:
        err_console.print("[bold red]PUSH FAILED[/bold red]")
    else:
        err_console.print(
            f"[bold red]PUSH FAILED:[/bold red] {result.error.kind}: {result.error}"
        )


class Watch:
    """Wires the change source, batcher, commit engine and push gate together.

    `run` blocks until `request_stop` is called (by a signal handler or
    another thread), then shuts down in order: stop the source, flush and
    commit the pending batch, push if configured.
    """

    def __init__(
        self,
        settings: WatchSettings,
        repo: GitRepo | None = None,
        resolver: CredentialResolver | None = None,
        on_outcome: Callable[[CommitOutcome], None] = report_commit,
    ):
        self.settings = settings
        self.repo = repo or GitRepo(settings.root.repo_root)
        self.engine = CommitEngine(self.repo, dry_run=settings.dry_run)
        self.batcher = DebounceBatcher(
            self.engine,
            delay=settings.delay,
            max_wait=settings.max_wait,
            on_outcome=on_outcome,
        )
        self.source = ChangeSource(
            settings.root, self.batcher.submit, ignore=list(settings.ignore)
        )
        self.push_gate: PushGate | None = None
        if settings.push_on_exit:
            # Built now, resolved only when the push runs.
            self.push_gate = PushGate(
                self.repo,
                resolver or CredentialResolver(settings.auth or AgentAuth()),
                remote=settings.remote,
                timeout=settings.push_timeout,
                dry_run=settings.dry_run,
            )
        self._stop = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def request_stop(self) -> None:
        self._stop.set()

    def handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if self._stop.is_set():
            logger.info(f"Signal {signum} received again; shutdown already under way.")
            return
        logger.info("Termination signal received, attempting to save changes.")
        self._stop.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)

    def run(self) -> PushResult | None:
        """Watches until stopped, then performs the shutdown sequence.

        Raises:
            WatchSetupError: If the change source cannot be established.

        Returns:
            PushResult | None: The push result, if a push was configured.
        """
        self.batcher.start()
        try:
            self.source.start()
        except Exception:
            self.batcher.stop()
            raise

        console.print(
            f"[bold]Watching[/bold] [cyan]{self.settings.root.path}[/cyan] "
            f"(delay {self.settings.delay:g}s). Press Ctrl+C to stop."
        )
        while not self._stop.wait(timeout=0.5):
            pass
        return self.shutdown()

    def shutdown(self) -> PushResult | None:
        """Stops watching, commits what is pending, and pushes once if configured.

        Safe to call more than once; only the first call does any work.
        """
        with self._shutdown_lock:
            if self._shut_down:
                return None
            self._shut_down = True

        self.source.stop()
        # The final commit must complete before the branch is pushed.
        self.batcher.stop()
        logger.info("Pending changes saved.")

        if self.push_gate is None:
            return None
        result = self.push_gate.push()
        report_push(result)
        return result
