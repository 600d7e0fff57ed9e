import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console

from . import daemon
from .auth import AgentAuth, AuthMethod, KeyFileAuth
from .config import Config, WatchSettings, parse_time
from .constants import APP_NAME, CONFIG_FILE, LOCAL_CONFIG_NAME, LOG_FILE
from .errors import WatchSetupError
from .source import WatchRoot

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def _duration(value: str) -> float:
    try:
        return parse_time(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _positive_duration(value: str) -> float:
    seconds = _duration(value)
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"Duration must be positive: '{value}'")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for the `nabu` command."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Watch a directory and commit its changes automatically.",
    )
    parser.add_argument("--debug", action="store_true", help="Print debug information")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init", help=f"Write a default {LOCAL_CONFIG_NAME} configuration file"
    )
    init_parser.add_argument(
        "--global",
        dest="global_",
        action="store_true",
        help=f"Write the global configuration file ({CONFIG_FILE})",
    )

    watch_parser = subparsers.add_parser("watch", help="Watch over a directory")
    watch_parser.add_argument("directory", type=Path, help="The directory to watch")
    watch_parser.add_argument(
        "-r", "--recursive", action="store_true", help="Watch sub-directories too"
    )
    watch_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would be committed and pushed without doing it",
    )
    watch_parser.add_argument(
        "--delay", type=_duration, help="Quiet window before committing (e.g. 30s)"
    )
    watch_parser.add_argument(
        "--max-wait",
        type=_duration,
        help="Commit a busy batch after this long regardless of activity",
    )
    watch_parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Path component pattern to ignore (repeatable)",
    )
    watch_parser.add_argument(
        "-c", "--config", type=Path, help="Path to the configuration file"
    )
    watch_parser.add_argument(
        "--push-on-exit",
        action="store_true",
        help="Push the current branch when the watcher stops",
    )
    watch_parser.add_argument(
        "--push-timeout", type=_positive_duration, help="Push timeout (default: 5s)"
    )
    auth_group = watch_parser.add_mutually_exclusive_group()
    auth_group.add_argument(
        "--ssh-agent", action="store_true", help="Authenticate through the ssh-agent"
    )
    auth_group.add_argument(
        "--ssh-key", type=Path, metavar="PATH", help="Authenticate with this key file"
    )
    watch_parser.add_argument(
        "--ssh-passphrase", help="Passphrase for the key given with --ssh-key"
    )
    return parser


def auth_method_from_args(args: argparse.Namespace) -> AuthMethod | None:
    """Selects the authentication method named on the command line."""
    if args.ssh_agent:
        return AgentAuth()
    if args.ssh_key is not None:
        return KeyFileAuth(path=args.ssh_key, passphrase=args.ssh_passphrase)
    return None


def build_settings(args: argparse.Namespace, config: Config) -> WatchSettings:
    """Merges command-line flags over the loaded configuration.

    Raises:
        WatchSetupError: If the directory cannot be watched.
    """
    root = WatchRoot.discover(args.directory, recursive=args.recursive)
    push_on_exit = args.push_on_exit or config.push.on_exit
    auth = auth_method_from_args(args)
    if push_on_exit and auth is None:
        logger.info("No authentication method selected; using the ssh-agent.")
        auth = AgentAuth()

    ignore = list(dict.fromkeys([*config.files.ignore, *args.ignore]))
    return WatchSettings(
        root=root,
        delay=args.delay if args.delay is not None else config.watch.delay,
        max_wait=args.max_wait if args.max_wait is not None else config.watch.max_wait,
        ignore=tuple(ignore),
        push_on_exit=push_on_exit,
        push_timeout=(
            args.push_timeout if args.push_timeout is not None else config.push.timeout
        ),
        remote=config.push.remote,
        auth=auth,
        dry_run=args.dry_run,
    )


def init_config(global_: bool) -> Path:
    """Writes a default configuration file.

    Args:
        global_ (bool): Write the global file instead of one in the current directory.

    Returns:
        Path: The file written.
    """
    path = CONFIG_FILE if global_ else Path.cwd() / LOCAL_CONFIG_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(Config().to_toml())
    logger.info(f"Config file written to {path}")
    return path


def run_watch(args: argparse.Namespace) -> int:
    """Runs the `watch` action.

    Returns:
        int: 0 after a clean shutdown (even if the push failed), 1 if the
             watch could not be established.
    """
    config = Config.load(directory=args.directory, path=args.config)
    daemon.setup_logging(args.debug, LOG_FILE, config.limits.max_log_size)

    try:
        settings = build_settings(args, config)
        watch = daemon.Watch(settings)
        watch.install_signal_handlers()
        watch.run()
    except WatchSetupError as e:
        err_console.print(f"[bold red]{e.kind}:[/bold red] {e}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Nabu CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        daemon.setup_logging(args.debug)
        path = init_config(args.global_)
        console.print(f"[bold green]✔ Config written to {path}[/bold green]")
        return 0

    if args.ssh_passphrase is not None and args.ssh_key is None:
        parser.error("--ssh-passphrase requires --ssh-key")
    return run_watch(args)


if __name__ == "__main__":
    sys.exit(main())
