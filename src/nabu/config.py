import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .auth import AuthMethod
from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_DELAY,
    DEFAULT_IGNORES,
    DEFAULT_PUSH_TIMEOUT,
    LOCAL_CONFIG_NAME,
)
from .source import WatchRoot

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '30s', '2m') to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value < 0:
            raise ValueError(f"Negative duration '{value}'")
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)?s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2) or "s"
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class WatchConfig:
    """Debounce settings.

    Attributes:
        delay (float): Quiet window in seconds before a batch settles.
        max_wait (float): Settle a batch this old even under continuous
                          activity. 0 disables the ceiling.
    """

    delay: float = DEFAULT_DELAY
    max_wait: float = 0


@dataclass
class FilesConfig:
    """File filtering settings.

    Attributes:
        ignore (list[str]): Path component patterns whose events are dropped.
    """

    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORES))


@dataclass
class PushConfig:
    """Exit-time push settings.

    Attributes:
        on_exit (bool): Push the current branch when the watcher stops.
        timeout (float): Upper bound for the push, in seconds.
        remote (str): Remote used when the branch has no upstream.
    """

    on_exit: bool = False
    timeout: float = DEFAULT_PUSH_TIMEOUT
    remote: str = "origin"


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        watch (WatchConfig): Debounce settings.
        files (FilesConfig): File filtering settings.
        push (PushConfig): Push settings.
        limits (LimitsConfig): Resource limits.
    """

    watch: WatchConfig = field(default_factory=WatchConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    push: PushConfig = field(default_factory=PushConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(
        cls, directory: Path | None = None, path: Path | None = None
    ) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            directory (Path | None): The watched directory to search for a local
                                     `nabu.toml`.
            path (Path | None): An explicit configuration file, used in place of
                                the local one.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if path is not None:
            if not path.exists():
                logger.warning(f"Config file not found: {path}")
            instance._merge_from_file(path)
        elif directory is not None:
            local_toml = directory / LOCAL_CONFIG_NAME
            if local_toml.exists():
                instance._merge_from_file(local_toml)

        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        logger.info(f"Reading config from {path}")
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if "watch" in data:
                self.watch = self._update_dataclass("watch", self.watch, data["watch"])
            if "push" in data:
                self.push = self._update_dataclass("push", self.push, data["push"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "files" in data:
                # Ignore patterns accumulate across layers.
                files = dict(data["files"])
                new_ignores = files.pop("ignore", [])
                self.files = self._update_dataclass("files", self.files, files)
                if new_ignores:
                    merged = [*self.files.ignore, *new_ignores]
                    self.files.ignore = list(dict.fromkeys(merged))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["delay", "max_wait", "timeout"]:
                    seconds = parse_time(v)
                    if k == "timeout" and seconds <= 0:
                        raise ValueError(f"Timeout must be positive, got '{v}'")
                    filtered_updates[k] = seconds
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    def to_toml(self) -> str:
        """Renders the configuration as a `nabu.toml` document."""
        ignore = ", ".join(f'"{p}"' for p in self.files.ignore)
        return (
            "[watch]\n"
            f"delay = {_number(self.watch.delay)}\n"
            f"max_wait = {_number(self.watch.max_wait)}\n"
            "\n"
            "[files]\n"
            f"ignore = [{ignore}]\n"
            "\n"
            "[push]\n"
            f"on_exit = {'true' if self.push.on_exit else 'false'}\n"
            f"timeout = {_number(self.push.timeout)}\n"
            f'remote = "{self.push.remote}"\n'
            "\n"
            "[limits]\n"
            f"max_log_size = {self.limits.max_log_size}\n"
        )


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass(frozen=True)
class WatchSettings:
    """The validated settings a watch run is started with.

    Attributes:
        root (WatchRoot): What to watch.
        delay (float): Quiet window in seconds.
        max_wait (float): Ceiling on how long a busy batch may be deferred.
        ignore (tuple[str, ...]): Ignored path component patterns.
        push_on_exit (bool): Whether to push once at shutdown.
        push_timeout (float): Upper bound for that push.
        remote (str): Remote used when the branch has no upstream.
        auth (AuthMethod | None): The credential mechanism for the push.
        dry_run (bool): Log instead of committing and pushing.
    """

    root: WatchRoot
    delay: float = DEFAULT_DELAY
    max_wait: float = 0
    ignore: tuple[str, ...] = tuple(DEFAULT_IGNORES)
    push_on_exit: bool = False
    push_timeout: float = DEFAULT_PUSH_TIMEOUT
    remote: str = "origin"
    auth: AuthMethod | None = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.delay < 0 or self.max_wait < 0 or self.push_timeout <= 0:
            raise ValueError("Durations must be non-negative (push timeout positive)")
        if self.push_on_exit and self.auth is None:
            raise ValueError("push_on_exit requires an authentication method")
