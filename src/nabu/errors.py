"""Error taxonomy for Nabu.

Every error carries a short ``kind`` used when reporting diagnostics, so a
user can tell a failed commit apart from a failed push or a rejected key.

- ``WatchSetupError``: the watch cannot be established. Fatal at startup.
- ``RepositoryError``: staging or committing failed. Contained per batch.
- ``AuthError``: no credential could be derived. Aborts the push only.
- ``PushError``: the push itself failed. Reported once; the process exits 0.
"""


class NabuError(Exception):
    """Base class for all Nabu errors."""

    kind = "NabuError"

    def __str__(self) -> str:
        message = super().__str__()
        return message or self.kind


class WatchSetupError(NabuError):
    """The watched root is missing, unreadable, or not inside a repository."""

    kind = "WatchSetupError"


class RepositoryError(NabuError):
    """A git operation failed for a reason not expected in normal operation."""

    kind = "RepositoryError"


class AuthError(NabuError):
    """The configured authentication method could not be resolved."""

    kind = "AuthError"


class AgentUnavailable(AuthError):
    """No running SSH agent could be reached."""

    kind = "AuthError::AgentUnavailable"


class PassphraseRequired(AuthError):
    """The key file is encrypted and no passphrase was supplied."""

    kind = "AuthError::PassphraseRequired"


class InvalidPassphrase(AuthError):
    """The supplied passphrase does not decrypt the key file."""

    kind = "AuthError::InvalidPassphrase"


class KeyUnreadable(AuthError):
    """The key file does not exist or is not a valid private key."""

    kind = "AuthError::KeyUnreadable"


class PushError(NabuError):
    """The remote could not be reached or rejected the push."""

    kind = "PushError"
