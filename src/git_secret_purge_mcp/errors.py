"""Exceptions raised by git-secret-purge."""


class SecretPurgeError(Exception):
    """Base class for all git-secret-purge errors."""


class ConfigError(SecretPurgeError):
    """Configuration could not be loaded."""


class QueryError(SecretPurgeError):
    """A read-only repository query failed."""

    def __init__(self, ref: str, message: str):
        self.ref = ref
        super().__init__(f"{ref}: {message}")


class NoCommonAncestorError(SecretPurgeError):
    """Trunk and branch tip share no history."""

    def __init__(self, trunk: str, tip: str):
        self.trunk = trunk
        self.tip = tip
        super().__init__(f"no common ancestor between {trunk} and {tip[:8]}")


class PublishError(SecretPurgeError):
    """Pushing a reconstructed branch failed."""

    def __init__(self, branch: str, remote: str, detail: str = ""):
        self.branch = branch
        self.remote = remote
        self.detail = detail
        message = f"failed to push {branch} to {remote}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RewriteFailure(SecretPurgeError):
    """The external history rewrite reported failure."""


class PersistenceError(SecretPurgeError):
    """A run metadata record could not be written or read."""


class BackupError(SecretPurgeError):
    """The pre-rewrite backup could not be created."""


class NotifyError(SecretPurgeError):
    """A run summary could not be delivered."""

    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)
