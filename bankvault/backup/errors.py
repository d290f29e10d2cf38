"""
Exceptions raised by the backup subsystem.

Every error carries the HTTP status the route layer should answer with.
"""


class BackupError(Exception):
    """Base class for backup and restore failures."""
    status_code = 500


class BackupAlreadyRunningError(BackupError):
    """Raised when a backup (or restore) is already in progress."""
    status_code = 409


class CaptureError(BackupError):
    """Raised when the database export or file copy fails."""
    pass


class CompressionError(BackupError):
    """Raised when archive creation, verification or extraction fails."""
    pass


class BackupNotFoundError(BackupError):
    """Raised when a backup id is not in the history ledger."""
    status_code = 404


class InvalidBackupStateError(BackupError):
    """Raised when an operation needs a successful backup and gets a failed one."""
    status_code = 400


class InvalidConfigError(BackupError):
    """Raised when a configuration update is rejected."""
    status_code = 400


class RestoreError(BackupError):
    """Raised when extraction or replay of a backup fails."""
    pass
