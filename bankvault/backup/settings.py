"""
Runtime backup configuration.

BackupConfig is replaced wholesale on every update; callers never mutate it.
"""

from dataclasses import dataclass, asdict, replace
from typing import Any, Dict

from .errors import InvalidConfigError


FREQUENCIES = ('daily', 'weekly', 'monthly')
MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 365

# Fields that may change while the process is running
UPDATABLE_FIELDS = ('frequency', 'retention_days', 'include_auxiliary_files', 'compress')


def _config_bool(value) -> bool:
    # String flags read the same way as BACKUP_* environment variables
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


@dataclass(frozen=True)
class BackupConfig:
    """Backup policy shared by the scheduler, orchestrator and retention."""

    frequency: str = 'daily'
    retention_days: int = 30
    backup_directory: str = 'backups'
    include_auxiliary_files: bool = True
    compress: bool = True

    def __post_init__(self):
        _check_frequency(self.frequency)
        _check_retention_days(self.retention_days)

    @classmethod
    def from_app_config(cls, config: Dict[str, Any]) -> 'BackupConfig':
        """
        Build the startup configuration from Flask config values.

        Args:
            config: Flask app.config (or any mapping with BACKUP_* keys)

        Returns:
            BackupConfig instance

        Raises:
            InvalidConfigError: If the configured values are out of range
        """
        return cls(
            frequency=config.get('BACKUP_FREQUENCY', 'daily'),
            retention_days=int(config.get('BACKUP_RETENTION_DAYS', 30)),
            backup_directory=config['BACKUP_DIR'],
            include_auxiliary_files=_config_bool(config.get('BACKUP_INCLUDE_FILES', True)),
            compress=_config_bool(config.get('BACKUP_COMPRESS', True))
        )

    def updated(self, changes: Dict[str, Any]) -> 'BackupConfig':
        """Return a new config with a validated partial update applied."""
        return replace(self, **validate_config_update(changes))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_config_update(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial configuration update.

    Args:
        changes: Mapping of field name to new value

    Returns:
        The validated changes

    Raises:
        InvalidConfigError: If any key or value is not acceptable
    """
    if not isinstance(changes, dict):
        raise InvalidConfigError("Configuration update must be an object")

    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise InvalidConfigError(f"Unknown or read-only configuration fields: {', '.join(unknown)}")

    if 'frequency' in changes:
        _check_frequency(changes['frequency'])

    if 'retention_days' in changes:
        _check_retention_days(changes['retention_days'])

    for flag in ('include_auxiliary_files', 'compress'):
        if flag in changes and not isinstance(changes[flag], bool):
            raise InvalidConfigError(f"{flag} must be a boolean")

    return dict(changes)


def _check_frequency(frequency):
    if frequency not in FREQUENCIES:
        raise InvalidConfigError(
            f"Invalid frequency: {frequency}. Must be daily, weekly, or monthly"
        )


def _check_retention_days(retention_days):
    # bool is an int subclass
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise InvalidConfigError("Retention days must be an integer")

    if not MIN_RETENTION_DAYS <= retention_days <= MAX_RETENTION_DAYS:
        raise InvalidConfigError(
            f"Retention days must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS}"
        )
