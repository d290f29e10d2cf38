import os
import secrets

BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default):
    value = os.environ.get(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Sessions are not used by the API; a throwaway key is enough
        SECRET_KEY = secrets.token_hex(32)

    # Database (the live store that gets backed up)
    DATA_DIR = os.environ.get('DATA_DIR') or '/data'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/bankvault.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')

    # Backup policy (runtime-updatable values are copied into BackupConfig)
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or os.path.join(DATA_DIR, 'backups')
    BACKUP_FREQUENCY = os.environ.get('BACKUP_FREQUENCY', 'daily')
    BACKUP_RETENTION_DAYS = int(os.environ.get('BACKUP_RETENTION_DAYS', 30))
    BACKUP_INCLUDE_FILES = _env_bool('BACKUP_INCLUDE_FILES', True)
    BACKUP_COMPRESS = _env_bool('BACKUP_COMPRESS', True)
    BACKUP_COMPRESSION_FORMAT = os.environ.get('BACKUP_COMPRESSION_FORMAT', 'tar.gz')
    BACKUP_MAX_FAILED_RECORDS = int(os.environ.get('BACKUP_MAX_FAILED_RECORDS', 50))

    # Auxiliary directories, relative paths resolve against BACKUP_AUXILIARY_ROOT
    BACKUP_AUXILIARY_ROOT = os.environ.get('BACKUP_AUXILIARY_ROOT') or BASE_DIR
    BACKUP_AUXILIARY_DIRS = _env_list('BACKUP_AUXILIARY_DIRS', ['public', 'uploads', 'logs', 'certificates'])
    BACKUP_EXCLUDE_PATTERNS = _env_list('BACKUP_EXCLUDE_PATTERNS', ['*.pyc', '__pycache__'])

    # Scheduler
    BACKUP_SCHEDULER_ENABLED = _env_bool('BACKUP_SCHEDULER_ENABLED', True)
    BACKUP_SCHEDULE_HOUR = int(os.environ.get('BACKUP_SCHEDULE_HOUR', 2))
    BACKUP_RETENTION_HOUR = int(os.environ.get('BACKUP_RETENTION_HOUR', 3))
    SCHEDULER_TIMEZONE = 'UTC'

    # API access for backup operations (unset = protected routes reject everything)
    BACKUP_API_TOKEN = os.environ.get('BACKUP_API_TOKEN')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "bankvault.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(DevelopmentConfig):
    """Testing configuration (paths are overridden per test)"""
    DEBUG = False
    TESTING = True
    BACKUP_SCHEDULER_ENABLED = False
    BACKUP_AUXILIARY_DIRS = []


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
