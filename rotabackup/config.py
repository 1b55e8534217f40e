import os

from rotabackup.errors import ConfigurationMissing


# Options every configuration file must provide
REQUIRED_KEYS = (
    'LOG_DIR',
    'LOCAL_BACKUP_DIR',
    'TEMP_DIR',
    'SOURCE_DIRS',
    'REMOTE_HOST',
    'REMOTE_DEST_DIR',
)


class Config:
    """Base configuration"""

    # Key/value file overlaid on top of these defaults
    CONFIG_FILE = os.environ.get('ROTABACKUP_CONFIG') or 'backup.conf.py'

    # Filesystem roots (no defaults, must come from the config file)
    LOG_DIR = None
    LOCAL_BACKUP_DIR = None
    TEMP_DIR = None

    # Sources
    SOURCE_DIRS = None
    IGNORE_SPECIAL_FILES = False

    # Period granularity: 'months', 'weeks', anything else is daily
    BACKUP_PERIOD = 'days'

    # Archive format for rotated periods
    ARCHIVE_FORMAT = 'tar.gz'

    # Remote retention host
    REMOTE_HOST = None
    REMOTE_DEST_DIR = None
    REMOTE_PORT = 22
    REMOTE_REQUIRED = True
    SSH_KEY_FILE = None
    SSH_CONNECT_TIMEOUT = 5

    # Mutual exclusion marker
    LOCK_FILE = os.environ.get('ROTABACKUP_LOCK_FILE') or '/tmp/rotabackup.lock'

    # Run history (defaults to a sqlite file inside LOG_DIR)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Scheduler
    SCHEDULE_CRON = '0 * * * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration, never reads a config file"""
    TESTING = True
    DEBUG = False
    CONFIG_FILE = None
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOCK_FILE = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def validate_config(settings) -> None:
    """
    Check that every required option is present and usable.

    Args:
        settings: Mapping of configuration values (e.g. Flask app.config)

    Raises:
        ConfigurationMissing: If a required option is absent or empty
    """
    missing = [key for key in REQUIRED_KEYS if not settings.get(key)]
    if missing:
        raise ConfigurationMissing(f"Missing configuration options: {', '.join(missing)}")

    if not settings.get('LOCK_FILE'):
        raise ConfigurationMissing("Missing configuration option: LOCK_FILE")

    # A single path written as a plain string is accepted
    if isinstance(settings['SOURCE_DIRS'], str):
        settings['SOURCE_DIRS'] = [settings['SOURCE_DIRS']]
    elif not isinstance(settings['SOURCE_DIRS'], (list, tuple)):
        raise ConfigurationMissing("SOURCE_DIRS must be a list of paths")
