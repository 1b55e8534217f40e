"""
Unit tests for configuration loading and logging setup
(rotabackup/config.py, rotabackup/__init__.py).
"""

import os
import logging
from datetime import datetime

import pytest

from rotabackup import create_app, weekly_log_name, WeeklyFileHandler
from rotabackup.config import validate_config, REQUIRED_KEYS
from rotabackup.errors import ConfigurationMissing


CONFIG_TEMPLATE = """
LOG_DIR = {log_dir!r}
LOCAL_BACKUP_DIR = {backup_dir!r}
TEMP_DIR = {temp_dir!r}
SOURCE_DIRS = ['/home/user/documents', '/home/user/projects/website']
BACKUP_PERIOD = 'weeks'
REMOTE_HOST = 'backup@retention.test'
REMOTE_DEST_DIR = '/srv/backups'
LOCK_FILE = {lock_file!r}
"""


@pytest.fixture
def config_file(tmp_path, backup_paths):
    path = tmp_path / 'backup.conf.py'
    path.write_text(CONFIG_TEMPLATE.format(
        log_dir=backup_paths['LOG_DIR'],
        backup_dir=backup_paths['LOCAL_BACKUP_DIR'],
        temp_dir=backup_paths['TEMP_DIR'],
        lock_file=backup_paths['LOCK_FILE'],
    ))
    return path


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    package_logger = logging.getLogger('rotabackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


def complete_settings(**overrides):
    settings = {
        'LOG_DIR': '/var/log/rotabackup',
        'LOCAL_BACKUP_DIR': '/backup',
        'TEMP_DIR': '/backup/tmp',
        'SOURCE_DIRS': ['/home/user/documents'],
        'REMOTE_HOST': 'backup@retention.test',
        'REMOTE_DEST_DIR': '/srv/backups',
        'LOCK_FILE': '/tmp/rotabackup.lock',
    }
    settings.update(overrides)
    return settings


class TestValidateConfig:
    """Test required option checks."""

    def test_complete_settings(self):
        validate_config(complete_settings())

    @pytest.mark.parametrize("key", REQUIRED_KEYS)
    def test_missing_required_key(self, key):
        settings = complete_settings()
        del settings[key]

        with pytest.raises(ConfigurationMissing, match=key):
            validate_config(settings)

    def test_empty_value_counts_as_missing(self):
        with pytest.raises(ConfigurationMissing, match="REMOTE_HOST"):
            validate_config(complete_settings(REMOTE_HOST=''))

    def test_missing_lock_file(self):
        with pytest.raises(ConfigurationMissing, match="LOCK_FILE"):
            validate_config(complete_settings(LOCK_FILE=None))

    def test_single_source_string(self):
        settings = complete_settings(SOURCE_DIRS='/home/user/documents')

        validate_config(settings)

        assert settings['SOURCE_DIRS'] == ['/home/user/documents']

    def test_invalid_source_dirs(self):
        with pytest.raises(ConfigurationMissing, match="SOURCE_DIRS"):
            validate_config(complete_settings(SOURCE_DIRS=42))


class TestCreateApp:
    """Test the application factory."""

    def test_load_config_file(self, config_file, backup_paths):
        app = create_app('production', config_file=str(config_file))

        assert app.config['BACKUP_PERIOD'] == 'weeks'
        assert app.config['SOURCE_DIRS'] == ['/home/user/documents', '/home/user/projects/website']
        assert app.config['LOCK_FILE'] == backup_paths['LOCK_FILE']
        # Defaults kept for options the file does not set
        assert app.config['ARCHIVE_FORMAT'] == 'tar.gz'
        assert app.config['REMOTE_REQUIRED'] is True

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigurationMissing, match="Configuration file not found"):
            create_app('production', config_file=str(tmp_path / 'missing.conf.py'))

    def test_incomplete_config_file(self, tmp_path):
        path = tmp_path / 'backup.conf.py'
        path.write_text("LOG_DIR = '/var/log/rotabackup'\n")

        with pytest.raises(ConfigurationMissing, match="LOCAL_BACKUP_DIR"):
            create_app('production', config_file=str(path))

    def test_unknown_config_name(self):
        with pytest.raises(ConfigurationMissing, match="Unknown configuration"):
            create_app('staging')

    def test_default_history_database(self, config_file, backup_paths):
        app = create_app('production', config_file=str(config_file),
                         overrides={'SQLALCHEMY_DATABASE_URI': None})

        expected = os.path.abspath(os.path.join(backup_paths['LOG_DIR'], 'history.db'))
        assert app.config['SQLALCHEMY_DATABASE_URI'] == f'sqlite:///{expected}'
        assert os.path.exists(expected)

    def test_log_file_written(self, app, backup_paths):
        logging.getLogger('rotabackup.backup').info("Synchronizing directory /home/user/documents")

        log_path = os.path.join(backup_paths['LOG_DIR'], weekly_log_name())
        with open(log_path) as f:
            content = f.read()
        assert 'INFO Synchronizing directory /home/user/documents' in content

    def test_debug_level_in_development(self, config_file):
        create_app('development', config_file=str(config_file),
                   overrides={'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:'})

        assert logging.getLogger('rotabackup').level == logging.DEBUG


class TestWeeklyLogFile:
    """Test one log file per ISO week."""

    def test_weekly_log_name(self):
        assert weekly_log_name(datetime(2025, 5, 14)) == '2025-week-20.log'

    def test_weekly_log_name_iso_year(self):
        assert weekly_log_name(datetime(2024, 12, 30)) == '2025-week-01.log'
        assert weekly_log_name(datetime(2021, 1, 3)) == '2020-week-53.log'

    def test_handler_switches_file_with_week(self, tmp_path):
        handler = WeeklyFileHandler(str(tmp_path))
        handler.setFormatter(logging.Formatter('%(message)s'))

        for when, message in [(datetime(2025, 5, 14, 23, 0), 'wednesday'),
                              (datetime(2025, 5, 19, 0, 30), 'monday')]:
            record = logging.makeLogRecord({
                'msg': message,
                'levelno': logging.INFO,
                'levelname': 'INFO',
                'created': when.timestamp(),
            })
            handler.emit(record)
        handler.close()

        assert (tmp_path / '2025-week-20.log').read_text() == 'wednesday\n'
        assert (tmp_path / '2025-week-21.log').read_text() == 'monday\n'

    def test_handler_appends(self, tmp_path):
        (tmp_path / weekly_log_name()).write_text('earlier run\n')

        handler = WeeklyFileHandler(str(tmp_path))
        handler.setFormatter(logging.Formatter('%(message)s'))
        handler.emit(logging.makeLogRecord({'msg': 'later run', 'levelno': logging.INFO}))
        handler.close()

        assert (tmp_path / weekly_log_name()).read_text() == 'earlier run\nlater run\n'
