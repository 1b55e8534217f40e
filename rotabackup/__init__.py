import os
import logging
from datetime import datetime
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from rotabackup.errors import ConfigurationMissing


# Initialize extensions
db = SQLAlchemy()

LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def weekly_log_name(now: datetime = None) -> str:
    """
    Name of the log file for the ISO week containing `now`.

    Format: {YYYY}-week-{WW}.log
    """
    now = now or datetime.now()
    iso_year, iso_week, _ = now.isocalendar()
    return f"{iso_year}-week-{iso_week:02d}.log"


class WeeklyFileHandler(logging.FileHandler):
    """
    Append-only file handler that writes to one file per calendar week.

    The target file is re-evaluated on every record so a long-running
    scheduler moves to the new week's file without a restart.
    """

    def __init__(self, log_dir: str, encoding: str = 'utf-8'):
        self.log_dir = log_dir
        self.current_name = weekly_log_name()
        super().__init__(os.path.join(log_dir, self.current_name), mode='a', encoding=encoding, delay=True)

    def emit(self, record):
        name = weekly_log_name(datetime.fromtimestamp(record.created))
        if name != self.current_name:
            self.acquire()
            try:
                self.close()
                self.current_name = name
                self.baseFilename = os.path.abspath(os.path.join(self.log_dir, name))
            finally:
                self.release()
        super().emit(record)


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    # Weekly file handler
    file_handler = WeeklyFileHandler(log_dir)
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    # Configure package logger, replacing handlers from a previous app instance
    package_logger = logging.getLogger('rotabackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(log_level)
    package_logger.addHandler(console_handler)
    package_logger.addHandler(file_handler)

    # Configure Flask app logger
    app.logger.setLevel(log_level)

    package_logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, config_file=None, overrides=None):
    """
    Application factory.

    Loads the named configuration class, overlays the key/value config file
    and any explicit overrides, validates the result, then sets up logging
    and the run history database.

    Raises:
        ConfigurationMissing: If the config file or a required option is missing
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('ROTABACKUP_ENV', 'production')

    from rotabackup.config import config, validate_config
    if config_name not in config:
        raise ConfigurationMissing(f"Unknown configuration name: {config_name}")
    app.config.from_object(config[config_name])

    if config_file is None:
        config_file = app.config.get('CONFIG_FILE')

    if config_file:
        try:
            app.config.from_pyfile(os.path.abspath(config_file))
        except OSError as e:
            raise ConfigurationMissing(f"Configuration file not found: {config_file} ({e.strerror})")
        app.config['CONFIG_FILE'] = config_file

    if overrides:
        app.config.update(overrides)

    validate_config(app.config)

    # Run history lives next to the logs unless configured otherwise
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        db_path = os.path.abspath(os.path.join(app.config['LOG_DIR'], 'history.db'))
        app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_path}'

    # Configure logging
    configure_logging(app)

    # Initialize extensions
    db.init_app(app)

    # Initialize database schema
    from rotabackup import models
    with app.app_context():
        db.create_all()

    return app
