"""
Shared pytest fixtures for rotabackup tests.

This module provides fixtures for:
- Flask app with test configuration and an in-memory database
- A fake Capability that performs the external tool work with shutil/tarfile
- Source trees, fake repositories and staging areas
- A mocked retention host connection
"""

import os
import shutil
import logging
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from rotabackup import create_app, db as _db
from rotabackup.backup.capability import Capability, CapabilityResult
from rotabackup.backup.compression import create_archive, CompressionFailure
from rotabackup.backup.periods import PeriodTag, Granularity, StagingArea


# Fixed clock used for period resolution: 14 May 2025 is in ISO week 20
NOW = datetime(2025, 5, 14, 10, 30)


class FakeCapability(Capability):
    """
    In-process stand-in for git/rsync/tar/sftp.

    The "remote" is a local directory; remote paths are mapped below it.
    """

    def __init__(self, remote_root):
        self.remote_root = str(remote_root)
        self.calls = []
        self.fail_sources = set()
        self.fail_compress = set()
        self.fail_transfer = False

    def mirror_repository(self, source, destination):
        if source in self.fail_sources:
            self.calls.append(('mirror', source))
            return CapabilityResult.failed(f"fatal: could not read {source}")
        if os.path.isdir(destination):
            self.calls.append(('fetch', source))
            return CapabilityResult.ok(detail='fetched')
        self.calls.append(('clone', source))
        os.makedirs(os.path.join(destination, 'refs', 'heads'))
        with open(os.path.join(destination, 'HEAD'), 'w') as f:
            f.write('ref: refs/heads/main\n')
        return CapabilityResult.ok(detail='cloned')

    def sync_tree(self, source, destination_dir, ignore_special_files=False):
        self.calls.append(('sync', source, ignore_special_files))
        if source in self.fail_sources:
            return CapabilityResult.failed(f"rsync: change_dir {source} failed: Permission denied")
        target = os.path.join(destination_dir, os.path.basename(os.path.normpath(source)))
        if os.path.exists(target):
            shutil.rmtree(target)
        shutil.copytree(source, target, symlinks=True)
        return CapabilityResult.ok()

    def compress(self, source_dir, archive_path):
        name = os.path.basename(source_dir)
        self.calls.append(('compress', name))
        if name in self.fail_compress:
            with open(archive_path, 'wb') as f:
                f.write(b'partial')
            return CapabilityResult.failed("tar: write error")
        try:
            create_archive(source_dir, archive_path)
        except CompressionFailure as e:
            return CapabilityResult.failed(str(e))
        return CapabilityResult.ok(archive_path)

    def transfer_file(self, local_path, remote_dir):
        self.calls.append(('transfer', os.path.basename(local_path), remote_dir))
        if self.fail_transfer:
            return CapabilityResult.failed("scp: Connection reset by peer")
        target_dir = os.path.join(self.remote_root, remote_dir.lstrip('/'))
        os.makedirs(target_dir, exist_ok=True)
        shutil.copy2(local_path, target_dir)
        return CapabilityResult.ok(f"{remote_dir}/{os.path.basename(local_path)}")

    def remote_files(self, remote_dir='/srv/backups/archive'):
        target_dir = os.path.join(self.remote_root, remote_dir.lstrip('/'))
        if not os.path.isdir(target_dir):
            return []
        return sorted(os.listdir(target_dir))


@pytest.fixture
def backup_paths(tmp_path):
    """Filesystem roots used by the test configuration (not created)."""
    return {
        'LOG_DIR': str(tmp_path / 'logs'),
        'LOCAL_BACKUP_DIR': str(tmp_path / 'backup'),
        'TEMP_DIR': str(tmp_path / 'tmp'),
        'LOCK_FILE': str(tmp_path / 'rotabackup.lock'),
    }


@pytest.fixture(scope='function')
def app(backup_paths):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    overrides = dict(backup_paths)
    overrides.update({
        'SOURCE_DIRS': [],
        'REMOTE_HOST': 'backup@retention.test',
        'REMOTE_DEST_DIR': '/srv/backups',
        'BACKUP_PERIOD': 'months',
    })

    app = create_app('testing', overrides=overrides)

    yield app

    # Detach handlers pointing into tmp_path
    package_logger = logging.getLogger('rotabackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


@pytest.fixture(scope='function')
def db(app):
    """
    Database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def settings(app):
    """The app configuration mapping passed to the engine."""
    return app.config


@pytest.fixture
def fake_capability(tmp_path):
    return FakeCapability(tmp_path / 'remote')


@pytest.fixture
def mock_remote():
    """
    Mocked RemoteHost whose handshake succeeds.
    """
    remote = MagicMock()
    remote.hostname = 'retention.test'
    remote.check_handshake.return_value = None
    return remote


@pytest.fixture
def plain_source(tmp_path):
    """
    Plain directory source.

    Creates:
    - documents/report.txt
    - documents/notes/todo.txt
    """
    source = tmp_path / 'sources' / 'documents'
    (source / 'notes').mkdir(parents=True)
    (source / 'report.txt').write_text('quarterly report')
    (source / 'notes' / 'todo.txt').write_text('rotate backups')
    return source


@pytest.fixture
def repo_source(tmp_path):
    """
    Directory that looks like a git working copy (has .git/).
    """
    source = tmp_path / 'sources' / 'website'
    (source / '.git').mkdir(parents=True)
    (source / 'index.html').write_text('<html></html>')
    return source


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def current_tag():
    return PeriodTag.for_time(NOW, Granularity.MONTHLY)


@pytest.fixture
def make_staging_area(backup_paths):
    """
    Factory creating a populated staging area for a tag string.
    """
    def _make(tag_name):
        tag = PeriodTag.parse(tag_name)
        staging = StagingArea(backup_paths['LOCAL_BACKUP_DIR'], tag)
        staging.ensure()
        resources = os.path.join(staging.resources_dir, 'documents')
        os.makedirs(resources, exist_ok=True)
        with open(os.path.join(resources, 'report.txt'), 'w') as f:
            f.write(f'report from {tag_name}')
        return staging

    return _make
