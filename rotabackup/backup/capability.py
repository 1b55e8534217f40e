"""
External capabilities used by the backup engine.

The engine never shells out directly; it calls a Capability whose methods
return a CapabilityResult instead of raising or relying on exit codes.
SystemCapability is the production implementation:

- mirror_repository: git clone --mirror / git fetch --all
- sync_tree: rsync -a --delete
- compress: tarfile (see compression.py)
- transfer_file: SFTP upload over paramiko (see remote.py)
"""

import os
import subprocess
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from .compression import create_archive, CompressionFailure
from .remote import RemoteHost, RemoteError


logger = logging.getLogger(__name__)


@dataclass
class CapabilityResult:
    """Outcome of one capability call."""
    success: bool
    output: str = ''
    detail: Optional[str] = None

    @classmethod
    def ok(cls, output: str = '', detail: Optional[str] = None) -> 'CapabilityResult':
        return cls(True, output, detail)

    @classmethod
    def failed(cls, output: str) -> 'CapabilityResult':
        return cls(False, output)

    def __bool__(self):
        return self.success


class Capability(ABC):
    """Interface over the mirror, sync, compress and transfer tools."""

    @abstractmethod
    def mirror_repository(self, source: str, destination: str) -> CapabilityResult:
        """Create or update a full mirror of the repository at `source`."""

    @abstractmethod
    def sync_tree(self, source: str, destination_dir: str, ignore_special_files: bool = False) -> CapabilityResult:
        """Converge ``destination_dir/<basename(source)>`` to exactly match `source`."""

    @abstractmethod
    def compress(self, source_dir: str, archive_path: str) -> CapabilityResult:
        """Compress `source_dir` into `archive_path`."""

    @abstractmethod
    def transfer_file(self, local_path: str, remote_dir: str) -> CapabilityResult:
        """Ensure `remote_dir` exists on the retention host and copy `local_path` into it."""


def run_command(cmd: List[str], cwd: Optional[str] = None) -> CapabilityResult:
    """Run an external tool, capturing combined output."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except FileNotFoundError:
        return CapabilityResult.failed(f"Command not found: {cmd[0]}")
    except OSError as e:
        return CapabilityResult.failed(f"Failed to run {cmd[0]}: {e}")

    output = (result.stdout or '').strip()
    if result.returncode != 0:
        return CapabilityResult.failed(f"{cmd[0]} exited with status {result.returncode}: {output}")
    return CapabilityResult.ok(output)


def rsync_flags(ignore_special_files: bool = False) -> List[str]:
    """Flags for an archive-mode mirror that propagates deletions."""
    flags = ['-a', '--delete']
    if ignore_special_files:
        flags.extend(['--no-specials', '--no-devices'])
    return flags


class SystemCapability(Capability):
    """Capability backed by git, rsync, tarfile and paramiko."""

    def __init__(self, remote: Optional[RemoteHost] = None, compression_format: str = 'tar.gz'):
        self.remote = remote
        self.compression_format = compression_format

    @classmethod
    def from_config(cls, settings) -> 'SystemCapability':
        return cls(
            remote=RemoteHost.from_config(settings),
            compression_format=settings.get('ARCHIVE_FORMAT', 'tar.gz'),
        )

    def mirror_repository(self, source: str, destination: str) -> CapabilityResult:
        if os.path.isdir(destination):
            result = run_command(['git', '-C', destination, 'fetch', '--all'])
            result.detail = 'fetched'
        else:
            result = run_command(['git', 'clone', '--mirror', source, destination])
            result.detail = 'cloned'
        return result

    def sync_tree(self, source: str, destination_dir: str, ignore_special_files: bool = False) -> CapabilityResult:
        # No trailing slash on the source: rsync creates destination_dir/<basename>
        cmd = ['rsync'] + rsync_flags(ignore_special_files) + [source.rstrip('/'), destination_dir.rstrip('/') + '/']
        return run_command(cmd)

    def compress(self, source_dir: str, archive_path: str) -> CapabilityResult:
        try:
            create_archive(source_dir, archive_path, self.compression_format)
        except (CompressionFailure, ValueError) as e:
            return CapabilityResult.failed(str(e))
        return CapabilityResult.ok(archive_path)

    def transfer_file(self, local_path: str, remote_dir: str) -> CapabilityResult:
        if self.remote is None:
            return CapabilityResult.failed("No remote host configured")

        try:
            with self.remote as remote:
                remote.ensure_directory(remote_dir)
                remote_path = remote.upload(local_path, remote_dir)
        except RemoteError as e:
            return CapabilityResult.failed(str(e))
        except OSError as e:
            return CapabilityResult.failed(f"Failed to send {local_path}: {e}")

        return CapabilityResult.ok(remote_path)
