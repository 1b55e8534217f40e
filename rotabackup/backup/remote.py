"""
SSH/SFTP access to the remote retention host.

Authentication is non-interactive: keys from SSH_KEY_FILE, the agent or the
default key locations. Password prompts are never attempted.
"""

import os
import shlex
import posixpath
import logging
from pathlib import Path
from typing import Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy


logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Raised when a remote operation fails."""
    pass


def split_remote_host(remote_host: str):
    """
    Split an ``[user@]host`` string.

    Returns:
        (username or None, hostname)
    """
    if '@' in remote_host:
        username, hostname = remote_host.rsplit('@', 1)
        return username or None, hostname
    return None, remote_host


class RemoteHost:
    """
    Connection to the retention host.

    Usable as a context manager; each `with` block opens and closes its own
    SSH session.
    """

    def __init__(self, remote_host: str, port: int = 22, key_file: Optional[str] = None,
                 connect_timeout: float = 5):
        """
        Args:
            remote_host: ``[user@]host`` of the retention host
            port: SSH port
            key_file: Optional private key path
            connect_timeout: Timeout for TCP connect, banner and authentication
        """
        self.username, self.hostname = split_remote_host(remote_host)
        self.port = port
        self.key_file = key_file
        self.connect_timeout = connect_timeout

        self.ssh_client = None
        self.sftp_client = None

    @classmethod
    def from_config(cls, settings) -> 'RemoteHost':
        return cls(
            settings['REMOTE_HOST'],
            port=settings.get('REMOTE_PORT', 22),
            key_file=settings.get('SSH_KEY_FILE'),
            connect_timeout=settings.get('SSH_CONNECT_TIMEOUT', 5),
        )

    def connect(self):
        """
        Establish SSH connection.

        Raises:
            RemoteError: If connection or authentication fails
        """
        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.hostname,
                'port': self.port,
                'timeout': self.connect_timeout,
                'banner_timeout': self.connect_timeout,
                'auth_timeout': self.connect_timeout,
                'allow_agent': True,
                'look_for_keys': True,
            }
            if self.username:
                connect_kwargs['username'] = self.username

            if self.key_file:
                key_path = Path(self.key_file).expanduser()
                if not key_path.exists():
                    raise RemoteError(f"Private key not found: {self.key_file}")
                connect_kwargs['key_filename'] = str(key_path)

            self.ssh_client.connect(**connect_kwargs)

        except RemoteError:
            self.close()
            raise
        except paramiko.AuthenticationException as e:
            self.close()
            raise RemoteError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise RemoteError(f"SSH connection failed: {e}")
        except OSError as e:
            self.close()
            raise RemoteError(f"Failed to connect to {self.hostname}: {e}")

    def check_handshake(self):
        """
        Open and immediately close an authenticated session.

        Raises:
            RemoteError: If the handshake fails
        """
        try:
            self.connect()
        finally:
            self.close()

    def _sftp(self):
        if self.ssh_client is None:
            self.connect()
        if self.sftp_client is None:
            self.sftp_client = self.ssh_client.open_sftp()
        return self.sftp_client

    def ensure_directory(self, remote_dir: str):
        """
        Create a remote directory and its parents (mkdir -p).

        Raises:
            RemoteError: If the directory cannot be created
        """
        if self.ssh_client is None:
            self.connect()

        try:
            _, stdout, stderr = self.ssh_client.exec_command(f"mkdir -p {shlex.quote(remote_dir)}")
            exit_status = stdout.channel.recv_exit_status()
            message = stderr.read().decode(errors='replace').strip() if exit_status != 0 else ''
        except (paramiko.SSHException, OSError) as e:
            raise RemoteError(f"Failed to create remote directory {remote_dir}: {e}")

        if exit_status != 0:
            raise RemoteError(f"Failed to create remote directory {remote_dir}: {message or exit_status}")

    def upload(self, local_path: str, remote_dir: str) -> str:
        """
        Copy a local file into a remote directory.

        Args:
            local_path: Local file to copy
            remote_dir: Existing remote directory

        Returns:
            Remote path of the uploaded file

        Raises:
            RemoteError: If the upload fails
        """
        if not os.path.exists(local_path):
            raise RemoteError(f"Local file not found: {local_path}")

        remote_path = posixpath.join(remote_dir, os.path.basename(local_path))
        try:
            self._sftp().put(local_path, remote_path)
        except RemoteError:
            raise
        except (paramiko.SSHException, OSError) as e:
            raise RemoteError(f"Failed to upload {local_path} to {self.hostname}:{remote_path}: {e}")

        return remote_path

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Error closing SFTP session: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Error closing SSH session: {e}")
            self.ssh_client = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False
