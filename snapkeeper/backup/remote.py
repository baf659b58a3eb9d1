"""
SSH access to the remote backup host.

RemoteHost handles:
- Reachability: non-interactive key authentication plus a ``true`` probe
- Transfer: mirroring a local directory's files to the remote target via SFTP
"""

import os
import stat
import posixpath
import logging
from pathlib import Path
from typing import List, Collection

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from snapkeeper.config import BackupConfig


logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Raised when the remote host is unreachable or a transfer fails."""
    pass


class RemoteHost:
    """
    Handler for the remote backup host.

    Only key-based authentication is used (explicit key file, SSH agent or
    default keys), so a missing or rejected key fails instead of prompting.
    """

    def __init__(self, config: BackupConfig):
        """
        Initialize remote host handler.

        Args:
            config: BackupConfig with remote_login, remote_addr, remote_port,
                ssh_key_path, ssh_connect_timeout and remote_target_dir
        """
        self.host = config.remote_addr
        self.port = config.remote_port
        self.username = config.remote_login
        self.private_key_path = config.ssh_key_path
        self.timeout = config.ssh_connect_timeout
        self.target_dir = config.remote_target_dir

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            RemoteError: If connection or authentication fails
        """
        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': self.timeout,
                'banner_timeout': self.timeout,
                'auth_timeout': self.timeout,
                'allow_agent': True,
                'look_for_keys': True
            }

            if self.private_key_path:
                key_path = Path(self.private_key_path).expanduser()
                if not key_path.exists():
                    raise RemoteError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = str(key_path)

            self.ssh_client.connect(**connect_kwargs)

        except RemoteError:
            self.close()
            raise
        except paramiko.AuthenticationException as e:
            self.close()
            raise RemoteError(f"SSH authentication failed for {self.username}@{self.host}: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise RemoteError(f"SSH connection failed: {e}")
        except OSError as e:
            self.close()
            raise RemoteError(f"Failed to connect to {self.host}:{self.port}: {e}")

    def check(self):
        """
        Verify the remote host is reachable and accepts our key.

        Raises:
            RemoteError: If the host is unreachable or authentication fails
        """
        self._connect()
        try:
            _, stdout, _ = self.ssh_client.exec_command('true', timeout=self.timeout)
            exit_status = stdout.channel.recv_exit_status()
            if exit_status != 0:
                raise RemoteError(f"Remote probe returned exit status {exit_status}")
        except paramiko.SSHException as e:
            raise RemoteError(f"Remote probe failed: {e}")
        finally:
            self.close()

    def upload_directory(self, local_dir: str, skip: Collection[str] = ()) -> List[str]:
        """
        Copy every file of local_dir to the remote target directory.

        Files already present remotely with the same size and mtime are left
        alone; remote files without a local counterpart are never deleted.

        Args:
            local_dir: Local directory to mirror
            skip: Relative paths to leave out

        Returns:
            Relative paths of uploaded files

        Raises:
            RemoteError: If connection or any transfer fails
        """
        self._connect()
        uploaded = []

        try:
            self.sftp_client = self.ssh_client.open_sftp()
            self._makedirs(self.target_dir)

            base = Path(local_dir)
            for local_file in sorted(base.rglob('*')):
                relative = local_file.relative_to(base).as_posix()
                if relative in skip or not local_file.is_file() or local_file.is_symlink():
                    continue

                remote_path = posixpath.join(self.target_dir, relative)
                self._makedirs(posixpath.dirname(remote_path))

                local_stat = local_file.stat()
                if self._is_current(remote_path, local_stat):
                    continue

                self.sftp_client.put(str(local_file), remote_path)
                self.sftp_client.utime(remote_path, (local_stat.st_atime, local_stat.st_mtime))
                uploaded.append(relative)
                logger.debug(f"Uploaded {relative} to {self.host}:{remote_path}")

            return uploaded

        except RemoteError:
            raise
        except (paramiko.SSHException, OSError) as e:
            raise RemoteError(f"Failed to transfer {local_dir} to {self.host}: {e}")
        finally:
            self.close()

    def _is_current(self, remote_path: str, local_stat: os.stat_result) -> bool:
        try:
            remote_stat = self.sftp_client.stat(remote_path)
        except FileNotFoundError:
            return False
        return (
            remote_stat.st_size == local_stat.st_size
            and int(remote_stat.st_mtime) == int(local_stat.st_mtime)
        )

    def _makedirs(self, remote_dir: str):
        """Create remote_dir and its parents (mkdir -p)."""
        if not remote_dir or remote_dir == '/':
            return
        try:
            attrs = self.sftp_client.stat(remote_dir)
        except FileNotFoundError:
            self._makedirs(posixpath.dirname(remote_dir.rstrip('/')))
            self.sftp_client.mkdir(remote_dir)
            return
        if not stat.S_ISDIR(attrs.st_mode):
            raise RemoteError(f"Remote path is not a directory: {remote_dir}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Ignoring SFTP close failure: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Ignoring SSH close failure: {e}")
            self.ssh_client = None
