"""
Shared pytest fixtures for snapkeeper tests.

This module provides fixtures for:
- Configuration pointing every path into a temporary directory
- Run history database with SQLite
- Mock fixtures for the remote host (paramiko SSH/SFTP)
- Git repositories created with the git executable
- Temporary file fixtures
"""

import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from snapkeeper.config import BackupConfig
from snapkeeper.models import init_database
from snapkeeper.backup.runlog import RunLog


def git(*args, cwd=None):
    """Run a git command for test setup with a fixed identity."""
    env = os.environ.copy()
    env.update({
        'GIT_AUTHOR_NAME': 'Test',
        'GIT_AUTHOR_EMAIL': 'test@example.com',
        'GIT_COMMITTER_NAME': 'Test',
        'GIT_COMMITTER_EMAIL': 'test@example.com',
    })
    return subprocess.run(
        ['git'] + list(args),
        cwd=cwd,
        env=env,
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True
    ).stdout


def make_git_repo(path: Path, filename: str = 'README.md', content: str = 'hello\n') -> Path:
    """Create a git repository at path with one commit."""
    path.mkdir(parents=True, exist_ok=True)
    git('init', '-q', str(path))
    (path / filename).write_text(content)
    git('add', filename, cwd=path)
    git('commit', '-q', '-m', f'Add {filename}', cwd=path)
    return path


def commit_file(repo: Path, filename: str, content: str) -> None:
    """Write a file into repo and commit it."""
    (repo / filename).write_text(content)
    git('add', filename, cwd=repo)
    git('commit', '-q', '-m', f'Update {filename}', cwd=repo)


@pytest.fixture
def backup_config(tmp_path):
    """
    BackupConfig with every local path inside tmp_path.

    Input directories are empty; tests extend the config with
    dataclasses.replace().
    """
    base = tmp_path / 'backup'
    return BackupConfig(
        backup_root=str(base / 'snapshots'),
        log_path=str(base / 'logs'),
        archive_store=str(base / 'archives'),
        work_tmp=str(base / 'tmp'),
        runtime_lock=str(base / 'snapkeeper.lock'),
        remote_login='backups',
        remote_addr='backup.example.com',
        remote_target_dir='/home/backups/remote_backup',
        database_url=f"sqlite:///{base / 'history.db'}",
    )


@pytest.fixture
def session_factory(tmp_path):
    """Session factory for a fresh SQLite history database."""
    return init_database(f"sqlite:///{tmp_path / 'history.db'}")


@pytest.fixture
def run_log(tmp_path):
    """RunLog writing into tmp_path."""
    return RunLog(str(tmp_path / 'logs' / 'backup_snapshot_2026_10_18.log'))


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    The probe command exits 0 and remote paths do not exist until created.
    """
    with patch('snapkeeper.backup.remote.SSHClient') as mock_ssh_class:
        mock_ssh = MagicMock()
        mock_ssh_class.return_value = mock_ssh

        # Probe command succeeds
        mock_stdout = MagicMock()
        mock_stdout.channel.recv_exit_status.return_value = 0
        mock_ssh.exec_command.return_value = (MagicMock(), mock_stdout, MagicMock())

        # SFTP: nothing exists remotely
        mock_sftp = MagicMock()
        mock_sftp.stat.side_effect = FileNotFoundError()
        mock_ssh.open_sftp.return_value = mock_sftp

        mock_ssh.connect.return_value = None

        yield mock_ssh


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    - test_file.pyc (should be excluded in tests)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (source / 'test_file.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture
def sample_snapshot(tmp_path):
    """
    Create a snapshot directory tree for archive tests.
    """
    snapshot = tmp_path / 'snapshot'
    (snapshot / 'dirs' / 'data').mkdir(parents=True)
    (snapshot / 'repos').mkdir()
    (snapshot / 'dirs' / 'data' / 'file1.txt').write_text('Content 1')
    (snapshot / 'dirs' / 'data' / 'file2.txt').write_text('Content 2')
    return snapshot


@pytest.fixture
def make_repo():
    """Factory creating a git repository with one commit."""
    if shutil.which('git') is None:
        pytest.skip("git executable not available")
    return make_git_repo


@pytest.fixture
def commit():
    """Helper committing a file into a repository."""
    return commit_file


@pytest.fixture
def run_git():
    """Helper running git with a fixed identity."""
    return git
