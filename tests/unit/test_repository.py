"""
Unit tests for git repository discovery and mirroring (snapkeeper/backup/repository.py).

Mirroring tests create real repositories with the git executable and are
skipped when git is not installed.
"""

import subprocess
from unittest.mock import patch, MagicMock

import pytest

from snapkeeper.backup.repository import (
    RepositoryMirror,
    RepositoryError,
    discover_repositories,
    is_git_repo,
    run_git_command
)


class TestDiscovery:
    """Test repository detection."""

    def test_is_git_repo_directory_marker(self, tmp_path):
        (tmp_path / 'app' / '.git').mkdir(parents=True)

        assert is_git_repo(tmp_path / 'app') is True

    def test_is_git_repo_file_marker(self, tmp_path):
        """Test worktrees/submodules with a .git file are recognised."""
        (tmp_path / 'worktree').mkdir()
        (tmp_path / 'worktree' / '.git').write_text('gitdir: /elsewhere/.git/worktrees/wt\n')

        assert is_git_repo(tmp_path / 'worktree') is True

    def test_plain_directory_is_not_repo(self, tmp_path):
        (tmp_path / 'docs').mkdir()

        assert is_git_repo(tmp_path / 'docs') is False

    def test_discover_first_level_only(self, tmp_path):
        """Test nested repositories below the first level are not discovered."""
        (tmp_path / 'app' / '.git').mkdir(parents=True)
        (tmp_path / 'docs').mkdir()
        (tmp_path / 'group' / 'nested' / '.git').mkdir(parents=True)
        (tmp_path / 'notes.txt').write_text('not a directory')

        found = discover_repositories(str(tmp_path))

        assert [p.name for p in found] == ['app']

    def test_discover_sorted(self, tmp_path):
        for name in ('zeta', 'alpha', 'mid'):
            (tmp_path / name / '.git').mkdir(parents=True)

        assert [p.name for p in discover_repositories(str(tmp_path))] == ['alpha', 'mid', 'zeta']

    def test_discover_missing_root(self, tmp_path):
        assert discover_repositories(str(tmp_path / 'missing')) == []


class TestRunGitCommand:
    """Test the git subprocess wrapper."""

    @patch('snapkeeper.backup.repository.subprocess.run')
    def test_non_interactive_environment(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout='ok')

        assert run_git_command(['status']) == 'ok'

        kwargs = mock_run.call_args[1]
        assert mock_run.call_args[0][0] == ['git', 'status']
        assert kwargs['env']['GIT_TERMINAL_PROMPT'] == '0'
        assert kwargs['stdin'] == subprocess.DEVNULL

    @patch('snapkeeper.backup.repository.subprocess.run')
    def test_failure_carries_output(self, mock_run):
        mock_run.return_value = MagicMock(returncode=128, stdout='fatal: not a git repository')

        with pytest.raises(RepositoryError, match="exited with status 128") as exc_info:
            run_git_command(['pull', '--ff-only'])

        assert exc_info.value.output == 'fatal: not a git repository'

    @patch('snapkeeper.backup.repository.subprocess.run', side_effect=FileNotFoundError())
    def test_git_missing(self, mock_run):
        with pytest.raises(RepositoryError, match="git executable not found"):
            run_git_command(['status'])


class TestRepositoryMirror:
    """Test clone and fast-forward behaviour against real repositories."""

    def test_mirror_path_sanitized(self, tmp_path):
        mirror = RepositoryMirror(str(tmp_path / 'repos'))

        assert mirror.mirror_path('/data/projects/my app') == tmp_path / 'repos' / 'my_app.git'

    def test_clone_new_repository(self, tmp_path, make_repo, run_log):
        source = make_repo(tmp_path / 'src' / 'app')
        mirror = RepositoryMirror(str(tmp_path / 'repos'), run_log)

        result = mirror.mirror(str(source))

        assert result.action == 'cloned'
        assert (tmp_path / 'repos' / 'app.git' / 'README.md').read_text() == 'hello\n'
        assert is_git_repo(tmp_path / 'repos' / 'app.git')

    def test_fast_forward_update(self, tmp_path, make_repo, commit):
        source = make_repo(tmp_path / 'src' / 'app')
        mirror = RepositoryMirror(str(tmp_path / 'repos'))
        mirror.mirror(str(source))

        commit(source, 'CHANGELOG.md', 'v2\n')
        result = mirror.mirror(str(source))

        assert result.action == 'updated'
        assert (tmp_path / 'repos' / 'app.git' / 'CHANGELOG.md').read_text() == 'v2\n'

    def test_diverged_history_left_untouched(self, tmp_path, make_repo, commit, run_git):
        """Test a mirror with diverged history is not force-updated."""
        source = make_repo(tmp_path / 'src' / 'app')
        mirror = RepositoryMirror(str(tmp_path / 'repos'))
        mirror.mirror(str(source))
        mirror_dir = tmp_path / 'repos' / 'app.git'

        commit(mirror_dir, 'local.txt', 'local change\n')
        commit(source, 'upstream.txt', 'upstream change\n')
        head_before = run_git('rev-parse', 'HEAD', cwd=mirror_dir).strip()

        with pytest.raises(RepositoryError):
            mirror.mirror(str(source))

        head_after = run_git('rev-parse', 'HEAD', cwd=mirror_dir).strip()
        assert head_after == head_before
        assert (mirror_dir / 'local.txt').exists()
        assert not (mirror_dir / 'upstream.txt').exists()

    def test_clone_failure_cleans_partial_mirror(self, tmp_path, make_repo, run_log):
        (tmp_path / 'src' / 'broken').mkdir(parents=True)
        mirror = RepositoryMirror(str(tmp_path / 'repos'), run_log)

        with pytest.raises(RepositoryError):
            mirror.mirror(str(tmp_path / 'src' / 'broken'))

        assert not (tmp_path / 'repos' / 'broken.git').exists()

    def test_git_output_written_to_run_log(self, tmp_path, make_repo, run_log):
        source = make_repo(tmp_path / 'src' / 'app')
        mirror = RepositoryMirror(str(tmp_path / 'repos'), run_log)

        mirror.mirror(str(source))

        assert "Cloning into" in open(run_log.log_file).read()
