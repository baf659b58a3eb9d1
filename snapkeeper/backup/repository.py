"""
Git repository discovery and mirroring.

Repositories are mirrored as working clones named ``<name>.git`` under the
snapshot's ``repos`` area. An existing mirror is only ever fast-forwarded;
diverged history is reported and the mirror is left untouched.
"""

import os
import shutil
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .naming import mirror_name
from .runlog import RunLog


logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when cloning or updating a repository mirror fails."""

    def __init__(self, message: str, output: str = ''):
        super().__init__(message)
        self.output = output


@dataclass
class MirrorResult:
    source: str
    mirror_path: str
    action: str  # cloned, updated
    output: str = ''


def is_git_repo(path) -> bool:
    """True when path holds a ``.git`` directory or a ``.git`` file (worktree/submodule)."""
    marker = Path(path) / '.git'
    return marker.is_dir() or marker.is_file()


def discover_repositories(root: str) -> List[Path]:
    """
    Find git repositories among the immediate subdirectories of root.

    Nested repositories deeper than one level are not inspected.

    Returns:
        Sorted list of repository paths
    """
    try:
        children = sorted(Path(root).iterdir())
    except OSError as e:
        logger.warning(f"Cannot list {root} for repositories: {e}")
        return []

    return [child for child in children if child.is_dir() and is_git_repo(child)]


def run_git_command(args: List[str], cwd: Optional[str] = None) -> str:
    """
    Run a git command non-interactively.

    Returns:
        Combined stdout/stderr output

    Raises:
        RepositoryError: If git is missing or exits non-zero
    """
    env = os.environ.copy()
    env['GIT_TERMINAL_PROMPT'] = '0'

    try:
        process = subprocess.run(
            ['git'] + args,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True
        )
    except FileNotFoundError:
        raise RepositoryError("git executable not found")

    if process.returncode != 0:
        raise RepositoryError(
            f"git {' '.join(args)} exited with status {process.returncode}",
            output=process.stdout
        )

    return process.stdout


class RepositoryMirror:
    """Clones or fast-forwards repositories into the snapshot."""

    def __init__(self, repos_area: str, run_log: Optional[RunLog] = None):
        """
        Initialize repository mirror.

        Args:
            repos_area: Snapshot repositories area
            run_log: Run log that receives git's output
        """
        self.repos_area = Path(repos_area)
        self.run_log = run_log

    def mirror_path(self, source: str) -> Path:
        return self.repos_area / mirror_name(source)

    def mirror(self, source: str) -> MirrorResult:
        """
        Clone source, or fast-forward the existing mirror.

        Args:
            source: Path of the source repository

        Returns:
            MirrorResult with action 'cloned' or 'updated'

        Raises:
            RepositoryError: If the clone fails or the mirror cannot be fast-forwarded
        """
        dest = self.mirror_path(source)

        if is_git_repo(dest):
            output = self._run(['-C', str(dest), 'pull', '--ff-only'])
            return MirrorResult(source=str(source), mirror_path=str(dest), action='updated', output=output)

        if dest.exists():
            # Leftover from an interrupted clone
            shutil.rmtree(dest)

        try:
            output = self._run(['clone', str(source), str(dest)])
        except RepositoryError:
            if dest.exists():
                shutil.rmtree(dest, ignore_errors=True)
            raise
        return MirrorResult(source=str(source), mirror_path=str(dest), action='cloned', output=output)

    def _run(self, args: List[str]) -> str:
        try:
            output = run_git_command(args)
        except RepositoryError as e:
            if self.run_log:
                self.run_log.append_output(e.output)
            raise
        if self.run_log:
            self.run_log.append_output(output)
        return output
