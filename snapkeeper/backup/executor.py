"""
Backup executor - orchestrates the complete backup run.

Workflow:
1. Log run start
2. Acquire the run lock (exit quietly if another run holds it)
3. Check free disk space on the backup root
4. Prepare the snapshot structure
5. Check SSH connectivity to the remote host
6. Sync input directories and mirror git repositories into the snapshot
7. Archive old snapshots (and prune expired archives)
8. Archive the current snapshot (per archive_current policy)
9. Push the archive store to the remote host when due or forced
10. Log run end

Steps 2, 3 and 5 are gates: a failure aborts the run. All other failures are
logged and the run moves on to the next unit of work.
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from snapkeeper.config import BackupConfig
from snapkeeper.models import RunRecord, init_database
from .diskspace import check_disk_space, DiskSpaceError
from .dirsync import DirectorySynchronizer, SyncResult, SyncError
from .lock import RunLock, LockHeldError
from .push import RemotePusher, PushResult
from .remote import RemoteHost, RemoteError
from .repository import RepositoryMirror, MirrorResult, RepositoryError, discover_repositories, is_git_repo
from .retention import ArchiveRotator, RotationResult
from .runlog import RunLog
from .snapshot import Run, SnapshotLayout, prepare_snapshot, DEFAULT_BACKUP_TYPE
from .storage import ArchiveStore, StorageError
from .compression import CompressionError, get_archive_size


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_STEP_ERRORS = 3


@dataclass
class RunReport:
    """Outcome of one run."""

    run_name: str
    status: str = 'running'  # running, success, partial, failed, locked
    exit_code: int = EXIT_OK
    fatal_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    synced: List[SyncResult] = field(default_factory=list)
    mirrored: List[MirrorResult] = field(default_factory=list)
    rotation: Optional[RotationResult] = None
    current_archive: Optional[str] = None
    push: Optional[PushResult] = None


class BackupExecutor:
    """
    Orchestrates one backup run.
    """

    def __init__(self, config: BackupConfig, backup_type: str = DEFAULT_BACKUP_TYPE, force: bool = False,
                 now: Optional[datetime] = None, session_factory=None):
        """
        Initialize backup executor.

        Args:
            config: Loaded configuration
            backup_type: One of full, incr, snapshot
            force: Push regardless of interval and archive the current snapshot under the 'forced' policy
            now: Run start time (defaults to the current time)
            session_factory: SQLAlchemy session factory for run history (created from config if omitted)

        Raises:
            ValueError: If backup_type is invalid
        """
        self.config = config
        self.run = Run.create(backup_type, force, now)
        self.report = RunReport(run_name=self.run.name)
        self.run_log = RunLog(os.path.join(config.log_path, f"{self.run.name}.log"))
        self.lock = RunLock(config.runtime_lock, config.lock_lease_hours)
        self.session_factory = session_factory
        self.history_record_id = None
        self.layout: Optional[SnapshotLayout] = None
        self.storage: Optional[ArchiveStore] = None
        self.mirror_sources = {}

    def execute(self) -> RunReport:
        """
        Execute the backup run.

        Returns:
            RunReport with the run's outcome and exit code
        """
        self.run_log.step(f"BACKUP START ({self.run.backup_type})")
        self.run_log.step("Acquiring run lock")

        try:
            self.lock.acquire()
        except LockHeldError as e:
            self.run_log.error(str(e))
            self.report.status = 'locked'
            self.report.exit_code = EXIT_OK
            self.report.errors = list(self.run_log.errors)
            return self.report
        except OSError as e:
            self.run_log.error(f"Cannot create lock file {self.config.runtime_lock}: {e}")
            self.report.status = 'failed'
            self.report.fatal_error = str(e)
            self.report.exit_code = EXIT_FATAL
            self.report.errors = list(self.run_log.errors)
            return self.report

        try:
            self._start_history()
            self._execute_workflow()
            self._finish()

        except (DiskSpaceError, RemoteError, StorageError, OSError) as e:
            self.run_log.error(str(e))
            self.report.status = 'failed'
            self.report.fatal_error = str(e)
            self.report.exit_code = EXIT_FATAL

        finally:
            if self.report.status == 'running':
                # Interrupted (KeyboardInterrupt, SystemExit)
                self.report.status = 'failed'
                self.report.fatal_error = 'Run interrupted'
                self.report.exit_code = EXIT_FATAL
            self.report.errors = list(self.run_log.errors)
            self._finish_history()
            self.lock.release()

        return self.report

    def _execute_workflow(self):
        """Execute the run steps in order."""
        config = self.config

        # Step 3: disk space
        self.run_log.step(f"Checking free disk space on {config.backup_root}")
        Path(config.backup_root).mkdir(parents=True, exist_ok=True)
        free_gb = check_disk_space(config.backup_root, config.required_free_gb)
        self.run_log.info(f"{free_gb}G free on {config.backup_root}")

        # Step 4: snapshot structure
        self.run_log.step("Preparing snapshot structure")
        self.layout = prepare_snapshot(config, self.run)
        self.storage = ArchiveStore(config.archive_store)

        # Step 5: remote reachability
        self.run_log.step("Checking SSH connectivity to remote host")
        remote = RemoteHost(config)
        try:
            remote.check()
        except RemoteError as e:
            raise RemoteError(f"SSH unreachable or authentication failed: {e}")

        # Step 6: inputs
        self.run_log.step("Processing input directories and repositories")
        self._process_inputs()

        # Step 7: rotation
        self.run_log.step("Archiving old backups")
        rotator = ArchiveRotator(config, self.storage, self.run_log)
        rotation = rotator.rotate_old(self.run.name)
        pruned = rotator.prune_archives(self.run.started_at)
        rotation.pruned.extend(pruned.pruned)
        rotation.errors.extend(pruned.errors)
        self.report.rotation = rotation

        # Step 8: current snapshot
        self._archive_current(rotator)

        # Step 9: remote push
        self._push(RemotePusher(config, self.storage, remote))

    def _process_inputs(self):
        synchronizer = DirectorySynchronizer(str(self.layout.dirs), self.config.exclude_patterns)
        mirror = RepositoryMirror(str(self.layout.repos), self.run_log)

        for root in self.config.input_dirs:
            if not os.path.isdir(root) or not os.access(root, os.R_OK | os.X_OK):
                self.run_log.error(f"No access (missing execute permission): {root}")
                continue

            self.run_log.info(f"Processing root directory: {root}")
            self._sync_directory(synchronizer, root)

            for repo in discover_repositories(root):
                self._mirror_repository(mirror, str(repo))

        for repo in self.config.repositories:
            if not os.path.isdir(repo):
                self.run_log.error(f"Repository not found: {repo}")
                continue
            self._mirror_repository(mirror, repo)

    def _sync_directory(self, synchronizer: DirectorySynchronizer, root: str):
        self.run_log.info(f"Syncing directory {root}")
        try:
            result = synchronizer.sync(root)
        except SyncError as e:
            self.run_log.error(f"Dir copy failed: {root} ({e})")
            return

        self.report.synced.append(result)
        self.run_log.info(f"Synced {root}: {result.summary()}")
        if result.errors:
            self.run_log.error(f"Dir copy warnings: {root} ({len(result.errors)} entries failed)")
            for error in result.errors:
                logger.warning(f"{root}: {error}")

    def _mirror_repository(self, mirror: RepositoryMirror, repo: str):
        name = mirror.mirror_path(repo).name
        source = os.path.abspath(repo)

        # Mirror names come from basenames only
        claimed_by = self.mirror_sources.get(name)
        if claimed_by == source:
            return
        if claimed_by is not None:
            self.run_log.error(f"Repository name collision: {repo} and {claimed_by} both map to {name}")
            return
        self.mirror_sources[name] = source

        updating = is_git_repo(mirror.mirror_path(repo))

        if updating:
            self.run_log.info(f"Updating git repository {name}")
        else:
            self.run_log.info(f"Cloning git repository {name}")

        try:
            self.report.mirrored.append(mirror.mirror(repo))
        except (RepositoryError, OSError) as e:
            action = 'pull' if updating else 'clone'
            self.run_log.error(f"git {action} failed: {name} ({e})")

    def _archive_current(self, rotator: ArchiveRotator):
        policy = self.config.archive_current
        if policy == 'always' or (policy == 'forced' and self.run.force):
            self.run_log.step("Creating archive of current snapshot")
            try:
                self.report.current_archive = rotator.archive_current(self.layout, self.run)
                size = get_archive_size(self.report.current_archive)
                self.run_log.info(f"Stored {os.path.basename(self.report.current_archive)} ({size} bytes)")
            except (CompressionError, StorageError) as e:
                self.run_log.error(f"Snapshot archive failed: {e}")
        else:
            self.run_log.step(f"Current snapshot archive skipped (policy: {policy})")

    def _push(self, pusher: RemotePusher):
        force = self.run.force
        if not force and not pusher.is_due(self.run.started_at):
            self.run_log.step("Remote push skipped (not due)")
            self.report.push = PushResult(skipped=True)
            return

        if force:
            self.run_log.step("Force enabled: pushing immediately")
        else:
            self.run_log.step("Sending archives to remote host")

        try:
            self.report.push = pusher.push(force=force)
            self.run_log.info(
                f"Sent {len(self.report.push.uploaded)} files to {self.config.remote_destination}"
            )
        except (RemoteError, StorageError) as e:
            self.run_log.error(f"Remote transfer failed: {e}")

    def _finish(self):
        self.run_log.step("BACKUP END")

        if self.run_log.errors:
            self.report.status = 'partial'
            self.report.exit_code = EXIT_STEP_ERRORS if self.config.fail_on_step_errors else EXIT_OK
        else:
            self.report.status = 'success'
            self.report.exit_code = EXIT_OK

    def _get_session_factory(self):
        if self.session_factory is None:
            os.makedirs(self.config.log_path, exist_ok=True)
            self.session_factory = init_database(self.config.history_url)
        return self.session_factory

    def _start_history(self):
        """Create the run history record (status: running)."""
        try:
            with self._get_session_factory()() as session:
                record = RunRecord(
                    run_name=self.run.name,
                    backup_type=self.run.backup_type,
                    status='running',
                    forced=self.run.force,
                    started_at=self.run.started_at
                )
                session.add(record)
                session.commit()
                self.history_record_id = record.id
        except SQLAlchemyError as e:
            logger.error(f"Failed to record run start in history: {e}")

    def _finish_history(self):
        """Update the run history record with the final outcome."""
        if self.history_record_id is None:
            return

        try:
            with self._get_session_factory()() as session:
                record = session.get(RunRecord, self.history_record_id)
                if record is None:
                    return
                record.status = self.report.status
                record.completed_at = datetime.now()
                record.error_count = len(self.report.errors)
                record.error_message = self.report.fatal_error or (
                    self.report.errors[-1] if self.report.errors else None
                )
                record.logs = '\n'.join(self.run_log.lines)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record run result in history: {e}")


def execute_backup(config: BackupConfig, backup_type: str = DEFAULT_BACKUP_TYPE, force: bool = False) -> RunReport:
    """
    Execute one backup run.

    Args:
        config: Loaded configuration
        backup_type: One of full, incr, snapshot
        force: Force the remote push (and current archive under the 'forced' policy)

    Returns:
        RunReport with the run's outcome
    """
    executor = BackupExecutor(config, backup_type=backup_type, force=force)
    return executor.execute()
