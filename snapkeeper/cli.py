"""
Command line entry point.

    snapkeeper [--config PATH] [--force] [--type full|incr|snapshot]
    snapkeeper --daemon
    snapkeeper --history 10
"""

import sys
import signal
import argparse
import logging

from snapkeeper import configure_logging, __version__
from snapkeeper.config import Config, ConfigError, load_config
from snapkeeper.backup.executor import execute_backup, EXIT_OK, EXIT_FATAL
from snapkeeper.backup.snapshot import BACKUP_TYPES, DEFAULT_BACKUP_TYPE


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='snapkeeper',
        description="Snapshot directories and git repositories, rotate old snapshots "
                    "into archives and push the archive store to a remote host."
    )
    parser.add_argument("--config", type=str, default=None,
                        help=f"Path to the configuration YAML file (default: {Config.CONFIG_FILE})")
    parser.add_argument("--force", action="store_true",
                        help="Push to the remote host now, regardless of the push interval.")
    parser.add_argument("--type", dest="backup_type", choices=BACKUP_TYPES, default=DEFAULT_BACKUP_TYPE,
                        help="Backup type used in the snapshot name.")
    parser.add_argument("--daemon", action="store_true",
                        help="Keep running and back up on the configured cron schedule.")
    parser.add_argument("--history", type=int, metavar="N", default=None,
                        help="Show the last N runs and exit.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _handle_sigterm(signum, frame):
    # Turn termination into SystemExit so the run lock is released
    raise SystemExit(128 + signum)


def show_history(config, limit: int):
    from snapkeeper.models import init_database, recent_runs

    session_factory = init_database(config.history_url)
    records = recent_runs(session_factory, limit)

    if not records:
        print("No runs recorded")
        return

    for record in records:
        completed = record.completed_at.strftime('%Y-%m-%d %H:%M:%S') if record.completed_at else '-'
        print(
            f"{record.started_at:%Y-%m-%d %H:%M:%S}  {completed:19}  {record.status:8}  "
            f"{record.error_count:3} errors  {record.run_name}"
        )


def main(argv=None) -> int:
    """
    Parse arguments and run.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f">>! {e}", file=sys.stderr)
        return EXIT_FATAL

    configure_logging(config.log_path, debug=args.debug)

    if args.history is not None:
        show_history(config, args.history)
        return EXIT_OK

    signal.signal(signal.SIGTERM, _handle_sigterm)

    if args.daemon:
        from snapkeeper.scheduler import init_scheduler, start_scheduler

        try:
            init_scheduler(config, backup_type=args.backup_type)
        except ValueError as e:
            logger.error(f"Invalid schedule_cron {config.schedule_cron!r}: {e}")
            return EXIT_FATAL
        start_scheduler()
        return EXIT_OK

    report = execute_backup(config, backup_type=args.backup_type, force=args.force)
    return report.exit_code


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
