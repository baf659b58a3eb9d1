import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml


class ConfigError(Exception):
    """Raised when the configuration file is missing or incomplete."""
    pass


class Config:
    """Process-wide defaults"""

    CONFIG_FILE = os.environ.get('SNAPKEEPER_CONFIG') or 'config.yaml'

    # Remote
    REMOTE_PORT = 22
    SSH_CONNECT_TIMEOUT = 10

    # Run guards
    REQUIRED_FREE_GB = 1
    LOCK_LEASE_HOURS = 24

    # Archives
    SEND_INTERVAL_DAYS = 30
    COMPRESSION_FORMAT = 'tar.gz'
    ARCHIVE_CURRENT = 'always'

    # Scheduler
    SCHEDULE_CRON = os.environ.get('SNAPKEEPER_SCHEDULE') or '0 2 * * *'
    SCHEDULER_TIMEZONE = 'UTC'


REQUIRED_KEYS = (
    'backup_root',
    'log_path',
    'archive_store',
    'work_tmp',
    'runtime_lock',
    'remote_login',
    'remote_addr',
    'remote_target_dir',
)

ARCHIVE_CURRENT_MODES = ('always', 'forced', 'never')

COMPRESSION_FORMATS = ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')


@dataclass(frozen=True)
class BackupConfig:
    """Immutable settings for one orchestrator process."""

    backup_root: str
    log_path: str
    archive_store: str
    work_tmp: str
    runtime_lock: str
    remote_login: str
    remote_addr: str
    remote_target_dir: str
    input_dirs: List[str] = field(default_factory=list)
    repositories: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    remote_port: int = Config.REMOTE_PORT
    ssh_key_path: Optional[str] = None
    ssh_connect_timeout: int = Config.SSH_CONNECT_TIMEOUT
    required_free_gb: int = Config.REQUIRED_FREE_GB
    lock_lease_hours: int = Config.LOCK_LEASE_HOURS
    send_interval_days: int = Config.SEND_INTERVAL_DAYS
    compression_format: str = Config.COMPRESSION_FORMAT
    archive_current: str = Config.ARCHIVE_CURRENT
    archive_retention_days: Optional[int] = None
    fail_on_step_errors: bool = False
    schedule_cron: str = Config.SCHEDULE_CRON
    database_url: Optional[str] = None

    @property
    def history_url(self) -> str:
        """SQLAlchemy URL of the run history database."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{os.path.join(self.log_path, 'history.db')}"

    @property
    def remote_destination(self) -> str:
        return f"{self.remote_login}@{self.remote_addr}:{self.remote_target_dir}"


_PATH_KEYS = ('backup_root', 'log_path', 'archive_store', 'work_tmp', 'runtime_lock', 'ssh_key_path')
_INT_KEYS = (
    'remote_port', 'ssh_connect_timeout', 'required_free_gb', 'lock_lease_hours',
    'send_interval_days', 'archive_retention_days',
)
_LIST_KEYS = ('input_dirs', 'repositories', 'exclude_patterns')


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(str(path)))


def build_config(values: Dict[str, Any]) -> BackupConfig:
    """
    Build a BackupConfig from a plain mapping.

    Args:
        values: Mapping of setting name to value (as read from YAML)

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If required keys are missing or values have the wrong type
    """
    if not isinstance(values, dict):
        raise ConfigError("Configuration must be a mapping of setting names to values")

    missing = [key for key in REQUIRED_KEYS if not values.get(key)]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    known = set(BackupConfig.__dataclass_fields__)
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(unknown)}")

    settings = {}
    for key, value in values.items():
        if value is None:
            continue
        if key in _LIST_KEYS:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list):
                raise ConfigError(f"Setting {key} must be a list")
            if key != 'exclude_patterns':
                value = [_expand(item) for item in value]
            else:
                value = [str(item) for item in value]
        elif key in _PATH_KEYS:
            value = _expand(value)
        elif key in _INT_KEYS:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Setting {key} must be an integer, got {value!r}")
        elif key == 'fail_on_step_errors':
            value = bool(value)
        settings[key] = value

    if settings.get('archive_current', Config.ARCHIVE_CURRENT) not in ARCHIVE_CURRENT_MODES:
        raise ConfigError(
            f"Invalid archive_current: {settings['archive_current']}. "
            f"Valid options: {list(ARCHIVE_CURRENT_MODES)}"
        )

    if settings.get('compression_format', Config.COMPRESSION_FORMAT) not in COMPRESSION_FORMATS:
        raise ConfigError(
            f"Invalid compression_format: {settings['compression_format']}. "
            f"Valid options: {list(COMPRESSION_FORMATS)}"
        )

    return BackupConfig(**settings)


def load_config(path: Optional[str] = None) -> BackupConfig:
    """
    Load the configuration file.

    Args:
        path: Path to YAML config file (defaults to Config.CONFIG_FILE)

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = path or Config.CONFIG_FILE

    try:
        with open(path) as f:
            values = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}")

    return build_config(values or {})
