"""Root-logger configuration for backtest runs: rotating file log plus stdout."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from .errors import ValidationError

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILE_NAME = 'backtest.log'
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def teardown_logging(logger: Optional[logging.Logger] = None) -> None:
    """Detach and close every handler on ``logger`` (root by default)."""
    target = logger or logging.getLogger()
    for handler in list(target.handlers):
        target.removeHandler(handler)
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            # Stream already closed underneath the handler.
            pass


def _resolve_level(log_level: str) -> int:
    name = str(log_level or '').strip().upper()
    if name not in _LEVELS:
        raise ValidationError(f"Unknown log level: {log_level}")
    return getattr(logging, name)


def _file_handler(log_file: Path, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding='utf-8',
        delay=True,
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def _console_handler(formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: str = 'INFO',
    logs_dir: Optional[Path] = None,
    console_output: bool = True,
    log_file_name: str = LOG_FILE_NAME,
) -> logging.Logger:
    """
    Configure the root logger for a backtest run.

    Args:
        log_level: Root level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory for the rotating log; defaults to ``./logs``
        console_output: Mirror INFO+ records to stdout
        log_file_name: File name inside ``logs_dir``

    Returns:
        The configured root logger. Calling again replaces earlier handlers.
    """
    level = _resolve_level(log_level)
    logs_dir = Path(logs_dir) if logs_dir is not None else Path.cwd() / 'logs'
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    teardown_logging(root)
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    log_file = logs_dir / log_file_name
    root.addHandler(_file_handler(log_file, formatter))
    if console_output:
        root.addHandler(_console_handler(formatter))

    root.info("Backtest logging at %s level", logging.getLevelName(level))
    root.debug("Log file: %s", log_file)
    return root
