"""Root logger setup for the bankbridge command and library callers.

Log lines go to stderr, with an optional rotating file next to them. HTTP
client libraries are held at WARNING because their request lines carry
aggregator URLs, and those URLs embed account and requisition ids.
"""

import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

_HTTP_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")

_DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class LoggingConfig:
    """Where log records go and at which level."""

    level: str = "INFO"
    format_string: str = _DETAILED_FORMAT
    cli_format_string: str = "%(message)s"
    log_to_file: bool = False
    log_file_path: Path = Path("logs/bankbridge.log")
    max_file_size_mb: int = 50
    backup_count: int = 5
    force_reconfigure: bool = False

    @classmethod
    def from_environment(cls) -> "LoggingConfig":
        """Read ``LOG_LEVEL``, ``LOG_TO_FILE`` and the rotation variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_to_file=os.getenv("LOG_TO_FILE", "false").lower() == "true",
            log_file_path=Path(os.getenv("LOG_FILE_PATH", "logs/bankbridge.log")),
            max_file_size_mb=int(os.getenv("LOG_MAX_FILE_SIZE_MB", "50")),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
        )


def _stderr_handler(config: LoggingConfig, cli_mode: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    fmt = config.cli_format_string if cli_mode else config.format_string
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _rotating_file_handler(config: LoggingConfig) -> logging.Handler:
    config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        config.log_file_path,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
    )
    handler.setFormatter(logging.Formatter(config.format_string))
    return handler


def setup_logging(
    config: LoggingConfig | None = None,
    cli_mode: bool = False,
    verbose: bool = False,
) -> None:
    """Install bankbridge handlers on the root logger.

    Args:
        config: Handler settings. Read from the environment when omitted.
        cli_mode: Print bare messages, as the ``bankbridge`` command does.
        verbose: Log at DEBUG whatever level ``config`` asks for.
    """
    config = config or LoggingConfig.from_environment()
    level = (
        logging.DEBUG if verbose else getattr(logging, config.level, logging.INFO)
    )

    handlers = [_stderr_handler(config, cli_mode)]
    if config.log_to_file:
        handlers.append(_rotating_file_handler(config))

    logging.basicConfig(level=level, handlers=handlers, force=config.force_reconfigure)

    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
