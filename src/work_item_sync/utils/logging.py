"""Logging configuration for work item synchronizer."""

import logging
from datetime import datetime, timezone
from pathlib import Path


def setup_logging(log_level: int = logging.INFO, config_dir: Path | None = None) -> None:
    """Configure logging for the application.

    Args:
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG).
        config_dir: Directory to store log files. Defaults to ~/.work-item-sync/
    """
    if config_dir is None:
        config_dir = Path.home() / ".work-item-sync"

    config_dir.mkdir(parents=True, exist_ok=True)
    log_file = config_dir / "work-item-sync.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        "%(name)s - %(levelname)s - %(message)s",
    )
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


class ExecutionLog:
    """Structured log captured for a single sync execution.

    Entries are mirrored to the module logger and kept in memory so they can
    be persisted on the execution row when the run ends.
    """

    def __init__(self, logger: logging.Logger, execution_id: int | None = None) -> None:
        self.logger = logger
        self.execution_id = execution_id
        self.entries: list[dict] = []

    def _add(self, level: str, message: str, context: dict) -> None:
        self.entries.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": level,
                "message": message,
                **context,
            }
        )

    def info(self, message: str, **context: object) -> None:
        self._add("info", message, context)
        self.logger.info(f"[execution {self.execution_id}] {message}")

    def warning(self, message: str, **context: object) -> None:
        self._add("warning", message, context)
        self.logger.warning(f"[execution {self.execution_id}] {message}")

    def error(self, message: str, error: BaseException | None = None, **context: object) -> None:
        if error is not None:
            context["error"] = str(error)
        self._add("error", message, context)
        self.logger.error(f"[execution {self.execution_id}] {message}: {error}")
