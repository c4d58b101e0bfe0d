"""
Logging setup for worker and CLI processes.

Console plus an optional UTF-8 file handler, with an optional worker id tag
so interleaved logs from a worker pool can be told apart.
"""

import logging
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    worker_id: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        log_file: Path to log file. If None, only console output is used.
        level: Logging level (default: logging.INFO).
        worker_id: Tag added to every line when running as a worker.

    Returns:
        Configured root logger.
    """
    log_format = DEFAULT_FORMAT
    if worker_id:
        log_format = f"%(asctime)s [%(levelname)s] [{worker_id}] %(name)s: %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # append: maintenance rotates these files
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format))
    handlers.append(console_handler)

    logging.basicConfig(level=level, format=log_format, handlers=handlers, force=True)

    for logger_name in ("urllib3", "PIL", "requests"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    return logging.getLogger()
