"""Logger facade.

Module code uses ``logging.getLogger(__name__)`` directly; entrypoints call
``configure_logging`` once to install the Rich console handler and the
WARNING+ file handler.
"""

import logging

from rich.logging import RichHandler

from .constants import LOG_FILE, LOG_LEVEL_NAME

__all__ = ["get_logger", "configure_logging"]

_NOISY_LOGGERS = {
    "aiogram": logging.INFO,
    "aiogram.event": logging.INFO,
    "asyncpg": logging.WARNING,
    "alembic": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or __name__)


def configure_logging(level_name: str | None = None, log_file: str | None = LOG_FILE) -> logging.Logger:
    # Console: INFO / WARNING / ERROR (Rich)
    console_handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_level=True,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    handlers: list[logging.Handler] = [console_handler]

    # File: WARNING+ only
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        handlers.append(file_handler)

    level = getattr(logging, (level_name or LOG_LEVEL_NAME).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    return logging.getLogger("salon")
