# ===================================== IMPORTS ====================================== #

# Standard Library
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

# 3rd‑party (Rich)
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# ==================================== FUNCTIONS ===================================== #

LOGGER_NAME = "mangrove_16s"
# scipy/statsmodels warnings (convergence, small samples) are routed here
WARNINGS_LOGGER_NAME = "py.warnings"

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(filename)s:%(funcName)s(): %(message)s"

CONSOLE_THEME = Theme({
    "logging.time": "bold white",
    "logging.level.info": "bold white",
    "logging.level.debug": "dim cyan",
    "logging.level.warning": "bold yellow",
    "logging.level.error": "bold red",
    "logging.level.critical": "reverse bold bright_white on red",
})


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


def setup_logging(
    log_dir_path: Union[str, Path],
    log_filename: Optional[str] = None,
    max_file_size: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    capture_warnings: bool = True,
) -> logging.Logger:
    """
    Configure the ``mangrove_16s`` logger for one analysis run.

    The console shows ``console_level`` and above through Rich; a rotating
    file ``mangrove_16s_<timestamp>.log`` in ``log_dir_path`` keeps
    everything from ``file_level``. With ``capture_warnings`` Python
    warnings raised by scipy and statsmodels during the tests are logged to
    the same handlers instead of printed.

    Returns:
        The configured package logger.
    """
    log_dir_path = Path(log_dir_path)
    log_dir_path.mkdir(parents=True, exist_ok=True)
    if log_filename is None:
        log_filename = datetime.now().strftime(f"{LOGGER_NAME}_%Y-%m-%d_%H%M%S.log")
    log_file_path = log_dir_path / log_filename

    file_handler = RotatingFileHandler(
        filename=log_file_path,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    rich_handler = RichHandler(
        console=Console(theme=CONSOLE_THEME, stderr=True),
        rich_tracebacks=True,
        level=console_level,
        show_path=False,
        markup=False,
        log_time_format="[%X]",
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers: List[logging.Handler] = [file_handler, rich_handler]

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(console_level, file_level))
    logger.propagate = False
    _reset_handlers(logger)
    for handler in handlers:
        logger.addHandler(handler)

    logging.captureWarnings(capture_warnings)
    if capture_warnings:
        warnings_logger = logging.getLogger(WARNINGS_LOGGER_NAME)
        _reset_handlers(warnings_logger)
        for handler in handlers:
            warnings_logger.addHandler(handler)

    logger.info("Logging initialised → %s", log_file_path)
    return logger
