# edgeguard/core/logging.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import ConfigManager, get_config_manager

DEFAULT_LOG_FORMAT = "%(levelname)s - %(asctime)s - %(name)s - %(module)s:%(lineno)d - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(config: Optional[ConfigManager] = None) -> logging.Logger:
    """
    Configures the "edgeguard" logger hierarchy from the `server.log_level`
    and `logging.*` configuration keys.
    """
    config = config or get_config_manager()
    log_level_str = str(config.get_config("server.log_level", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_format = config.get_config("logging.format", DEFAULT_LOG_FORMAT)
    date_format = config.get_config("logging.date_format", DEFAULT_DATE_FORMAT)

    root_logger = logging.getLogger("edgeguard") # Base logger for the app
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Console Handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    root_logger.addHandler(console_handler)

    # File Handler (optional, set logging.file.path to null to disable)
    log_file_path_str = config.get_config("logging.file.path", None)
    if log_file_path_str:
        log_file_path = Path(log_file_path_str)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        max_bytes = config.get_config("logging.file.max_bytes", 1024 * 1024 * 5) # 5MB
        backup_count = config.get_config("logging.file.backup_count", 5)

        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        root_logger.addHandler(file_handler)
        root_logger.info(f"File logging configured at: {log_file_path}")

    logging.getLogger("uvicorn.error").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if log_level > logging.INFO else log_level)
    # urllib3 logs every connection of the refresh thread at DEBUG
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))

    root_logger.info(f"Logging setup complete. Application log level set to {log_level_str}.")
    return root_logger
