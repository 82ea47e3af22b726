# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from offline_sync.config import get_log_file_path, load_settings
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message):
    """Loguru sink that re-emits records through the standard logging tree."""
    record = message.record
    std_level = _LOGURU_LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_logging(settings: Optional[Dict[str, Any]] = None, *, log_to_file: bool = True) -> None:
    """Sets up all logging handlers, including Loguru integration."""
    settings = settings if settings is not None else load_settings()

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # --- Loguru: drop the default stderr sink and forward to standard logging ---
    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE")

    # --- Root logger ---
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        try:
            handler.close()
        except Exception:
            pass

    level_name = str(settings.get("general", {}).get("log_level", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_to_file:
        logging_section = settings.get("logging", {})
        try:
            log_file_path = get_log_file_path(settings)
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_level = getattr(logging, str(logging_section.get("file_log_level", "INFO")).upper(), logging.INFO)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(logging_section.get("log_max_bytes", 10485760)),
                backupCount=int(logging_section.get("log_backup_count", 5)),
                encoding="utf-8",
            )
            file_handler.setLevel(file_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            root_logger.addHandler(file_handler)
            # Let the file handler receive records the console level would otherwise filter out.
            root_logger.setLevel(min(log_level, file_level))
            logging.info(f"Logging to file '{log_file_path}' (level {logging.getLevelName(file_level)}).")
        except (OSError, ValueError) as e:
            logging.warning(f"!!! ERROR setting up file logging: {e}")

    logging.debug("Logging setup complete.")

#
# End of Logging_Config.py
########################################################################################################################
