"""Logging setup driven by a bitmask debug flag"""

import logging
import logging.handlers
import sys
from typing import Optional

DEBUG_ERROR = 1
DEBUG_INFO = 2
DEBUG_DEBUG = 4
DEBUG_TRACE = 8
DEBUG_SCREEN = 64
DEBUG_FILE = 128

DEFAULT_DEBUG_FLAG = DEBUG_FILE | DEBUG_INFO | DEBUG_ERROR
DEFAULT_LOG_FILE = "client.log"

# roughly 100000 lines of 100 bytes, 10 rotated files
LOG_MAX_BYTES = 100000 * 100
LOG_BACKUP_COUNT = 10

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(threadName)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%m/%d %H:%M:%S"


def level_for_flag(debug_flag: int) -> int:
    """Lowest level enabled by the flag's level bits"""
    if debug_flag & (DEBUG_DEBUG | DEBUG_TRACE):
        return logging.DEBUG
    if debug_flag & DEBUG_INFO:
        return logging.INFO
    if debug_flag & DEBUG_ERROR:
        return logging.ERROR
    return logging.CRITICAL


def setup_logging(debug_flag: int = DEFAULT_DEBUG_FLAG,
                  log_file: Optional[str] = DEFAULT_LOG_FILE,
                  logger_name: str = "rpcload") -> logging.Logger:
    """
    Configure the package logger.

    The screen bit adds a stderr handler, the file bit a rotating file
    handler on log_file. Previously installed handlers are replaced so the
    call can be repeated.
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level_for_flag(debug_flag))
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    if debug_flag & DEBUG_SCREEN:
        screen = logging.StreamHandler(sys.stderr)
        screen.setFormatter(formatter)
        logger.addHandler(screen)

    if debug_flag & DEBUG_FILE and log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
