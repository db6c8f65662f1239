"""
Logging helpers: a TRACE level below DEBUG and console setup.
"""

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT   = "[%(asctime)s] [%(levelname)-8s] %(name)s - %(message)s"
DATE_FORMAT  = "%H:%M:%S"
HANDLER_NAME = "tcp2tls-console"


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    Route every record at *level* or above to the console.

    Calling it again only changes the level; the console handler is
    attached once.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers:
        if handler.get_name() == HANDLER_NAME:
            handler.setLevel(level)
            return root_logger

    console_handler = logging.StreamHandler()
    console_handler.set_name(HANDLER_NAME)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        LOG_FORMAT, datefmt=DATE_FORMAT,
    ))
    root_logger.addHandler(console_handler)
    return root_logger
