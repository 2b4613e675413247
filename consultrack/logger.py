import logging
from sys import stderr

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(funcName)s %(message)s"

_loggers: dict[str, logging.Logger] = {}


def make_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    if not logger.handlers:
        log_handler = logging.StreamHandler(stderr)
        log_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(log_handler)

    _loggers[name] = logger
    return logger


def set_log_level(level: str | int):
    """Apply `level` to every logger handed out by `make_logger`."""
    if isinstance(level, str):
        level = level.upper()
    for logger in _loggers.values():
        logger.setLevel(level)
