import logging
import sys

from .settings import settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"

logger = logging.getLogger("cartsaver")
logger.setLevel(settings.log_level.upper())

if not logger.handlers:
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S"))
    logger.addHandler(stdout_handler)


def get_logger(component: str) -> logging.Logger:
    """Child of the engine logger, e.g. ``cartsaver.bridge``."""
    return logger.getChild(component)


__all__ = ["logger", "get_logger"]
