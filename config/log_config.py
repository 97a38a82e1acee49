import sys
import logging

from config.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def setup_logging(level: str = None) -> logging.Logger:
    """
    Attach a single stdout handler to the root logger so every module logger
    (logging.getLogger(__name__)) shares the same format.
    """
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.handlers.clear()
    root.addHandler(handler)
    return root
