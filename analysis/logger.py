import logging
import os
import sys

LOGGER_NAME = "bodysignal"
logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(os.getenv("BODYSIGNAL_LOG_LEVEL", "INFO").upper())

# Add a single stdout handler (avoid duplicate logs on re-import)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.propagate = False


def get_logger(name: str = "") -> logging.Logger:
    """Child logger under the shared `bodysignal` logger."""
    return logger.getChild(name) if name else logger
