import logging
import os
from datetime import datetime

LOGGER_NAME = "semantic_kb"


def setup_logger(log_dir: str, level: str = "INFO") -> logging.Logger:
    """Creates a file logger for the package. All verbose output goes here."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Only one file handler per process
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"kb_{timestamp}.log")

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    return logger
