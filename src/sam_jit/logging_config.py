# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
import logging
import os

LOG_LEVEL_ENV = "SAM_JIT_LOG_LEVEL"
LOG_FILE_ENV = "SAM_JIT_LOG_FILE"


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger with the given name.
    Logs INFO (or $SAM_JIT_LOG_LEVEL) to console, and DEBUG to the file named
    by $SAM_JIT_LOG_FILE when it is set.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:  # avoid duplicate handlers on reload
        logger.setLevel(logging.DEBUG)

        # --- Console handler ---
        ch = logging.StreamHandler()
        ch.setLevel(os.environ.get(LOG_LEVEL_ENV, "INFO").upper())
        console_fmt = logging.Formatter("%(levelname)s: %(name)s: %(message)s")
        ch.setFormatter(console_fmt)
        logger.addHandler(ch)

        # --- File handler ---
        log_file = os.environ.get(LOG_FILE_ENV)
        if log_file:
            fh = logging.FileHandler(log_file)
            fh.setLevel(logging.DEBUG)
            file_fmt = logging.Formatter(
                "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
            )
            fh.setFormatter(file_fmt)
            logger.addHandler(fh)

    return logger
