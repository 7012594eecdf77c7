"""Logging setup shared by every transport.

Records go to stderr (stdout is reserved for output records in stdio
mode) and to ``snipexec.log`` in the state directory.
"""

from __future__ import annotations

import logging

from .config import Config


logger = logging.getLogger("snipexec")


def configure_logging(config: Config) -> logging.Logger:
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[snipexec] %(levelname)s - %(message)s"))
        logger.addHandler(handler)

        if config.log_file is not None:
            try:
                config.log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
            except OSError:
                logger.warning("Unable to open log file %s; logging to stderr only", config.log_file)
            else:
                file_handler.setFormatter(
                    logging.Formatter(
                        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S",
                    )
                )
                logger.addHandler(file_handler)

    logger.setLevel(config.log_level)
    return logger
