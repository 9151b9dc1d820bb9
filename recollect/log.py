"""
Logging setup shared by every recollect module.

Each module asks for its own named logger ("recollect.orchestrator",
"recollect.coordinator", ...) and gets a stderr handler the first time.
Stdout stays clean for hosts that speak a protocol over it.
"""

import logging
import os
import sys


def get_logger(name: str) -> logging.Logger:
    """Return the 'recollect.<name>' logger, attaching a stderr handler once."""
    logger = logging.getLogger(f"recollect.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        level = os.environ.get("RECOLLECT_LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
    return logger
