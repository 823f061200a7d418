# certgen/config/logger.py
import logging
from typing import Optional


def get_logger(name: str, tag: Optional[str] = None) -> logging.Logger:
    """Module logger with its own stream handler, kept out of the root logger."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        prefix = f"[{tag}] " if tag else ""
        formatter = logging.Formatter(
            f'%(asctime)s [%(levelname)s] {prefix}%(message)s', '%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False  # avoid duplicate lines via the root logger
    return logger
