import logging
from typing import Optional

from app.core.config import settings

_ROOT_NAME = "app"


def setup_logging() -> logging.Logger:
    """Library-friendly: do NOT touch root or add handlers.
    Ensure the 'app' logger exists, set its level, add NullHandler to avoid warnings.
    """
    logger = logging.getLogger(_ROOT_NAME)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
        logger.addHandler(logging.NullHandler())
    # Records are formatted by the root handler
    logger.propagate = True
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(_ROOT_NAME)
    if not name:
        return base
    if name == _ROOT_NAME or name.startswith(_ROOT_NAME + "."):
        return logging.getLogger(name)
    return base.getChild(name)
