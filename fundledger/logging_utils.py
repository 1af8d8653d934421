# fundledger/logging_utils.py
"""
Logging helpers. Modules call ``get_logger(__name__)``; the ``fundledger``
root logger is configured once, with its level taken from FUNDLEDGER_LOG_LEVEL.
"""

import logging
import os
from typing import Optional

_CONFIGURED = False


def configure_logging(level: Optional[str] = None) -> None:
    global _CONFIGURED
    if _CONFIGURED and level is None:
        return

    root = logging.getLogger("fundledger")
    if not _CONFIGURED:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(handler)
        _CONFIGURED = True

    level_name = (level or os.environ.get("FUNDLEDGER_LOG_LEVEL", "WARNING")).upper()
    root.setLevel(getattr(logging, level_name, logging.WARNING))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "fundledger")
