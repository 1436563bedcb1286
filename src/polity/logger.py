"""Logger factory for the governance engine.

Functions:
- get_logger
- overwrite_logger_level

The level comes from the LOG_LEVEL environment variable. Console output
is coloured through coloredlogs. Setting LOG_FILE additionally writes
plain records to that path.
"""

from __future__ import annotations

import logging
import os

import coloredlogs

VALID_LVLS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_LOG_LVL_NAME = os.getenv("LOG_LEVEL", "WARNING").upper()
if _LOG_LVL_NAME not in VALID_LVLS:
    raise ValueError(f"Log level {_LOG_LVL_NAME} not in valid levels {VALID_LVLS}")
_LOG_LVL = getattr(logging, _LOG_LVL_NAME)

FORMAT = "%(asctime)s.%(msecs)03d %(name)s[%(process)d] %(levelname)-2s %(message)s"

coloredlogs.DEFAULT_LEVEL_STYLES = {
    "critical": {"color": "white", "bold": True, "background": "red"},
    "error": {"color": "red"},
    "warning": {"color": "yellow"},
    "info": {"color": "white"},
    "debug": {"color": "green"},
}
coloredlogs.DEFAULT_FIELD_STYLES = {
    "asctime": {"color": "green"},
    "levelname": {"color": "black", "bright": True},
    "name": {"color": "blue"},
}


class ColoredStreamHandler(logging.StreamHandler):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.setFormatter(coloredlogs.ColoredFormatter(FORMAT))


_ROOT_NAME = "polity"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger(_ROOT_NAME)
    root.addHandler(ColoredStreamHandler())
    log_file = os.getenv("LOG_FILE")
    if log_file:
        handler = logging.FileHandler(log_file, delay=True)
        handler.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(handler)
    root.setLevel(_LOG_LVL)
    root.propagate = False
    _configured = True


def get_logger(name: str = "") -> logging.Logger:
    """Return a logger under the package namespace."""
    _configure_root()
    if not name or name == _ROOT_NAME:
        return logging.getLogger(_ROOT_NAME)
    if not name.startswith(_ROOT_NAME + "."):
        name = f"{_ROOT_NAME}.{name}"
    return logging.getLogger(name)


def overwrite_logger_level(level: int) -> None:
    global _LOG_LVL
    _LOG_LVL = level
    logging.getLogger(_ROOT_NAME).setLevel(level)
