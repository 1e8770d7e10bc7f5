"""Core moduly pro Whence."""

from whence.core.config import Config
from whence.core.exceptions import (
    WhenceError,
    ConfigError,
    TimelineParseError,
    AssetSourceError,
    JobNotFoundError,
    JobNotResumableError,
)
from whence.core import logger

__all__ = [
    "Config",
    "WhenceError",
    "ConfigError",
    "TimelineParseError",
    "AssetSourceError",
    "JobNotFoundError",
    "JobNotResumableError",
    "logger",
]
