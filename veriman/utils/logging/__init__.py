"""logging package: run-level structured logging (json + sqlite)"""

from .types import LogCategory, LogEntry

from .core import RunLogger

__all__ = [
    "LogCategory",
    "LogEntry",
    "RunLogger",
]
