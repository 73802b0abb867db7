"""Adaptor error taxonomy shared by sinks and pipes."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorLevel(StrEnum):
    """Severity of an adaptor error, lowest to highest."""

    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AdaptorError(Exception):
    """An error raised by an adaptor or reported on a pipe's error channel.

    ``path`` names the pipeline node the error came from, ``record`` carries
    the message or document involved (if any).
    """

    def __init__(
        self,
        level: ErrorLevel,
        message: str,
        *,
        path: str = "",
        record: Any = None,
    ) -> None:
        super().__init__(message)
        self.level = level
        self.message = message
        self.path = path
        self.record = record

    @property
    def fatal(self) -> bool:
        return self.level == ErrorLevel.CRITICAL

    def __str__(self) -> str:
        if self.path:
            return f"{self.level.upper()}: {self.path}: {self.message}"
        return f"{self.level.upper()}: {self.message}"
