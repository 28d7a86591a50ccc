"""Error codes and the exception raised throughout the package."""

from __future__ import annotations

import os
from enum import IntEnum


class ErrorCode(IntEnum):
    """Package error codes; values below 1024 are reserved for system errno."""

    OK = 0
    EEOF = 1024
    ERROR = 1025
    NO_PERMISSION = 1026
    NOT_EXIST = 1027
    ENCRYPTED = 1028
    FORMAT_ERROR = 1029
    PASSWORD_ERROR = 1030
    EMPTY_FILENAME = 1031
    EMPTY_FILEPATH = 1032
    UNABLE_HASH = 1033


def error_message(code: int) -> str:
    """Return a human readable message for a package or system error code."""
    code = int(code)
    if code < ErrorCode.EEOF:
        return os.strerror(code)
    if code == ErrorCode.EEOF:
        return "Read eof"
    if code == ErrorCode.ERROR:
        return "error"
    return "unknown error"


class BackupError(Exception):
    """An error carrying a numeric code and a message."""

    def __init__(self, code: int, msg: str) -> None:
        super().__init__(msg)
        self.code = int(code)
        self.msg = msg

    def __str__(self) -> str:
        return self.msg

    def __repr__(self) -> str:
        return f"BackupError(code={self.code!r}, msg={self.msg!r})"