"""Process wide configuration read from config.json."""

from __future__ import annotations

import json
import threading

from .errors import BackupError, ErrorCode
from .filesys import Permission, access

_KEYS = ("task_path", "temp_path")


class Config:
    """Configuration values; one shared instance via :meth:`get_instance`."""

    _instance: Config | None = None
    _lock = threading.Lock()

    def __init__(self, path: str = "config.json") -> None:
        code = access(path, Permission.READ)
        if code == ErrorCode.NOT_EXIST:
            raise BackupError(code, "配置文件config.json不存在")
        if code == ErrorCode.NO_PERMISSION:
            raise BackupError(code, "无法访问配置文件config.json")
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise BackupError(ErrorCode.FORMAT_ERROR, "配置文件格式错误") from exc
        except OSError as exc:
            raise BackupError(ErrorCode.ERROR, "无法访问配置文件config.json") from exc
        if not isinstance(data, dict):
            raise BackupError(ErrorCode.FORMAT_ERROR, "配置文件格式错误")
        self._data: dict[str, str] = {}
        for key in _KEYS:
            value = data.get(key)
            if not isinstance(value, str):
                raise BackupError(ErrorCode.FORMAT_ERROR, f"配置项{key}缺失或格式错误")
            self._data[key] = value

    @classmethod
    def get_instance(cls) -> Config:
        """Return the shared instance, loading it on first use."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def destroy_instance(cls) -> None:
        """Drop the shared instance so the next call reloads it."""
        with cls._lock:
            cls._instance = None

    def get(self, key: str) -> str:
        """Return a configuration value."""
        try:
            return self._data[key]
        except KeyError:
            raise BackupError(ErrorCode.ERROR, "无法找到配置项") from None