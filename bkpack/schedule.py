"""Timed re-backup tasks and a background scheduler that runs them."""

from __future__ import annotations

import copy
import heapq
import itertools
import logging
import math
import struct
import threading
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Callable

from .config import Config
from .errors import BackupError, ErrorCode
from .file_meta import dump_string, load_string

_log = logging.getLogger(__name__)

_TIMEVAL = struct.Struct("<qq")
_UNIT = struct.Struct("<B")
_INTERVAL = struct.Struct("<i")
_FLAG = struct.Struct("<B")
_COUNT = struct.Struct("<Q")

STATUS_OK = "正常"
STATUS_CANCELLED = "已取消"


class TimeUnit(IntEnum):
    """Unit of a task's repeat interval; NONE means not timed."""

    NONE = 0
    SECOND = 1
    MINUTE = 2
    HOUR = 3
    DAY = 4
    WEEK = 5
    MONTH = 6
    YEAR = 7
    MILISECOND = 8


# Lengths in seconds; a month is a twelfth of the average Gregorian year.
_UNIT_SECONDS = {
    TimeUnit.MILISECOND: 0.001,
    TimeUnit.SECOND: 1,
    TimeUnit.MINUTE: 60,
    TimeUnit.HOUR: 3600,
    TimeUnit.DAY: 86400,
    TimeUnit.WEEK: 604800,
    TimeUnit.MONTH: 2629746,
    TimeUnit.YEAR: 31556952,
}

_UNIT_TAGS = {
    TimeUnit.NONE: "未定时",
    TimeUnit.SECOND: "秒",
    TimeUnit.MINUTE: "分钟",
    TimeUnit.HOUR: "小时",
    TimeUnit.DAY: "天",
    TimeUnit.WEEK: "周",
    TimeUnit.MONTH: "月",
    TimeUnit.YEAR: "年",
    TimeUnit.MILISECOND: "微秒",
}


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise BackupError(ErrorCode.EEOF, "file eof")
    return data


def user_time_to_timepoint(interval: int, unit: TimeUnit) -> float:
    """Return the epoch time that lies interval units from now."""
    try:
        seconds = _UNIT_SECONDS.get(TimeUnit(unit), 0)
    except ValueError:
        seconds = 0
    return time.time() + interval * seconds


def time_unit_tag(unit: TimeUnit) -> str:
    """Return the display label of a time unit."""
    try:
        return _UNIT_TAGS[TimeUnit(unit)]
    except (ValueError, KeyError):
        return "错误"


def _to_timeval(timepoint: float) -> tuple[int, int]:
    millis = math.floor(timepoint * 1000)
    seconds = math.floor(timepoint)
    return seconds, (millis - seconds * 1000) * 1000


def _from_timeval(seconds: int, micros: int) -> float:
    return seconds + micros / 1_000_000


@dataclass
class BackupTask:
    """A backup file to be re-packed every interval units."""

    backup_path: str = ""
    interval: int = 0
    unit: TimeUnit = TimeUnit.NONE
    is_encrypted: bool = False
    password: str = ""
    next_backup_time: float = 0.0
    status: str = STATUS_OK
    run: bool = True

    def dump(self, stream: BinaryIO) -> int:
        """Write the task; return the number of bytes written."""
        written = dump_string(self.backup_path, stream)
        stream.write(_TIMEVAL.pack(*_to_timeval(self.next_backup_time)))
        stream.write(_UNIT.pack(int(self.unit)))
        stream.write(_INTERVAL.pack(self.interval))
        stream.write(_FLAG.pack(int(bool(self.is_encrypted))))
        written += _TIMEVAL.size + _UNIT.size + _INTERVAL.size + _FLAG.size
        written += dump_string(self.password, stream)
        stream.write(_FLAG.pack(int(bool(self.run))))
        written += _FLAG.size
        written += dump_string(self.status, stream)
        return written

    @classmethod
    def load(cls, stream: BinaryIO) -> BackupTask:
        """Read a task written by :meth:`dump`."""
        backup_path = load_string(stream)
        seconds, micros = _TIMEVAL.unpack(_read_exact(stream, _TIMEVAL.size))
        (unit_value,) = _UNIT.unpack(_read_exact(stream, _UNIT.size))
        try:
            unit = TimeUnit(unit_value)
        except ValueError:
            raise BackupError(
                ErrorCode.FORMAT_ERROR, f"未知的时间单位 {unit_value}"
            ) from None
        (interval,) = _INTERVAL.unpack(_read_exact(stream, _INTERVAL.size))
        (encrypted,) = _FLAG.unpack(_read_exact(stream, _FLAG.size))
        password = load_string(stream)
        (run,) = _FLAG.unpack(_read_exact(stream, _FLAG.size))
        status = load_string(stream)
        return cls(
            backup_path=backup_path,
            interval=interval,
            unit=unit,
            is_encrypted=encrypted == 1,
            password=password,
            next_backup_time=_from_timeval(seconds, micros),
            status=status,
            run=run == 1,
        )


Runner = Callable[[BackupTask], None]


class TaskScheduler:
    """Keeps the task list, persists it and runs due tasks on a worker thread.

    runner is called with each due task and does the actual re-backup. Tasks
    are loaded from task_path (by default the configured "task_path") and
    written back there by :meth:`close`.
    """

    def __init__(self, runner: Runner, task_path: str | None = None) -> None:
        self._runner = runner
        self.task_path = (
            task_path if task_path is not None
            else Config.get_instance().get("task_path")
        )
        self._tasks: list[BackupTask] = []
        self._queue: list[tuple[float, int, BackupTask]] = []
        self._order = itertools.count()
        self._cond = threading.Condition()
        self._worker: threading.Thread | None = None
        self._shutdown = False
        self._closed = False
        try:
            with open(self.task_path, "rb") as stream:
                self._load(stream)
        except FileNotFoundError:
            pass

    def __enter__(self) -> TaskScheduler:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add_task(self, task: BackupTask) -> None:
        """Register a task and schedule its first run one interval from now."""
        with self._cond:
            self._tasks.append(task)
            task.next_backup_time = user_time_to_timepoint(task.interval, task.unit)
            self._push(task)
            self._cond.notify_all()

    def start(self) -> bool:
        """Start the worker thread; False if it is already running."""
        with self._cond:
            if self._worker is not None or self._shutdown:
                return False
            self._worker = threading.Thread(
                target=self._run, name="backup-scheduler", daemon=True
            )
        self._worker.start()
        return True

    def task_list(self) -> list[BackupTask]:
        """Return copies of the registered tasks."""
        with self._cond:
            return [copy.copy(task) for task in self._tasks]

    def delete_task(self, backup_path: str) -> None:
        """Cancel and remove the first task for backup_path."""
        with self._cond:
            for task in self._tasks:
                if task.backup_path == backup_path:
                    task.run = False
                    task.status = STATUS_CANCELLED
                    self._tasks.remove(task)
                    break

    def delete_all(self) -> None:
        """Cancel and remove every task."""
        with self._cond:
            for task in self._tasks:
                task.run = False
            self._queue.clear()
            self._tasks.clear()
            self._cond.notify_all()

    def close(self) -> None:
        """Save the task list, then stop and join the worker thread."""
        if self._closed:
            return
        self._closed = True
        try:
            with open(self.task_path, "wb") as stream:
                with self._cond:
                    self._dump(stream)
        except OSError:
            _log.error("can't open file %s", self.task_path)
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join()

    def _push(self, task: BackupTask) -> None:
        heapq.heappush(self._queue, (task.next_backup_time, next(self._order), task))

    def _dump(self, stream: BinaryIO) -> int:
        stream.write(_COUNT.pack(len(self._tasks)))
        return _COUNT.size + sum(task.dump(stream) for task in self._tasks)

    def _load(self, stream: BinaryIO) -> int:
        (count,) = _COUNT.unpack(_read_exact(stream, _COUNT.size))
        read = _COUNT.size
        for _ in range(count):
            start = stream.tell()
            task = BackupTask.load(stream)
            read += stream.tell() - start
            if task.run:
                self.add_task(task)
        return read

    def _next_due(self) -> list[BackupTask] | None:
        """Wait until tasks are due and return them; None on shutdown."""
        with self._cond:
            while True:
                if self._shutdown:
                    return None
                if not self._queue:
                    self._cond.wait()
                    continue
                now = time.time()
                wait_for = self._queue[0][0] - now
                if wait_for > 0:
                    self._cond.wait(wait_for)
                    continue
                due = []
                while self._queue and self._queue[0][0] <= now:
                    _, _, task = heapq.heappop(self._queue)
                    if task.run:
                        due.append(task)
                if due:
                    return due

    def _run(self) -> None:
        while (due := self._next_due()) is not None:
            for task in due:
                try:
                    self._runner(task)
                except (BackupError, OSError) as exc:
                    task.status = str(exc)
                    task.run = False
                task.next_backup_time = user_time_to_timepoint(
                    task.interval, task.unit
                )
            with self._cond:
                for task in due:
                    if task.run:
                        self._push(task)