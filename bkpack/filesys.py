"""File system helpers: path handling, file types, metadata and formatting."""

from __future__ import annotations

import errno as _errno
import grp
import logging
import os
import pwd
import shutil
import stat
import time
from enum import IntEnum, IntFlag
from typing import Any

from .errors import BackupError, ErrorCode, error_message

_log = logging.getLogger(__name__)


class FileType(IntEnum):
    """Kinds of file system entries, stored as one byte in archives."""

    REG = 0
    DIR = 1
    SOCK = 2
    CHR = 3
    FIFO = 4
    BLK = 5
    FLNK = 6
    UNKNOWN = 7
    NOTEXIST = 8


class Permission(IntFlag):
    """Access modes accepted by :func:`access`."""

    EXIST = 0
    EXECUTE = 1
    WRITE = 2
    READ = 4


_TYPE_TAGS = {
    FileType.REG: "文件",
    FileType.DIR: "文件夹",
    FileType.FLNK: "软链接",
    FileType.FIFO: "管道",
}


def file_type_tag(file_type: FileType) -> str:
    """Return the display label for a file type."""
    return _TYPE_TAGS.get(file_type, "文件")


def normalize_path(path: str) -> str:
    """Drop one trailing slash from a path."""
    path = os.fspath(path)
    return path[:-1] if path.endswith("/") else path


def is_relative(path: str) -> bool:
    """True unless the path starts with a slash."""
    return not os.fspath(path).startswith("/")


_MODE_TYPES = (
    (stat.S_ISREG, FileType.REG),
    (stat.S_ISDIR, FileType.DIR),
    (stat.S_ISSOCK, FileType.SOCK),
    (stat.S_ISCHR, FileType.CHR),
    (stat.S_ISFIFO, FileType.FIFO),
    (stat.S_ISBLK, FileType.BLK),
    (stat.S_ISLNK, FileType.FLNK),
)


def get_file_type(path: str) -> FileType:
    """Return the type of the entry at path without following symlinks."""
    try:
        mode = os.lstat(path).st_mode
    except OSError:
        return FileType.NOTEXIST
    for check, file_type in _MODE_TYPES:
        if check(mode):
            return file_type
    return FileType.UNKNOWN


def split_path(path: str) -> list[str]:
    """Split a path on slashes, ignoring a single leading slash."""
    path = normalize_path(path)
    if not path:
        return []
    if path.startswith("/"):
        path = path[1:]
    return path.split("/")


def to_full_path(path: str) -> str:
    """Join a relative path onto the current working directory."""
    path = normalize_path(path)
    if not is_relative(path):
        raise ValueError(f"path is already absolute: {path}")
    return os.path.join(os.getcwd(), path)


def files_in_dir(path: str) -> list[str]:
    """Return the names of the entries of a directory."""
    try:
        return os.listdir(path)
    except OSError as exc:
        raise BackupError(ErrorCode.ERROR, f"Can not open dir {path}") from exc


def link_target(path: str) -> str:
    """Return the path a symbolic link points to."""
    try:
        return normalize_path(os.readlink(path))
    except OSError as exc:
        raise BackupError(ErrorCode.ERROR, "Error reading symbolic link") from exc


def save_file_metadata(meta: Any, target: str) -> bool:
    """Apply times, ownership and permissions from meta to target.

    Returns False if any of them could not be applied.
    """
    target = normalize_path(target)
    if meta.name != os.path.basename(target):
        raise ValueError(f"metadata for {meta.name!r} does not match {target!r}")
    try:
        os.utime(
            target, (meta.access_time, meta.mod_time), follow_symlinks=False
        )
    except OSError:
        _log.warning("Can not modify time of %s", target)
        return False

    ok = True
    if os.getuid() == 0:
        try:
            os.lchown(target, meta.uid, meta.gid)
        except OSError:
            _log.warning("Can not modify user id or group id of %s", target)
            ok = False

    # Permissions go last; symbolic links carry none of their own.
    if meta.type != FileType.FLNK:
        try:
            os.chmod(target, stat.S_IMODE(meta.permissions))
        except OSError:
            _log.warning("Can not modify permission of %s", target)
            ok = False
    return ok


def make_dir(dirname: str, mode: int = 0o777) -> None:
    """Create a directory; an existing one is accepted."""
    try:
        os.mkdir(dirname, mode)
    except FileExistsError:
        pass
    except OSError as exc:
        raise BackupError(
            exc.errno, f"无法创建文件夹{dirname}; {os.strerror(exc.errno)}"
        ) from exc


def hard_link(to: str, from_: str) -> None:
    """Create from_ as a hard link to the file to."""
    try:
        os.link(to, from_)
    except OSError as exc:
        raise BackupError(
            exc.errno,
            f"无法将文件'{from_}' 硬链接到文件 '{to}'; {error_message(exc.errno)}",
        ) from exc


def sym_link(to: str, from_: str) -> None:
    """Create from_ as a symbolic link pointing at to."""
    try:
        os.symlink(to, from_)
    except OSError as exc:
        raise BackupError(
            exc.errno,
            f"无法将文件'{from_}'软链接到文件'{to}'; {error_message(exc.errno)}",
        ) from exc


def make_fifo(filename: str, mode: int = 0o777) -> None:
    """Create a named pipe."""
    try:
        os.mkfifo(filename, mode)
    except OSError as exc:
        raise BackupError(
            exc.errno,
            f"无法创建管道文件'{filename}'; {error_message(exc.errno)}",
        ) from exc


def remove_file(path: str) -> bool:
    """Remove a file or empty directory; False if nothing was removed."""
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            os.rmdir(path)
        else:
            os.remove(path)
    except OSError:
        return False
    return True


def remove_all(path: str) -> bool:
    """Remove path and everything below it; False if it did not exist."""
    if not os.path.lexists(path):
        return False
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)
    return True


def uid_to_name(uid: int) -> str:
    """Return the user name for a uid."""
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return "Unknown User"


def gid_to_name(gid: int) -> str:
    """Return the group name for a gid."""
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return "Unknown User"


def format_time(tm: float, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Format a timestamp in local time."""
    return time.strftime(fmt, time.localtime(tm))


def format_size(size: int) -> str:
    """Render a byte count with a B, KB, MB or GB suffix."""
    if size < 1024:
        return f"{size}B"
    if size < 1024**2:
        return f"{size / 1024:.2f}KB"
    if size < 1024**3:
        return f"{size / 1024**2:.2f}MB"
    return f"{size / 1024**3:.2f}GB"


_TYPE_CHARS = {
    FileType.REG: "-",
    FileType.DIR: "d",
    FileType.FIFO: "p",
    FileType.FLNK: "l",
}

_PERMISSION_BITS = (
    (stat.S_IRUSR, "r"),
    (stat.S_IWUSR, "w"),
    (stat.S_IXUSR, "x"),
    (stat.S_IRGRP, "r"),
    (stat.S_IWGRP, "w"),
    (stat.S_IXGRP, "x"),
    (stat.S_IROTH, "r"),
    (stat.S_IWOTH, "w"),
    (stat.S_IXOTH, "x"),
)


def format_permission(permission: int, file_type: FileType) -> str:
    """Render a mode in the ls style, e.g. a directory with 0755."""
    bits = "".join(ch if permission & bit else "-" for bit, ch in _PERMISSION_BITS)
    return _TYPE_CHARS.get(file_type, "?") + bits


def access(path: str, permission: int) -> ErrorCode:
    """Check access to path: OK, NOT_EXIST, NO_PERMISSION or ERROR."""
    if os.access(path, int(permission)):
        return ErrorCode.OK
    try:
        os.stat(path)
    except FileNotFoundError:
        return ErrorCode.NOT_EXIST
    except PermissionError:
        return ErrorCode.NO_PERMISSION
    except OSError as exc:
        if exc.errno == _errno.ENOENT:
            return ErrorCode.NOT_EXIST
        return ErrorCode.ERROR
    return ErrorCode.NO_PERMISSION


def rename_file(src: str, dest: str) -> bool:
    """Rename src to dest; False on failure."""
    try:
        os.rename(src, dest)
    except OSError:
        return False
    return True