"""Binary layout of archive headers and per-file metadata records."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar

from .encrypt import SHA256_SIZE, file_sha256
from .errors import BackupError, ErrorCode
from .filesys import FileType, get_file_type, is_relative, normalize_path, to_full_path

BACK_MAGIC = "BKP"

_LENGTH = struct.Struct("<I")
_HEADER_FIELDS = struct.Struct("<IqB7Q")
_META_FIXED = struct.Struct("<BBBQIqqIIB")
_META_TAIL = struct.Struct("<QQQ")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise BackupError(ErrorCode.EEOF, "file eof")
    return data


def _encode(value: str) -> bytes:
    return value.encode("utf-8", "surrogateescape")


def dump_string(value: str, stream: BinaryIO) -> int:
    """Write a length-prefixed string; return the number of bytes written."""
    raw = _encode(value)
    stream.write(_LENGTH.pack(len(raw)))
    stream.write(raw)
    return _LENGTH.size + len(raw)


def load_string(stream: BinaryIO) -> str:
    """Read a string written by :func:`dump_string`."""
    (length,) = _LENGTH.unpack(_read_exact(stream, _LENGTH.size))
    return _read_exact(stream, length).decode("utf-8", "surrogateescape")


def _as_file_type(value: int) -> int:
    try:
        return FileType(value)
    except ValueError:
        return value


@dataclass
class BackupFileHeader:
    """Archive header: magic, version, time stamp and section offsets."""

    magic: str = BACK_MAGIC
    version: int = 0
    timestamp: int = 0
    backup_type: int = 0
    metadata_offset: int = 0
    linkto_metadata_offset: int = 0
    file_data_offset: int = 0
    addition_back_offset: int = 0
    footer_offset: int = 0
    file_count: int = 0
    linkto_count: int = 0

    @classmethod
    def size(cls) -> int:
        """Number of bytes a header occupies on disk."""
        return _LENGTH.size + len(BACK_MAGIC) + _HEADER_FIELDS.size

    def dump(self, stream: BinaryIO) -> int:
        """Write the header; return the number of bytes written."""
        written = dump_string(self.magic, stream)
        stream.write(
            _HEADER_FIELDS.pack(
                self.version,
                self.timestamp,
                self.backup_type,
                self.metadata_offset,
                self.linkto_metadata_offset,
                self.file_data_offset,
                self.addition_back_offset,
                self.footer_offset,
                self.file_count,
                self.linkto_count,
            )
        )
        return written + _HEADER_FIELDS.size

    @classmethod
    def load(cls, stream: BinaryIO) -> BackupFileHeader:
        """Read a header written by :meth:`dump`."""
        magic = load_string(stream)[: len(BACK_MAGIC)]
        values = _HEADER_FIELDS.unpack(_read_exact(stream, _HEADER_FIELDS.size))
        return cls(magic, *values)


@dataclass
class FileMetadata:
    """Metadata of one archived file or directory."""

    pack_path: str = ""
    name: str = ""
    origin_path: str = ""
    is_directory: bool = False
    is_partly_check: bool = False
    type: int = FileType.UNKNOWN
    size: int = 0
    permissions: int = 0
    mod_time: int = 0
    access_time: int = 0
    uid: int = 0
    gid: int = 0
    is_linked_to: bool = False
    link_to_path: str = ""
    link_to_full_path: str = ""
    hash: bytes = field(default=bytes(SHA256_SIZE))
    link_num: int = 0
    ino: int = 0
    data_offset: int = 0

    _STRING_COUNT: ClassVar[int] = 5

    def encoded_size(self) -> int:
        """Number of bytes :meth:`dump` writes for this record."""
        strings = (
            self.pack_path,
            self.name,
            self.origin_path,
            self.link_to_path,
            self.link_to_full_path,
        )
        return (
            self._STRING_COUNT * _LENGTH.size
            + sum(len(_encode(s)) for s in strings)
            + _META_FIXED.size
            + SHA256_SIZE
            + _META_TAIL.size
        )

    def dump(self, stream: BinaryIO) -> int:
        """Write the record; return the number of bytes written."""
        written = dump_string(self.pack_path, stream)
        written += dump_string(self.name, stream)
        written += dump_string(self.origin_path, stream)
        stream.write(
            _META_FIXED.pack(
                int(bool(self.is_directory)),
                int(bool(self.is_partly_check)),
                int(self.type),
                self.size,
                self.permissions,
                self.mod_time,
                self.access_time,
                self.uid,
                self.gid,
                int(bool(self.is_linked_to)),
            )
        )
        written += _META_FIXED.size
        written += dump_string(self.link_to_path, stream)
        written += dump_string(self.link_to_full_path, stream)
        digest = bytes(self.hash)[:SHA256_SIZE].ljust(SHA256_SIZE, b"\0")
        stream.write(digest)
        written += SHA256_SIZE
        stream.write(_META_TAIL.pack(self.link_num, self.ino, self.data_offset))
        return written + _META_TAIL.size

    @classmethod
    def load(cls, stream: BinaryIO) -> FileMetadata:
        """Read a record written by :meth:`dump`."""
        pack_path = load_string(stream)
        name = load_string(stream)
        origin_path = load_string(stream)
        (
            is_directory,
            is_partly_check,
            file_type,
            size,
            permissions,
            mod_time,
            access_time,
            uid,
            gid,
            is_linked_to,
        ) = _META_FIXED.unpack(_read_exact(stream, _META_FIXED.size))
        link_to_path = load_string(stream)
        link_to_full_path = load_string(stream)
        digest = _read_exact(stream, SHA256_SIZE)
        link_num, ino, data_offset = _META_TAIL.unpack(
            _read_exact(stream, _META_TAIL.size)
        )
        return cls(
            pack_path=pack_path,
            name=name,
            origin_path=origin_path,
            is_directory=is_directory == 1,
            is_partly_check=is_partly_check == 1,
            type=_as_file_type(file_type),
            size=size,
            permissions=permissions,
            mod_time=mod_time,
            access_time=access_time,
            uid=uid,
            gid=gid,
            is_linked_to=is_linked_to == 1,
            link_to_path=link_to_path,
            link_to_full_path=link_to_full_path,
            hash=digest,
            link_num=link_num,
            ino=ino,
            data_offset=data_offset,
        )

    def set_from_path(self, src: str, dest: str = "") -> None:
        """Fill the record from the file at src, packed below directory dest."""
        src = normalize_path(src)
        try:
            st = os.lstat(src)
        except OSError as exc:
            raise BackupError(ErrorCode.NOT_EXIST, f'找不到文件 "{src}"') from exc
        name = os.path.basename(src)
        self.name = name
        self.pack_path = f"{dest}/{name}" if dest else name
        self.origin_path = to_full_path(src) if is_relative(src) else src
        file_type = get_file_type(src)
        self.is_directory = file_type == FileType.DIR
        self.type = file_type
        self.size = st.st_size
        self.permissions = st.st_mode
        self.mod_time = int(st.st_mtime)
        self.access_time = int(st.st_atime)
        self.uid = st.st_uid
        self.gid = st.st_gid
        self.is_linked_to = False
        self.link_num = st.st_nlink
        self.ino = st.st_ino
        if file_type == FileType.REG:
            # Only regular files are opened: opening a pipe would block.
            try:
                with open(src, "rb") as stream:
                    self.hash = file_sha256(stream)
            except OSError as exc:
                raise BackupError(ErrorCode.ERROR, f"无法打开文件{src}") from exc