"""In-memory tree of archived files: packing, archive layout and recovery."""

from __future__ import annotations

import logging
import os
import stat
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

from .errors import BackupError, ErrorCode
from .file_meta import BACK_MAGIC, BackupFileHeader, FileMetadata
from .filesys import (
    FileType,
    files_in_dir,
    get_file_type,
    hard_link,
    is_relative,
    link_target,
    make_dir,
    make_fifo,
    normalize_path,
    save_file_metadata,
    split_path,
    sym_link,
    to_full_path,
)

_log = logging.getLogger(__name__)

_BUFFER_SIZE = 1024
_DEFAULT_DIR_MODE = stat.S_IFDIR | 0o755


def _copy_exact(src: BinaryIO, dest: BinaryIO, size: int, what: str) -> None:
    remaining = size
    while remaining:
        chunk = src.read(min(_BUFFER_SIZE, remaining))
        if not chunk:
            raise BackupError(ErrorCode.FORMAT_ERROR, f"文件'{what}'的数据不完整")
        dest.write(chunk)
        remaining -= len(chunk)


@dataclass(eq=False)
class FileNode:
    """A node of the file tree: its metadata and its children by name."""

    meta: FileMetadata = field(default_factory=FileMetadata)
    children: dict[str, FileNode] = field(default_factory=dict)


class FileTree:
    """All files of one archive, built from disk for packing or from an archive.

    The archive layout is the header, the metadata records of the tree, the
    metadata records of files that symbolic links point to, then the data of
    every regular file once per inode.
    """

    def __init__(self) -> None:
        self.root = FileNode()
        self.header = BackupFileHeader()
        # Files that packed symbolic links point to, by absolute path.
        self.linked_files: dict[str, FileNode] = {}
        self._ino_map: dict[int, FileNode] = {}
        self._recovered: dict[int, str] = {}
        self._nodes_to_save: list[FileNode] = []

    # ----------------------------------------------------------- packing

    def pack_file_add(
        self,
        src: str,
        dest: str,
        recursively: bool = True,
        is_partly: bool = False,
    ) -> None:
        """Add the file or directory src to the tree below the pack path dest."""
        dest = normalize_path(os.fspath(dest))
        if not is_relative(dest):
            raise ValueError(f"pack path must be relative: {dest!r}")
        node = self._locate_and_create_dir(dest)
        self._pack_file_add(os.fspath(src), node, recursively, is_partly)

    def _pack_file_add(
        self,
        src: str,
        parent: FileNode,
        recursively: bool = True,
        is_partly: bool = False,
    ) -> None:
        src = normalize_path(src)
        name = os.path.basename(src)
        node = parent.children.get(name)
        if node is None:
            node = FileNode()
            parent.children[name] = node
        node.meta.set_from_path(src, parent.meta.pack_path)
        node.meta.is_partly_check = is_partly
        file_type = get_file_type(src)
        if file_type == FileType.DIR and recursively:
            for entry in files_in_dir(src):
                self._pack_file_add(os.path.join(src, entry), node)
        elif file_type == FileType.FLNK:
            self._save_be_linked(src, node)

    def _save_be_linked(self, path: str, node: FileNode) -> None:
        target = link_target(path)
        node.meta.link_to_path = target
        node.meta.link_to_full_path = (
            to_full_path(target) if is_relative(target) else target
        )
        if os.path.exists(target) and get_file_type(target) == FileType.REG:
            linked = FileNode()
            linked.meta.set_from_path(target)
            linked.meta.is_linked_to = True
            self.linked_files.setdefault(linked.meta.origin_path, linked)

    def _locate_and_create_dir(self, path: str) -> FileNode:
        cur = self.root
        for part in split_path(path):
            child = cur.children.get(part)
            if child is None:
                parent_path = cur.meta.pack_path
                child = FileNode(
                    FileMetadata(
                        pack_path=f"{parent_path}/{part}" if parent_path else part,
                        name=part,
                        is_directory=True,
                        type=FileType.DIR,
                        permissions=_DEFAULT_DIR_MODE,
                    )
                )
                cur.children[part] = child
            cur = child
        return cur

    def locate_node(self, path: str) -> FileNode | None:
        """Return the node at a pack path, or None if there is none."""
        cur = self.root
        for part in split_path(os.fspath(path)):
            child = cur.children.get(part)
            if child is None:
                return None
            cur = child
        return cur

    def _walk(self, node: FileNode) -> Iterator[FileNode]:
        for child in node.children.values():
            yield child
            yield from self._walk(child)

    # ----------------------------------------------------------- dumping

    def full_dump(self, stream: BinaryIO) -> None:
        """Write the whole tree and its file data as a full backup."""
        self._init_header()
        self._init_meta()
        self._init_link_meta()
        self.header.dump(stream)
        self._dump_meta_and_link_meta(stream)
        self._dump_data(stream)

    def _init_header(self) -> None:
        header = self.header
        header.version += 1
        header.timestamp = int(time.time())
        header.backup_type = 0
        header.file_count = sum(1 for _ in self._walk(self.root))
        header.linkto_count = len(self.linked_files)
        header.metadata_offset = BackupFileHeader.size()
        header.linkto_metadata_offset = header.metadata_offset
        header.file_data_offset = 0
        header.footer_offset = 0

    def _init_meta(self) -> None:
        self._nodes_to_save = []
        self._ino_map = {}
        if not self.root.children:
            return
        self.header.footer_offset = self._init_node(self.root, 0)

    def _init_node(self, parent: FileNode, data_offset: int) -> int:
        for node in parent.children.values():
            self._nodes_to_save.append(node)
            self.header.linkto_metadata_offset += node.meta.encoded_size()
            if node.children:
                data_offset = self._init_node(node, data_offset)
            meta = node.meta
            if meta.type == FileType.REG:
                shared = self._ino_map.get(meta.ino)
                if shared is not None:
                    meta.data_offset = shared.meta.data_offset
                else:
                    meta.data_offset = data_offset
                    data_offset += meta.size
                    self._ino_map[meta.ino] = node
            else:
                meta.data_offset = 0
        return data_offset

    def _init_link_meta(self) -> None:
        header = self.header
        data_offset = header.footer_offset
        header.file_data_offset = header.linkto_metadata_offset
        for node in self.linked_files.values():
            meta = node.meta
            header.file_data_offset += meta.encoded_size()
            if meta.type == FileType.REG:
                shared = self._ino_map.get(meta.ino)
                if shared is not None:
                    meta.data_offset = shared.meta.data_offset
                else:
                    meta.data_offset = data_offset
                    data_offset += meta.size
        header.footer_offset = data_offset + header.file_data_offset

    def _dump_meta_and_link_meta(self, stream: BinaryIO) -> None:
        base = self.header.file_data_offset
        for node in (*self._nodes_to_save, *self.linked_files.values()):
            node.meta.data_offset += base
            node.meta.dump(stream)

    def _dump_data(self, stream: BinaryIO) -> None:
        data_offset = self.header.file_data_offset
        for node in (*self._nodes_to_save, *self.linked_files.values()):
            meta = node.meta
            if meta.type == FileType.REG and meta.data_offset == data_offset:
                try:
                    with open(meta.origin_path, "rb") as src:
                        _copy_exact(src, stream, meta.size, meta.origin_path)
                except OSError as exc:
                    raise BackupError(
                        ErrorCode.ERROR, f"无法打开文件: {meta.origin_path}"
                    ) from exc
                data_offset += meta.size
        if data_offset != self.header.footer_offset:
            raise BackupError(ErrorCode.ERROR, "打包数据长度与文件头不一致")

    # ----------------------------------------------------------- loading

    def load(self, stream: BinaryIO) -> None:
        """Build the tree from an archive stream positioned at its start."""
        header = BackupFileHeader.load(stream)
        if header.magic != BACK_MAGIC:
            raise BackupError(ErrorCode.FORMAT_ERROR, "备份文件格式错误")
        if header.backup_type != 0:
            raise BackupError(ErrorCode.FORMAT_ERROR, "不支持的备份类型")
        self.header = header
        for _ in range(header.file_count):
            meta = FileMetadata.load(stream)
            parent = self._locate_and_create_dir(os.path.dirname(meta.pack_path))
            existing = parent.children.get(meta.name)
            if existing is not None:
                existing.meta = meta
            else:
                parent.children[meta.name] = FileNode(meta)
        for _ in range(header.linkto_count):
            meta = FileMetadata.load(stream)
            self.linked_files.setdefault(meta.origin_path, FileNode(meta))

    # ---------------------------------------------------------- recovery

    def recover(self, pack_path: str, stream: BinaryIO, target_path: str) -> None:
        """Restore the entry at pack_path from the archive into directory target_path."""
        node = self.locate_node(pack_path)
        if node is None:
            raise BackupError(ErrorCode.NOT_EXIST, f"备份文件中不存在{pack_path}")
        target_path = normalize_path(os.fspath(target_path))
        make_dir(target_path, 0o777)
        if node is self.root:
            for name, child in node.children.items():
                self._recover_node(child, stream, f"{target_path}/{name}")
        else:
            self._recover_node(node, stream, f"{target_path}/{node.meta.name}")

    def _recover_node(self, node: FileNode, stream: BinaryIO, target: str) -> None:
        meta = node.meta
        if meta.type == FileType.REG:
            self._recover_regular_file(node, stream, target)
        elif meta.type == FileType.DIR:
            make_dir(target, 0o777)
            for name, child in node.children.items():
                self._recover_node(child, stream, f"{target}/{name}")
        elif meta.type == FileType.FIFO:
            make_fifo(target, 0o777)
        elif meta.type == FileType.FLNK:
            sym_link(meta.link_to_path, target)
        else:
            _log.warning("不支持文件'%s'的文件类型", meta.pack_path)
            return
        save_file_metadata(meta, target)

    def _recover_regular_file(
        self, node: FileNode, stream: BinaryIO, target: str
    ) -> None:
        meta = node.meta
        existing = self._recovered.get(meta.ino)
        if existing is not None:
            hard_link(existing, target)
            return
        stream.seek(meta.data_offset)
        with open(target, "wb") as out:
            _copy_exact(stream, out, meta.size, target)
        self._recovered[meta.ino] = target