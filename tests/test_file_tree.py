import hashlib
import io
import os
import stat

import pytest

from bkpack.errors import BackupError, ErrorCode
from bkpack.file_meta import BackupFileHeader
from bkpack.file_tree import FileTree
from bkpack.filesys import FileType, get_file_type


@pytest.fixture
def sample(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_bytes(b"hello")
    os.chmod(src / "a.txt", 0o640)
    sub = src / "sub"
    sub.mkdir()
    (sub / "b.bin").write_bytes(bytes(range(256)) * 5)
    (src / "empty").mkdir()
    return src


def _dump(tree):
    buf = io.BytesIO()
    tree.full_dump(buf)
    return buf.getvalue()


def _loaded(data):
    tree = FileTree()
    tree.load(io.BytesIO(data))
    return tree


def test_header_fields_after_dump(sample):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    header = BackupFileHeader.load(io.BytesIO(data))
    assert header.magic == "BKP"
    assert header.backup_type == 0
    assert header.file_count == 5
    assert header.linkto_count == 0
    assert header.metadata_offset == BackupFileHeader.size()
    assert header.footer_offset == len(data)
    assert header.footer_offset - header.file_data_offset == 5 + 256 * 5


def test_load_round_trip_keeps_metadata(sample):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    loaded = _loaded(data)
    for path in ("src", "src/a.txt", "src/sub", "src/sub/b.bin", "src/empty"):
        original = tree.locate_node(path).meta
        restored = loaded.locate_node(path).meta
        assert restored == original
    node = loaded.locate_node("src/a.txt")
    assert node.meta.hash == hashlib.sha256(b"hello").digest()
    assert node.meta.pack_path == "src/a.txt"
    assert set(loaded.locate_node("src").children) == {"a.txt", "sub", "empty"}


def test_recover_everything(sample, tmp_path):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    loaded = _loaded(data)
    out = tmp_path / "out"
    loaded.recover("", io.BytesIO(data), str(out))
    assert (out / "src" / "a.txt").read_bytes() == b"hello"
    assert (out / "src" / "sub" / "b.bin").read_bytes() == bytes(range(256)) * 5
    assert (out / "src" / "empty").is_dir()
    assert stat.S_IMODE(os.stat(out / "src" / "a.txt").st_mode) == 0o640
    original = os.stat(sample / "a.txt")
    assert int(os.stat(out / "src" / "a.txt").st_mtime) == int(original.st_mtime)


def test_recover_sub_path_only(sample, tmp_path):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    out = tmp_path / "out"
    _loaded(data).recover("src/sub/", io.BytesIO(data), str(out))
    assert sorted(os.listdir(out)) == ["sub"]
    assert (out / "sub" / "b.bin").read_bytes() == bytes(range(256)) * 5


def test_recover_missing_path_raises(sample, tmp_path):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    loaded = _loaded(data)
    assert loaded.locate_node("src/nothing") is None
    with pytest.raises(BackupError) as info:
        loaded.recover("src/nothing", io.BytesIO(data), str(tmp_path / "out"))
    assert info.value.code == ErrorCode.NOT_EXIST


def test_hard_links_store_data_once(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "one").write_bytes(b"shared content")
    os.link(src / "one", src / "two")
    tree = FileTree()
    tree.pack_file_add(str(src), "")
    data = _dump(tree)
    header = tree.header
    assert header.footer_offset - header.file_data_offset == len(b"shared content")
    loaded = _loaded(data)
    assert (
        loaded.locate_node("src/one").meta.data_offset
        == loaded.locate_node("src/two").meta.data_offset
    )
    out = tmp_path / "out"
    loaded.recover("src", io.BytesIO(data), str(out))
    assert os.stat(out / "src" / "one").st_ino == os.stat(out / "src" / "two").st_ino
    assert (out / "src" / "two").read_bytes() == b"shared content"


def test_symlink_to_outside_file(tmp_path):
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"target data")
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_bytes(b"hello")
    os.symlink(str(outside), src / "link")
    tree = FileTree()
    tree.pack_file_add(str(src), "")
    data = _dump(tree)
    assert tree.header.linkto_count == 1
    assert (
        tree.header.footer_offset - tree.header.file_data_offset
        == len(b"hello") + len(b"target data")
    )
    loaded = _loaded(data)
    assert set(loaded.linked_files) == {str(outside)}
    assert loaded.linked_files[str(outside)].meta.is_linked_to is True
    link_meta = loaded.locate_node("src/link").meta
    assert link_meta.type == FileType.FLNK
    assert link_meta.link_to_path == str(outside)
    out = tmp_path / "out"
    loaded.recover("src", io.BytesIO(data), str(out))
    assert os.readlink(out / "src" / "link") == str(outside)
    assert (out / "src" / "a.txt").read_bytes() == b"hello"


def test_symlink_to_packed_file_shares_data(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_bytes(b"hello")
    os.symlink(str(src / "a.txt"), src / "link")
    tree = FileTree()
    tree.pack_file_add(str(src), "")
    _dump(tree)
    assert tree.header.footer_offset - tree.header.file_data_offset == len(b"hello")


def test_fifo_is_recovered(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    os.mkfifo(src / "pipe")
    tree = FileTree()
    tree.pack_file_add(str(src), "")
    data = _dump(tree)
    out = tmp_path / "out"
    _loaded(data).recover("", io.BytesIO(data), str(out))
    assert get_file_type(str(out / "src" / "pipe")) == FileType.FIFO


def test_nested_destination(sample, tmp_path):
    tree = FileTree()
    tree.pack_file_add(str(sample / "a.txt"), "x/y")
    node = tree.locate_node("x/y/a.txt")
    assert node.meta.pack_path == "x/y/a.txt"
    assert tree.locate_node("x").meta.type == FileType.DIR
    data = _dump(tree)
    loaded = _loaded(data)
    assert loaded.locate_node("x/y/a.txt").meta.size == 5
    out = tmp_path / "out"
    loaded.recover("x", io.BytesIO(data), str(out))
    assert (out / "x" / "y" / "a.txt").read_bytes() == b"hello"


def test_non_recursive_directory(sample):
    tree = FileTree()
    tree.pack_file_add(str(sample), "", recursively=False, is_partly=True)
    node = tree.locate_node("src")
    assert node.children == {}
    assert node.meta.is_partly_check is True


def test_absolute_destination_rejected(sample):
    tree = FileTree()
    with pytest.raises(ValueError):
        tree.pack_file_add(str(sample), "/abs")


def test_missing_source_raises(tmp_path):
    tree = FileTree()
    with pytest.raises(BackupError) as info:
        tree.pack_file_add(str(tmp_path / "absent"), "")
    assert info.value.code == ErrorCode.NOT_EXIST


def test_bad_magic_rejected():
    buf = io.BytesIO()
    BackupFileHeader(magic="XYZ").dump(buf)
    with pytest.raises(BackupError) as info:
        FileTree().load(io.BytesIO(buf.getvalue()))
    assert info.value.code == ErrorCode.FORMAT_ERROR


def test_truncated_archive_raises(sample):
    tree = FileTree()
    tree.pack_file_add(str(sample), "")
    data = _dump(tree)
    with pytest.raises(BackupError) as info:
        FileTree().load(io.BytesIO(data[:10]))
    assert info.value.code == ErrorCode.EEOF