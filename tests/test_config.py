import json

import pytest

from bkpack.config import Config
from bkpack.errors import BackupError, ErrorCode


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    Config.destroy_instance()
    yield tmp_path
    Config.destroy_instance()


def _write(directory, content):
    (directory / "config.json").write_text(content, encoding="utf-8")


def test_reads_values(workdir):
    _write(workdir, json.dumps({"task_path": "tasks.bin", "temp_path": "tmpdir"}))
    config = Config.get_instance()
    assert config.get("task_path") == "tasks.bin"
    assert config.get("temp_path") == "tmpdir"


def test_instance_is_shared_until_destroyed(workdir):
    _write(workdir, json.dumps({"task_path": "a", "temp_path": "b"}))
    first = Config.get_instance()
    assert Config.get_instance() is first
    Config.destroy_instance()
    assert Config.get_instance() is not first


def test_missing_file(workdir):
    with pytest.raises(BackupError) as info:
        Config.get_instance()
    assert info.value.code == ErrorCode.NOT_EXIST


def test_unknown_key(workdir):
    _write(workdir, json.dumps({"task_path": "a", "temp_path": "b"}))
    with pytest.raises(BackupError) as info:
        Config.get_instance().get("other")
    assert info.value.code == ErrorCode.ERROR
    assert info.value.msg == "无法找到配置项"


def test_missing_key_in_file(workdir):
    _write(workdir, json.dumps({"task_path": "a"}))
    with pytest.raises(BackupError) as info:
        Config.get_instance()
    assert info.value.code == ErrorCode.FORMAT_ERROR


def test_invalid_json(workdir):
    _write(workdir, "{not json")
    with pytest.raises(BackupError) as info:
        Config.get_instance()
    assert info.value.code == ErrorCode.FORMAT_ERROR


def test_explicit_path(tmp_path):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"task_path": "t", "temp_path": "p"}), encoding="utf-8")
    assert Config(str(path)).get("temp_path") == "p"