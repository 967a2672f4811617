"""Tests for ckpt.atomic module."""

import json
import stat
import threading
from pathlib import Path
from unittest.mock import patch

import yaml

from ckpt.atomic import (
    atomic_write_bytes,
    atomic_write_json,
    atomic_write_text,
    atomic_write_yaml,
)


class TestAtomicWriteText:
    """Tests for atomic_write_text()."""

    def test_creates_file(self, tmp_path: Path):
        """atomic_write_text creates a new file."""
        file_path = tmp_path / "db.json"

        result = atomic_write_text(file_path, "hello world")

        assert result.is_ok()
        assert result.unwrap() == file_path
        assert file_path.read_text() == "hello world"

    def test_overwrites_existing_file(self, tmp_path: Path):
        """atomic_write_text replaces existing content."""
        file_path = tmp_path / "db.json"
        file_path.write_text("old content")

        result = atomic_write_text(file_path, "new content")

        assert result.is_ok()
        assert file_path.read_text() == "new content"

    def test_creates_parent_directories(self, tmp_path: Path):
        """Parent directories are created when missing."""
        file_path = tmp_path / ".ckpt" / "nested" / "graph.mmd"

        result = atomic_write_text(file_path, "graph TD")

        assert result.is_ok()
        assert file_path.read_text() == "graph TD"

    def test_sets_custom_permissions(self, tmp_path: Path):
        """The mode argument is applied to the final file."""
        file_path = tmp_path / "secret.txt"

        result = atomic_write_text(file_path, "content", mode=0o600)

        assert result.is_ok()
        mode = file_path.stat().st_mode
        assert mode & stat.S_IRWXU == stat.S_IRUSR | stat.S_IWUSR
        assert mode & stat.S_IRWXG == 0
        assert mode & stat.S_IRWXO == 0

    def test_no_temp_files_left_behind(self, tmp_path: Path):
        """Successful writes leave only the target file."""
        file_path = tmp_path / "db.json"

        atomic_write_text(file_path, "content")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["db.json"]

    def test_handles_unicode_content(self, tmp_path: Path):
        """Content is written as UTF-8."""
        file_path = tmp_path / "unicode.txt"
        content = "Hello 世界"

        result = atomic_write_text(file_path, content)

        assert result.is_ok()
        assert file_path.read_text(encoding="utf-8") == content

    def test_returns_io_error_on_permission_denied(self, tmp_path: Path):
        """PermissionError becomes Err(io_error) with the path in context."""
        file_path = tmp_path / "db.json"

        with patch("ckpt.atomic.tempfile.mkstemp", side_effect=PermissionError("denied")):
            result = atomic_write_text(file_path, "content")

        assert result.is_err()
        error = result.unwrap_err()
        assert error.code == "io_error"
        assert error.context["path"] == str(file_path)

    def test_failed_replace_keeps_old_content(self, tmp_path: Path):
        """If the rename fails the previous file survives and the temp file is removed."""
        file_path = tmp_path / "db.json"
        file_path.write_text("original")

        with patch("ckpt.atomic.os.replace", side_effect=OSError("disk full")):
            result = atomic_write_text(file_path, "replacement")

        assert result.is_err()
        assert result.unwrap_err().code == "io_error"
        assert file_path.read_text() == "original"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["db.json"]


class TestAtomicWriteBytes:
    """Tests for atomic_write_bytes()."""

    def test_preserves_exact_bytes(self, tmp_path: Path):
        """Binary data is written byte for byte."""
        file_path = tmp_path / "blob.bin"
        data = bytes(range(256))

        result = atomic_write_bytes(file_path, data)

        assert result.is_ok()
        assert file_path.read_bytes() == data


class TestAtomicWriteJson:
    """Tests for atomic_write_json()."""

    def test_creates_json_file(self, tmp_path: Path):
        """atomic_write_json creates a valid JSON file."""
        file_path = tmp_path / "db.json"
        data = {"snapshots": [], "config": {"activeId": "$"}}

        result = atomic_write_json(file_path, data)

        assert result.is_ok()
        assert json.loads(file_path.read_text()) == data

    def test_compact_json_with_no_indent(self, tmp_path: Path):
        """indent=None produces a single line."""
        file_path = tmp_path / "db.json"

        result = atomic_write_json(file_path, {"a": 1, "b": 2}, indent=None)

        assert result.is_ok()
        assert "\n" not in file_path.read_text().strip()

    def test_handles_non_serializable_data(self, tmp_path: Path):
        """Non-serializable data is reported without touching the file."""
        file_path = tmp_path / "db.json"
        file_path.write_text("{}")

        result = atomic_write_json(file_path, {"func": lambda x: x})

        assert result.is_err()
        assert result.unwrap_err().code == "serialization_failed"
        assert file_path.read_text() == "{}"

    def test_preserves_unicode(self, tmp_path: Path):
        """Non-ASCII text is kept readable (ensure_ascii=False)."""
        file_path = tmp_path / "db.json"

        result = atomic_write_json(file_path, {"message": "café"})

        assert result.is_ok()
        assert "café" in file_path.read_text(encoding="utf-8")


class TestAtomicWriteYaml:
    """Tests for atomic_write_yaml()."""

    def test_creates_yaml_file(self, tmp_path: Path):
        """atomic_write_yaml creates a valid YAML file."""
        file_path = tmp_path / "config.yaml"
        data = {"read_workers": 4, "extra_ignore": ["*.log"]}

        result = atomic_write_yaml(file_path, data)

        assert result.is_ok()
        assert yaml.safe_load(file_path.read_text()) == data

    def test_keeps_key_order(self, tmp_path: Path):
        """Keys are written in insertion order."""
        file_path = tmp_path / "config.yaml"

        atomic_write_yaml(file_path, {"z": 1, "a": 2})

        lines = file_path.read_text().strip().split("\n")
        assert lines[0].startswith("z:")
        assert lines[1].startswith("a:")

    def test_handles_non_serializable_data(self, tmp_path: Path):
        """Objects safe_dump refuses are reported as serialization_failed."""
        file_path = tmp_path / "config.yaml"

        class CustomObject:
            pass

        result = atomic_write_yaml(file_path, {"obj": CustomObject()})

        assert result.is_err()
        assert result.unwrap_err().code == "serialization_failed"
        assert not file_path.exists()


class TestAtomicWriteConcurrency:
    """Concurrent writers never produce a torn file."""

    def test_survives_concurrent_writes(self, tmp_path: Path):
        """Every write succeeds and the final content is one complete value."""
        file_path = tmp_path / "db.json"
        results: list[bool] = []

        def write_content(index: int):
            results.append(atomic_write_text(file_path, f"content-{index}").is_ok())

        threads = [threading.Thread(target=write_content, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(results)
        content = file_path.read_text()
        assert content.startswith("content-")
        assert int(content.split("-")[1]) in range(10)
        assert list(tmp_path.glob(".*tmp")) == []
