"""Tests for ckpt.errors module."""

import pytest

from ckpt.errors import CkptError, UnwrapError, err, format_error, io_error, ok


class TestResult:
    """Tests for Ok/Err."""

    def test_ok(self):
        result = ok(5)

        assert result.ok and result.is_ok() and not result.is_err()
        assert result.unwrap() == 5
        assert result.value == 5
        assert result.error is None
        with pytest.raises(UnwrapError):
            result.unwrap_err()

    def test_err(self):
        error = CkptError(code="not_found", message="Snapshot x not found")
        result = err(error)

        assert not result.ok and result.is_err()
        assert result.unwrap_err() is error
        assert result.value is None
        with pytest.raises(UnwrapError):
            result.unwrap()

    def test_io_error_context(self):
        result = io_error("Failed", path="a.txt", exc=OSError("denied"))

        assert result.unwrap_err().code == "io_error"
        assert result.unwrap_err().context == {"path": "a.txt", "error": "denied"}


class TestFormatError:
    """Tests for format_error()."""

    def test_hint_for_not_initialized(self):
        text = format_error(CkptError(code="not_initialized", message="No checkpoint store"))

        assert "ckpt init" in text

    def test_includes_path(self):
        text = format_error(CkptError(code="io_error", message="Failed", context={"path": "x/y"}))

        assert "x/y" in text

    def test_none(self):
        assert format_error(None) == "Unknown error"
