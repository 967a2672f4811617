"""Tests for ckpt.cli module."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from ckpt.cli import main
from ckpt.errors import CkptError, Err, Ok


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "a.txt").write_text("x")
    return ws


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, workspace: Path, *args: str):
    return runner.invoke(main, ["-C", str(workspace), "--no-render", *args])


def _db(workspace: Path) -> dict:
    return json.loads((workspace / ".ckpt" / "db.json").read_text())


class TestInitCommand:
    """Tests for `ckpt init`."""

    def test_init(self, runner: CliRunner, workspace: Path):
        result = _invoke(runner, workspace, "init")

        assert result.exit_code == 0, result.output
        assert "Initialized" in result.output
        assert _db(workspace)["config"]["activeId"] == "$"
        assert ".ckpt" in (workspace / ".gitignore").read_text()

    def test_init_no_gitignore(self, runner: CliRunner, workspace: Path):
        result = _invoke(runner, workspace, "init", "--no-gitignore")

        assert result.exit_code == 0
        assert not (workspace / ".gitignore").exists()

    def test_init_twice_is_benign(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        result = _invoke(runner, workspace, "init")

        assert result.exit_code == 0
        assert "already exists" in result.output


class TestSnapAndRevertCommands:
    """Tests for `ckpt snap` and `ckpt revert`."""

    def test_snap_with_tag(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init", "--no-gitignore")
        (workspace / "a.txt").write_text("y")

        result = _invoke(runner, workspace, "snap", "-t", "v1")

        assert result.exit_code == 0, result.output
        assert "parent $" in result.output
        last = _db(workspace)["snapshots"][-1]
        assert last["tag"] == "v1"
        assert last["files"] == [{"path": "a.txt", "content": "y"}]

    def test_snap_requires_init(self, runner: CliRunner, workspace: Path):
        result = _invoke(runner, workspace, "snap")

        assert result.exit_code == 1
        assert "ckpt init" in result.output

    def test_revert_to_parent(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init", "--no-gitignore")
        (workspace / "a.txt").write_text("y")
        _invoke(runner, workspace, "snap", "-t", "v1")

        result = _invoke(runner, workspace, "revert")

        assert result.exit_code == 0, result.output
        assert "reverted to $" in result.output
        assert (workspace / "a.txt").read_text() == "x"
        assert _db(workspace)["snapshots"][-1]["tag"] == "REV:$"

    def test_revert_by_prefix(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init", "--no-gitignore")
        (workspace / "a.txt").write_text("y")
        _invoke(runner, workspace, "snap")
        snap_id = _db(workspace)["snapshots"][-1]["id"]
        _invoke(runner, workspace, "revert", "$")

        result = _invoke(runner, workspace, "revert", snap_id[:12])

        assert result.exit_code == 0, result.output
        assert (workspace / "a.txt").read_text() == "y"
        assert _db(workspace)["config"]["activeId"] == snap_id

    def test_revert_at_root_fails(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        result = _invoke(runner, workspace, "revert")

        assert result.exit_code == 1
        assert "Already at root" in result.output

    def test_revert_unknown_id_fails_without_changes(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        before = (workspace / ".ckpt" / "db.json").read_bytes()

        result = _invoke(runner, workspace, "revert", "does-not-exist")

        assert result.exit_code == 1
        assert "not found" in result.output
        assert (workspace / ".ckpt" / "db.json").read_bytes() == before


class TestInspectionCommands:
    """Tests for `ckpt log`, `ckpt describe` and `ckpt show`."""

    def test_log_json(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        _invoke(runner, workspace, "snap", "-t", "v1")

        result = _invoke(runner, workspace, "log", "--json")

        assert result.exit_code == 0
        records = json.loads(result.output)
        assert [r["tag"] for r in records] == ["root", "v1"]
        assert records[1]["active"] is True
        assert "content" not in json.dumps(records)

    def test_log_table(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        result = _invoke(runner, workspace, "log")

        assert result.exit_code == 0
        assert "root" in result.output

    def test_describe(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        _invoke(runner, workspace, "snap")

        result = _invoke(runner, workspace, "describe")

        assert result.exit_code == 0
        assert result.output.startswith("graph TD")
        assert "_ --> " in result.output

    def test_show_without_renderer(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        with patch("ckpt.render.shutil.which", return_value=None):
            result = _invoke(runner, workspace, "show", "--no-open")

        assert result.exit_code == 1
        assert "Unable to find Mermaid CLI" in result.output
        assert (workspace / ".ckpt" / "graph.mmd").exists()

    def test_show_failed_render_does_not_open_stale_svg(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        (workspace / ".ckpt" / "graph.svg").write_text("<svg/>")
        failure = Err(CkptError(code="render_failed", message="mmdc crashed"))

        with (
            patch("ckpt.cli.render_store", return_value=failure),
            patch("ckpt.cli.webbrowser.open") as open_browser,
        ):
            result = _invoke(runner, workspace, "show")

        assert result.exit_code == 1
        assert "mmdc crashed" in result.output
        open_browser.assert_not_called()

    def test_show_opens_rendered_svg(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        svg = workspace / ".ckpt" / "graph.svg"

        def fake_render(store):
            svg.write_text("<svg/>")
            return Ok(svg)

        with (
            patch("ckpt.cli.render_store", side_effect=fake_render),
            patch("ckpt.cli.webbrowser.open") as open_browser,
        ):
            result = _invoke(runner, workspace, "show")

        assert result.exit_code == 0, result.output
        open_browser.assert_called_once_with(svg.resolve().as_uri())


class TestRenderAfterMutation:
    """Render problems are reported but never fail the command."""

    def test_render_failure_is_a_warning(self, runner: CliRunner, workspace: Path):
        failure = Err(CkptError(code="render_failed", message="mmdc crashed"))

        with patch("ckpt.cli.render_store", return_value=failure) as render:
            result = runner.invoke(main, ["-C", str(workspace), "init"])

        assert result.exit_code == 0, result.output
        assert render.called
        assert "mmdc crashed" in result.output
        assert _db(workspace)["config"]["activeId"] == "$"

    def test_no_render_flag_skips_renderer(self, runner: CliRunner, workspace: Path):
        with patch("ckpt.cli.render_store") as render:
            result = _invoke(runner, workspace, "init")

        assert result.exit_code == 0
        render.assert_not_called()


class TestConfigCommands:
    """Tests for `ckpt config`."""

    def test_set_and_list(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        result = _invoke(runner, workspace, "config", "set", "read-workers", "2")
        assert result.exit_code == 0, result.output

        listing = _invoke(runner, workspace, "config", "list")
        assert "read_workers: 2" in listing.output

    def test_set_does_not_persist_environment_override(self, runner: CliRunner, workspace: Path, monkeypatch):
        _invoke(runner, workspace, "init")
        monkeypatch.setenv("CKPT_NO_RENDER", "1")

        result = _invoke(runner, workspace, "config", "set", "read_workers", "4")

        assert result.exit_code == 0, result.output
        saved = yaml.safe_load((workspace / ".ckpt" / "config.yaml").read_text())
        assert saved == {"read_workers": 4}

    def test_set_unknown_key(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")

        result = _invoke(runner, workspace, "config", "set", "nope", "1")

        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_extra_ignore_applies_to_next_snapshot(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init", "--no-gitignore")
        _invoke(runner, workspace, "config", "set", "extra_ignore", "*.log")
        (workspace / "debug.log").write_text("noise")

        _invoke(runner, workspace, "snap")

        paths = [f["path"] for f in _db(workspace)["snapshots"][-1]["files"]]
        assert paths == ["a.txt"]

    def test_reset(self, runner: CliRunner, workspace: Path):
        _invoke(runner, workspace, "init")
        _invoke(runner, workspace, "config", "set", "render", "false")

        result = _invoke(runner, workspace, "config", "reset")

        assert result.exit_code == 0
        assert "reset" in result.output
