"""
CLI: latchkey gc / show / config.
"""

import json
import os
import time

import pytest
from click.testing import CliRunner

from latchkey.cli.__main__ import cli
from latchkey.sessions.store import FileStorage
from latchkey.sessions.policy import SessionOptions


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("LATCHKEY_"):
            monkeypatch.delenv(key)


def _record(session_dir, session_id, data, age=0):
    path = session_dir / f"sess_{session_id}"
    path.write_text(json.dumps(data))
    if age:
        past = time.time() - age
        os.utime(path, (past, past))
    return path


class TestGcCommand:

    def test_sweeps_expired(self, runner, session_dir):
        _record(session_dir, "old", {}, age=7200)
        _record(session_dir, "fresh", {})

        result = runner.invoke(cli, ["--save-path", str(session_dir), "gc"], obj={})
        assert result.exit_code == 0, result.output
        assert "Removed 1 expired session(s)" in result.output
        assert [p.name for p in session_dir.iterdir()] == ["sess_fresh"]

    def test_max_lifetime_option(self, runner, session_dir):
        _record(session_dir, "a", {}, age=120)
        result = runner.invoke(
            cli, ["--save-path", str(session_dir), "gc", "--max-lifetime", "60"], obj={},
        )
        assert result.exit_code == 0
        assert "60s" in result.output
        assert list(session_dir.iterdir()) == []

    def test_quiet(self, runner, session_dir):
        result = runner.invoke(cli, ["-q", "--save-path", str(session_dir), "gc"], obj={})
        assert result.exit_code == 0
        assert result.output == ""

    def test_uses_config_file(self, runner, tmp_path, session_dir):
        _record(session_dir, "old", {}, age=100)
        config = tmp_path / "latchkey.yaml"
        config.write_text(f"session:\n  save_path: {session_dir}\n  gc_maxlifetime: 50\n")
        result = runner.invoke(cli, ["--config", str(config), "gc"], obj={})
        assert result.exit_code == 0, result.output
        assert "Removed 1" in result.output


class TestShowCommand:

    def test_prints_record(self, runner, session_dir):
        _record(session_dir, "abc123", {"user": "ada", "cart": [1]})
        result = runner.invoke(cli, ["--save-path", str(session_dir), "show", "abc123"], obj={})
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"user": "ada", "cart": [1]}

    def test_missing_record(self, runner, session_dir):
        result = runner.invoke(cli, ["--save-path", str(session_dir), "show", "nothere"], obj={})
        assert result.exit_code == 1
        assert "SESSION_NOT_FOUND" in result.output
        assert not (session_dir / "sess_nothere").exists()

    def test_invalid_id(self, runner, session_dir):
        result = runner.invoke(cli, ["--save-path", str(session_dir), "show", "../etc/passwd"], obj={})
        assert result.exit_code == 1
        assert "SESSION_INVALID" in result.output

    def test_reads_under_lock(self, runner, session_dir):
        options = SessionOptions(save_path=str(session_dir))
        with FileStorage(options) as storage:
            sid = storage.create()
            storage.write({"k": "v"})
        result = runner.invoke(cli, ["--save-path", str(session_dir), "show", sid], obj={})
        assert json.loads(result.output) == {"k": "v"}


class TestConfigCommand:

    def test_table(self, runner):
        result = runner.invoke(cli, ["config"], obj={})
        assert result.exit_code == 0
        assert "cookie_name" in result.output
        assert "SESSID" in result.output

    def test_json(self, runner, tmp_path):
        env = tmp_path / ".env"
        env.write_text("LATCHKEY_SESSION__COOKIE_NAME=FROMENV\n")
        result = runner.invoke(cli, ["--env-file", str(env), "config", "--json"], obj={})
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["cookie_name"] == "FROMENV"
        assert data["storage_backend"] == "file"

    def test_invalid_config(self, runner, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("session:\n  cookie_flavour: oat\n")
        result = runner.invoke(cli, ["--config", str(config), "config"], obj={})
        assert result.exit_code == 1
        assert "cookie_flavour" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "latchkey" in result.output
