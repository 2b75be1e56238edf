"""Tests for the production Context."""

import stat
import subprocess

import pytest

from scriptdeck.core.context import Context


class TestContext:
    """Tests for Context against the real system."""

    def test_check_tool(self):
        """bash is on PATH; a made-up tool is not."""
        ctx = Context()
        assert ctx.check_tool("bash") is True
        assert ctx.check_tool("definitely-not-a-real-tool-xyz") is False

    def test_run_with_input(self):
        """Text input reaches the command's stdin."""
        result = Context().run(["cat"], input="hello\n")

        assert result.returncode == 0
        assert result.stdout == "hello\n"

    def test_spawn_and_kill_group(self, tmp_path):
        """kill() reaches children started by the spawned shell."""
        ctx = Context()
        process = ctx.spawn(["bash", "-c", "sleep 30 & sleep 30; wait"], cwd=tmp_path)

        ctx.kill(process)
        process.communicate(timeout=5)

        assert process.returncode != 0

    def test_spawn_stdin_pipe(self, tmp_path):
        """stdin=True opens a pipe the caller can write to."""
        process = Context().spawn(["cat"], cwd=tmp_path, stdin=True)

        stdout, _ = process.communicate(input="secret\n", timeout=5)

        assert stdout == "secret\n"

    def test_spawn_missing_program(self, tmp_path):
        """A missing program raises OSError."""
        with pytest.raises(OSError):
            Context().spawn(["definitely-not-a-real-tool-xyz"], cwd=tmp_path)

    def test_file_helpers(self, tmp_path):
        """File checks and chmod operate on real files."""
        ctx = Context()
        path = tmp_path / "a.sh"
        path.write_text("echo hi\n")
        path.chmod(0o644)

        assert ctx.file_exists(str(path)) is True
        assert ctx.read_file(str(path)) == "echo hi\n"
        assert ctx.mtime(str(path)) > 0

        ctx.make_executable(str(path))

        mode = path.stat().st_mode
        assert mode & stat.S_IXUSR and mode & stat.S_IXGRP and mode & stat.S_IXOTH

    def test_run_timeout(self):
        """Timeouts surface as TimeoutExpired."""
        with pytest.raises(subprocess.TimeoutExpired):
            Context().run(["sleep", "5"], timeout=0.2)
