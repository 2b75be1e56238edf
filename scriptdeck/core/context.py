"""Execution context for testability."""

import os
import shutil
import signal
import stat
import subprocess
import time
from pathlib import Path


class Context:
    """
    Wraps external calls for testability.

    In production: spawns real processes and touches the real filesystem
    In tests: can be replaced with MockContext
    """

    def check_tool(self, name: str) -> bool:
        """Check if a tool exists in PATH."""
        return shutil.which(name) is not None

    def run(
        self,
        cmd: list[str],
        input: str | None = None,
        timeout: float | None = 30,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """
        Run a command to completion and return result.

        Args:
            cmd: Command and arguments as list
            input: Text written to the command's stdin
            timeout: Timeout in seconds
            **kwargs: Additional subprocess.run arguments

        Returns:
            CompletedProcess with stdout, stderr, returncode
        """
        return subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            **kwargs,
        )

    def spawn(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        stdin: bool = False,
    ) -> subprocess.Popen:
        """
        Start a child process with captured output.

        Args:
            cmd: Command and arguments as list
            cwd: Working directory for the child
            stdin: Open a pipe to the child's stdin

        Returns:
            Popen handle; the caller owns waiting and reaping
        """
        return subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.PIPE if stdin else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            # Scripts may print any bytes; undecodable ones become U+FFFD
            errors="replace",
            # Own process group, so kill() also reaches the script's children
            start_new_session=True,
        )

    def kill(self, process: subprocess.Popen) -> None:
        """Forcibly terminate a process started by spawn() and its group."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            # Group already gone, or owned by root after sudo
            process.kill()

    def spawn_detached(self, cmd: list[str]) -> subprocess.Popen:
        """Start a process in its own session without capturing output."""
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def read_file(self, path: str) -> str:
        """Read file contents."""
        return Path(path).read_text(errors="replace")

    def file_exists(self, path: str) -> bool:
        """Check if file exists."""
        return Path(path).exists()

    def is_executable(self, path: str) -> bool:
        """Check if the current user may execute the file."""
        return os.access(path, os.X_OK)

    def make_executable(self, path: str) -> None:
        """Add execute permission for owner, group and others."""
        mode = os.stat(path).st_mode
        os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def mtime(self, path: str) -> float:
        """Get last modification time as a POSIX timestamp."""
        return os.stat(path).st_mtime

    def sleep(self, seconds: float) -> None:
        """Pause the calling thread."""
        time.sleep(seconds)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Get environment variable."""
        return os.environ.get(key, default)
