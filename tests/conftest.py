"""Shared test fixtures."""

import subprocess
from pathlib import Path

import pytest


class FakeProcess:
    """Stands in for subprocess.Popen in runner tests."""

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        hang: bool = False,
        pid: int = 4242,
    ):
        self.stdout_text = stdout
        self.stderr_text = stderr
        self._exit = returncode
        self.hang = hang
        self.pid = pid
        self.returncode = None
        self.killed = False
        self.inputs: list[str | None] = []
        self.stdout = None
        self.stderr = None

    def communicate(self, input=None, timeout=None):
        self.inputs.append(input)
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(
                "bash", timeout, output=self.stdout_text, stderr=self.stderr_text
            )
        self.returncode = -9 if self.killed else self._exit
        return self.stdout_text, self.stderr_text

    def kill(self):
        self.killed = True

    def wait(self, timeout=None):
        self.returncode = -9 if self.killed else self._exit
        return self.returncode


class MockContext:
    """Mock Context for testing without real processes or files."""

    def __init__(
        self,
        tools_available: list[str] | None = None,
        command_outputs: dict[tuple, str | subprocess.CompletedProcess | Exception] | None = None,
        processes: dict[tuple, FakeProcess | Exception] | None = None,
        file_contents: dict[str, str] | None = None,
        executables: list[str] | None = None,
        failing_terminals: list[str] | None = None,
        env: dict[str, str] | None = None,
    ):
        self.tools_available = set(tools_available or [])
        self.command_outputs = command_outputs or {}
        self.processes = processes or {}
        self.file_contents = file_contents or {}
        self.executables = set(executables or [])
        self.failing_terminals = set(failing_terminals or [])
        self.env = env or {}
        self.commands_run: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.spawned: list[list[str]] = []
        self.detached: list[list[str]] = []
        self.killed: list[FakeProcess] = []
        self.sleeps: list[float] = []

    def check_tool(self, name: str) -> bool:
        """Check if tool is in mocked available list."""
        return name in self.tools_available

    def run(self, cmd: list[str], input: str | None = None, timeout=None, **kwargs):
        """Return mocked command output."""
        self.commands_run.append(cmd)
        self.inputs.append(input)
        key = tuple(cmd)
        if key not in self.command_outputs:
            raise KeyError(f"No mock output for command: {cmd}")

        output = self.command_outputs[key]
        if isinstance(output, Exception):
            raise output

        # Allow passing CompletedProcess directly for a non-zero returncode
        if isinstance(output, subprocess.CompletedProcess):
            return output

        return subprocess.CompletedProcess(cmd, returncode=0, stdout=output, stderr="")

    def spawn(self, cmd: list[str], cwd=None, stdin: bool = False):
        """Return the mocked process for cmd."""
        self.spawned.append(cmd)
        key = tuple(cmd)
        if key not in self.processes:
            raise KeyError(f"No mock process for command: {cmd}")
        process = self.processes[key]
        if isinstance(process, Exception):
            raise process
        return process

    def kill(self, process) -> None:
        self.killed.append(process)
        process.kill()

    def spawn_detached(self, cmd: list[str]):
        """Record a terminal launch; listed terminals fail to start."""
        if cmd[0] in self.failing_terminals:
            raise FileNotFoundError(f"No such file or directory: '{cmd[0]}'")
        self.detached.append(cmd)
        return FakeProcess()

    def read_file(self, path: str) -> str:
        """Return mocked file content."""
        if path not in self.file_contents:
            raise FileNotFoundError(f"No mock content for: {path}")
        return self.file_contents[path]

    def file_exists(self, path: str) -> bool:
        """Check if path is in mocked files."""
        return path in self.file_contents

    def is_executable(self, path: str) -> bool:
        return path in self.executables

    def make_executable(self, path: str) -> None:
        if path not in self.file_contents:
            raise FileNotFoundError(f"No mock content for: {path}")
        self.executables.add(path)

    def mtime(self, path: str) -> float:
        if path not in self.file_contents:
            raise FileNotFoundError(f"No mock content for: {path}")
        return 1_700_000_000.0

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Return mocked environment variable."""
        return self.env.get(key, default)


@pytest.fixture
def mock_context():
    """Factory fixture for creating MockContext instances."""
    def _create(**kwargs) -> MockContext:
        return MockContext(**kwargs)
    return _create


@pytest.fixture
def write_script(tmp_path):
    """Factory fixture that writes a shell script under tmp_path."""
    def _write(name: str, body: str, executable: bool = True, directory: Path | None = None) -> Path:
        path = (directory or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body)
        path.chmod(0o755 if executable else 0o644)
        return path
    return _write


class FakePrompt:
    """SecretPrompt that replays canned answers and records calls."""

    def __init__(self, answers: list[str | None] | None = None):
        self.answers = list(answers or [])
        self.reasons: list[str] = []
        self.errors: list[str] = []

    def request_secret(self, reason: str) -> str | None:
        self.reasons.append(reason)
        if not self.answers:
            return None
        return self.answers.pop(0)

    def show_error(self, message: str) -> None:
        self.errors.append(message)


@pytest.fixture
def fake_prompt():
    """Factory fixture for FakePrompt instances."""
    def _create(*answers) -> FakePrompt:
        return FakePrompt(list(answers))
    return _create


@pytest.fixture
def fake_process():
    """Factory fixture for FakeProcess instances."""
    def _create(**kwargs) -> FakeProcess:
        return FakeProcess(**kwargs)
    return _create
