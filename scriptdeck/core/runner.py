"""Script execution."""

import enum
import shlex
import subprocess
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from scriptdeck.core.config import DEFAULT_TERMINALS

if TYPE_CHECKING:
    from scriptdeck.core.context import Context
    from scriptdeck.core.credentials import CredentialBroker
    from scriptdeck.core.discovery import ScriptEntry
    from scriptdeck.core.logging import EventLogger
    from scriptdeck.core.privilege import PrivilegeClassifier


DEFAULT_TIMEOUT = 30

# Seconds to wait for a killed process to release its pipes
KILL_GRACE = 5

# Exit code reported when the process outcome is unknown
UNKNOWN_EXIT = -1

SHELL = "bash"
SUDO_STDIN = ["sudo", "-S", "-p", ""]

# sudo's own message when the password on stdin was not accepted
SUDO_AUTH_FAILURE = "incorrect password"

PAUSE_COMMAND = "echo; read -n 1 -s -r -p 'Press any key to close this terminal...'"


class ErrorKind(enum.Enum):
    """Why an operation failed."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    SPAWN_FAILURE = "spawn_failure"
    STORAGE_ERROR = "storage_error"
    EXIT_STATUS = "exit_status"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one execution attempt."""

    script_name: str
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    elapsed: float
    error_kind: ErrorKind | None = None

    @property
    def timed_out(self) -> bool:
        """True if the script was killed for exceeding its timeout."""
        return self.error_kind is ErrorKind.TIMEOUT

    @property
    def message(self) -> str:
        """One line suitable for a status bar."""
        if self.success:
            return f"Script executed successfully: {self.script_name}"
        detail = self.stderr.strip().splitlines()
        if detail:
            return f"{self.script_name}: {detail[-1]}"
        return f"Script execution failed: {self.script_name} (exit {self.exit_code})"

    @classmethod
    def failure(
        cls,
        script_name: str,
        kind: ErrorKind,
        message: str,
        elapsed: float = 0.0,
        stdout: str = "",
    ) -> "ExecutionResult":
        return cls(
            script_name=script_name,
            success=False,
            stdout=stdout,
            stderr=message,
            exit_code=UNKNOWN_EXIT,
            elapsed=elapsed,
            error_kind=kind,
        )


def _join_output(*parts: str | None) -> str:
    return "".join(p for p in parts if p)


def _normalize_lines(text: str | None) -> str:
    """Join lines with newline separators, each line terminated."""
    if not text:
        return ""
    return "".join(line + "\n" for line in text.splitlines())


def build_terminal_command(terminal: str, shell_command: str) -> list[str]:
    """argv that makes a terminal emulator run shell_command in bash."""
    if terminal in ("gnome-terminal", "mate-terminal"):
        return [terminal, "--", SHELL, "-c", shell_command]
    if terminal == "xfce4-terminal":
        return [terminal, "-x", SHELL, "-c", shell_command]
    return [terminal, "-e", SHELL, "-c", shell_command]


class ScriptRunner:
    """
    Runs catalog entries as child processes.

    Failures are reported as ExecutionResult with success=False; nothing
    on the execution path raises.
    """

    def __init__(
        self,
        classifier: "PrivilegeClassifier | None" = None,
        broker: "CredentialBroker | None" = None,
        context: "Context | None" = None,
        logger: "EventLogger | None" = None,
        timeout: float = DEFAULT_TIMEOUT,
        elevated_timeout: float | None = None,
        terminals: list[str] | None = None,
    ):
        if context is None:
            from scriptdeck.core.context import Context
            context = Context()
        if classifier is None:
            from scriptdeck.core.privilege import PrivilegeClassifier
            classifier = PrivilegeClassifier(context=context, logger=logger)
        self.classifier = classifier
        self.broker = broker
        self.context = context
        self.logger = logger
        self.timeout = timeout
        self.elevated_timeout = elevated_timeout if elevated_timeout is not None else timeout
        self.terminals = list(terminals) if terminals is not None else list(DEFAULT_TERMINALS)
        self._executor: ThreadPoolExecutor | None = None

    def _check_runnable(self, entry: "ScriptEntry") -> ExecutionResult | None:
        """Failure result if the script cannot be started, else None."""
        path = str(entry.path)
        if not self.context.file_exists(path):
            return ExecutionResult.failure(
                entry.name, ErrorKind.NOT_FOUND, f"Script file not found: {path}"
            )
        if not self.context.is_executable(path):
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.PERMISSION_DENIED,
                f"Script is not executable: {path}",
            )
        return None

    def _execute(
        self,
        entry: "ScriptEntry",
        cmd: list[str],
        timeout: float,
        stdin_text: str | None = None,
    ) -> ExecutionResult:
        """Spawn cmd, feed stdin, collect output, enforce timeout."""
        start = time.monotonic()
        try:
            process = self.context.spawn(
                cmd,
                cwd=Path(entry.path).parent,
                stdin=stdin_text is not None,
            )
        except OSError as e:
            self._log("error", "Failed to start script", script=str(entry.path), error=str(e))
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.SPAWN_FAILURE,
                f"Execution error: {e}",
                elapsed=time.monotonic() - start,
            )

        try:
            stdout, stderr = process.communicate(input=stdin_text, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self.context.kill(process)
            stdout, stderr = self._reap(process, e)
            elapsed = time.monotonic() - start
            self._log(
                "warning",
                "Script timed out",
                script=str(entry.path),
                timeout=timeout,
                pid=process.pid,
            )
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.TIMEOUT,
                _join_output(
                    _normalize_lines(stderr),
                    f"Script execution timed out after {timeout:g} seconds",
                ),
                elapsed=elapsed,
                stdout=_normalize_lines(stdout),
            )

        elapsed = time.monotonic() - start
        exit_code = process.returncode
        success = exit_code == 0
        self._log(
            "info" if success else "warning",
            "Script finished",
            script=str(entry.path),
            exit_code=exit_code,
            elapsed=round(elapsed, 3),
        )
        return ExecutionResult(
            script_name=entry.name,
            success=success,
            stdout=_normalize_lines(stdout),
            stderr=_normalize_lines(stderr),
            exit_code=exit_code,
            elapsed=elapsed,
            error_kind=None if success else ErrorKind.EXIT_STATUS,
        )

    def _reap(
        self,
        process: subprocess.Popen,
        expired: subprocess.TimeoutExpired,
    ) -> tuple[str, str]:
        """Wait for a killed process and collect what it wrote."""
        try:
            # Retrying communicate() keeps output read before the timeout
            return process.communicate(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired:
            # A descendant outside the process group still holds the pipes
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            process.wait()
            return _as_text(expired.stdout), _as_text(expired.stderr)

    def run(self, entry: "ScriptEntry") -> ExecutionResult:
        """
        Run a script as the current user.

        Args:
            entry: Catalog entry to run

        Returns:
            ExecutionResult with output, exit code and timing
        """
        failure = self._check_runnable(entry)
        if failure is not None:
            self._log("warning", failure.stderr, script=str(entry.path))
            return failure

        self._log("info", "Executing script", script=str(entry.path))
        return self._execute(entry, [SHELL, str(entry.path)], self.timeout)

    def run_elevated(self, entry: "ScriptEntry") -> ExecutionResult:
        """
        Run a script through sudo if the classifier says it needs root.

        The cached credential is used, or requested from the broker's
        prompt, and written to sudo's stdin.

        Args:
            entry: Catalog entry to run

        Returns:
            ExecutionResult; PERMISSION_DENIED if no credential was given
        """
        failure = self._check_runnable(entry)
        if failure is not None:
            self._log("warning", failure.stderr, script=str(entry.path))
            return failure

        if not self.classifier.requires_elevation(entry):
            return self.run(entry)

        if self.broker is None:
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.PERMISSION_DENIED,
                "Elevation denied: no credential broker configured",
            )

        if not self.broker.ensure_credential(f"Executing {entry.name}"):
            self._log("warning", "Elevation denied", script=str(entry.path))
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.PERMISSION_DENIED,
                "Elevation denied: sudo password was not provided",
            )

        stdin_text = self.broker.password_input(True)
        if not stdin_text:
            # Invalidated by another worker between the two calls
            return ExecutionResult.failure(
                entry.name,
                ErrorKind.PERMISSION_DENIED,
                "Elevation denied: sudo password is no longer valid",
            )

        self._log("info", "Executing script with sudo", script=str(entry.path))
        result = self._execute(
            entry,
            SUDO_STDIN + [SHELL, str(entry.path)],
            self.elevated_timeout,
            stdin_text=stdin_text,
        )
        if not result.success and SUDO_AUTH_FAILURE in result.stderr.lower():
            self._log("warning", "sudo rejected the cached password", script=str(entry.path))
            self.broker.invalidate()
        return result

    def submit(self, entry: "ScriptEntry", elevated: bool = False) -> "Future[ExecutionResult]":
        """Run a script on a background worker and return a future."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(thread_name_prefix="scriptdeck-run")
        fn = self.run_elevated if elevated else self.run
        return self._executor.submit(fn, entry)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker pool, if one was started."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def make_executable(self, entry: "ScriptEntry") -> bool:
        """
        Set the execute bits on the script file and update the entry.

        Returns:
            True on success; failures are logged, not raised
        """
        try:
            self.context.make_executable(str(entry.path))
        except OSError as e:
            self._log("error", "Failed to make script executable", script=str(entry.path), error=str(e))
            return False
        entry.executable = True
        self._log("info", "Made script executable", script=str(entry.path))
        return True

    def terminal_shell_command(self, entry: "ScriptEntry", elevate: bool | None = None) -> str:
        """
        Shell command line a terminal runs for this script.

        With a validated credential cached, the secret is piped to
        ``sudo -S`` from inside the command line. That line becomes part of
        the terminal's argv, so other local users can read the secret with
        ``ps`` while the terminal runs. Without a cached secret sudo asks in
        the terminal and nothing sensitive is exposed.

        Args:
            entry: Catalog entry to run
            elevate: Force elevation on or off; None asks the classifier

        Returns:
            Command string for bash -c
        """
        if elevate is None:
            elevate = self.classifier.requires_elevation(entry)

        script = shlex.quote(str(entry.path))
        run = f"{SHELL} {script}"
        if elevate:
            secret = self.broker.get_secret_if_validated() if self.broker else None
            if secret is not None:
                run = f"printf '%s\\n' {shlex.quote(secret)} | sudo -S -p '' {run}"
            else:
                # sudo asks in the terminal itself
                run = f"sudo {run}"

        directory = shlex.quote(str(Path(entry.path).parent))
        return f"cd {directory} && {run}; {PAUSE_COMMAND}"

    def run_in_terminal(self, entry: "ScriptEntry", elevate: bool | None = None) -> ExecutionResult:
        """
        Open the script in the first terminal emulator that starts.

        Returns:
            Success naming the terminal, or SPAWN_FAILURE if none started
        """
        start = time.monotonic()
        failure = self._check_runnable(entry)
        if failure is not None:
            return failure

        shell_command = self.terminal_shell_command(entry, elevate=elevate)
        tried = []
        for terminal in self.terminals:
            tried.append(terminal)
            try:
                self.context.spawn_detached(build_terminal_command(terminal, shell_command))
            except OSError:
                continue
            self._log("info", "Opened terminal", script=str(entry.path), terminal=terminal)
            return ExecutionResult(
                script_name=entry.name,
                success=True,
                stdout=f"Terminal opened with {terminal} for: {entry.name}\n",
                stderr="",
                exit_code=0,
                elapsed=time.monotonic() - start,
            )

        message = f"No supported terminal emulator found (tried: {', '.join(tried)})"
        self._log("error", message, script=str(entry.path))
        return ExecutionResult.failure(
            entry.name,
            ErrorKind.SPAWN_FAILURE,
            message,
            elapsed=time.monotonic() - start,
        )

    def _log(self, level: str, message: str, **extra) -> None:
        if self.logger is not None:
            getattr(self.logger, level)(message, **extra)


def _as_text(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
