"""Cached sudo credential with one interactive prompt per session."""

import getpass
import subprocess
import sys
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from scriptdeck.core.context import Context
    from scriptdeck.core.logging import EventLogger


# Re-authenticate (-k), read the password from stdin (-S), print no prompt.
VALIDATION_COMMAND = ["sudo", "-k", "-S", "-p", "", "true"]

EMPTY_SECRET_MESSAGE = "Please enter a password."
REJECTED_SECRET_MESSAGE = "The password you entered is incorrect. Please try again."

DEFAULT_PROMPT_TIMEOUT = 30
DEFAULT_VALIDATION_TIMEOUT = 30


class SecretPrompt(Protocol):
    """Capability supplied by the presentation layer to ask for a password."""

    def request_secret(self, reason: str) -> str | None:
        """Ask for the secret; None means the user cancelled."""
        ...

    def show_error(self, message: str) -> None:
        """Tell the user why the previous attempt was not accepted."""
        ...


class ConsolePrompt:
    """Terminal prompt using getpass; EOF and Ctrl-C cancel."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr

    def request_secret(self, reason: str) -> str | None:
        print("Sudo password required.", file=self.stream)
        print(f"Reason: {reason}", file=self.stream)
        try:
            return getpass.getpass("Sudo password: ", stream=self.stream)
        except (EOFError, KeyboardInterrupt):
            print("", file=self.stream)
            return None

    def show_error(self, message: str) -> None:
        print(message, file=self.stream)


class MarshalledPrompt:
    """
    Runs another prompt on the thread that owns the UI.

    dispatch must schedule a callable on the owner thread (for example a
    toolkit's "call later"). Calls made on the owner thread go straight
    through; calls from workers block until the prompt answers or
    timeout elapses, which counts as a cancel.
    """

    def __init__(
        self,
        prompt: SecretPrompt,
        dispatch: Callable[[Callable[[], None]], None],
        owner: threading.Thread | None = None,
        timeout: float = DEFAULT_PROMPT_TIMEOUT,
        poll_interval: float = 0.1,
    ):
        self.prompt = prompt
        self.dispatch = dispatch
        self.owner = owner or threading.current_thread()
        self.timeout = timeout
        self.poll_interval = poll_interval

    def _on_owner(self) -> bool:
        return threading.current_thread() is self.owner

    def _call(self, fn: Callable, *args):
        if self._on_owner():
            return fn(*args)

        future: Future = Future()

        def task() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)

        self.dispatch(task)

        waited = 0.0
        while waited < self.timeout:
            try:
                return future.result(timeout=self.poll_interval)
            except FutureTimeout:
                waited += self.poll_interval
        future.cancel()
        raise FutureTimeout(f"No answer from prompt within {self.timeout} seconds")

    def request_secret(self, reason: str) -> str | None:
        try:
            return self._call(self.prompt.request_secret, reason)
        except FutureTimeout:
            return None

    def show_error(self, message: str) -> None:
        try:
            self._call(self.prompt.show_error, message)
        except FutureTimeout:
            pass


@dataclass
class CredentialState:
    """Cached secret and whether sudo accepted it."""

    secret: str | None = None
    validated: bool = False


class CredentialBroker:
    """
    Owns the cached sudo password for the lifetime of a session.

    One broker is created per application and passed to every runner that
    may need elevation. Reads and writes of the cached state happen under
    a lock, and only one prompt can be open at a time.
    """

    def __init__(
        self,
        prompt: SecretPrompt,
        context: "Context | None" = None,
        logger: "EventLogger | None" = None,
        validation_timeout: float = DEFAULT_VALIDATION_TIMEOUT,
    ):
        if context is None:
            from scriptdeck.core.context import Context
            context = Context()
        self.prompt = prompt
        self.context = context
        self.logger = logger
        self.validation_timeout = validation_timeout
        self._state = CredentialState()
        self._state_lock = threading.Lock()
        self._prompt_lock = threading.Lock()

    def ensure_credential(self, reason: str) -> bool:
        """
        Make sure a validated secret is cached, prompting if needed.

        Args:
            reason: Human-readable reason shown in the prompt

        Returns:
            True if a validated secret is available, False if the user
            cancelled
        """
        if self.has_valid_secret():
            return True

        with self._prompt_lock:
            # Another worker may have finished prompting while we waited
            if self.has_valid_secret():
                return True

            self.invalidate()
            while True:
                candidate = self.prompt.request_secret(reason)
                if candidate is None:
                    self._log("info", "Sudo password prompt cancelled", reason=reason)
                    return False

                candidate = candidate.strip()
                if not candidate:
                    self.prompt.show_error(EMPTY_SECRET_MESSAGE)
                    continue

                if self._validate(candidate):
                    with self._state_lock:
                        self._state = CredentialState(secret=candidate, validated=True)
                    self._log("info", "Sudo password validated", reason=reason)
                    return True

                self.prompt.show_error(REJECTED_SECRET_MESSAGE)

    def _validate(self, candidate: str) -> bool:
        """Run a no-op through sudo with the candidate on stdin."""
        try:
            result = self.context.run(
                VALIDATION_COMMAND,
                input=candidate + "\n",
                timeout=self.validation_timeout,
            )
        except subprocess.TimeoutExpired:
            self._log("warning", "Sudo password validation timed out")
            return False
        except OSError as e:
            self._log("error", "Could not run sudo for validation", error=str(e))
            return False

        if result.returncode != 0:
            self._log(
                "warning",
                "Sudo password validation failed",
                returncode=result.returncode,
                stderr=result.stderr,
            )
            return False
        return True

    def get_secret_if_validated(self) -> str | None:
        """The cached secret, or None unless it has been validated."""
        with self._state_lock:
            if self._state.validated:
                return self._state.secret
            return None

    def has_valid_secret(self) -> bool:
        """True if a validated secret is cached."""
        with self._state_lock:
            return self._state.validated and self._state.secret is not None

    def invalidate(self) -> None:
        """Forget the cached secret."""
        with self._state_lock:
            self._state = CredentialState()

    def elevation_prefix(self, requires_elevation: bool) -> list[str]:
        """sudo arguments to prepend when a validated secret is cached."""
        if not requires_elevation or not self.has_valid_secret():
            return []
        return ["sudo", "-S", "-p", ""]

    def password_input(self, requires_elevation: bool) -> str:
        """Text to write to sudo's stdin, or an empty string."""
        if not requires_elevation:
            return ""
        secret = self.get_secret_if_validated()
        if secret is None:
            return ""
        return secret + "\n"

    def _log(self, level: str, message: str, **extra) -> None:
        if self.logger is not None:
            getattr(self.logger, level)(message, **extra)
