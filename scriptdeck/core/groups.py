"""Sequential execution of script groups."""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Protocol

from scriptdeck.core.runner import ErrorKind, ExecutionResult

if TYPE_CHECKING:
    from scriptdeck.core.context import Context
    from scriptdeck.core.discovery import ScriptEntry
    from scriptdeck.core.logging import EventLogger
    from scriptdeck.core.runner import ScriptRunner


TERMINAL_LAUNCH_DELAY = 0.5


class GroupObserver(Protocol):
    """Receives progress from a group run, in execution order."""

    def on_progress(self, index: int, total: int, label: str) -> None:
        ...

    def on_item_result(self, entry: "ScriptEntry", result: ExecutionResult) -> None:
        ...

    def on_done(self, summary: "GroupSummary") -> None:
        ...


class CallbackObserver:
    """Adapts plain callables to GroupObserver."""

    def __init__(
        self,
        on_item_done: Callable[["ScriptEntry", ExecutionResult], None] | None = None,
        on_group_done: Callable[["GroupSummary"], None] | None = None,
        on_progress: Callable[[int, int, str], None] | None = None,
    ):
        self._on_item_done = on_item_done
        self._on_group_done = on_group_done
        self._on_progress = on_progress

    def on_progress(self, index: int, total: int, label: str) -> None:
        if self._on_progress is not None:
            self._on_progress(index, total, label)

    def on_item_result(self, entry: "ScriptEntry", result: ExecutionResult) -> None:
        if self._on_item_done is not None:
            self._on_item_done(entry, result)

    def on_done(self, summary: "GroupSummary") -> None:
        if self._on_group_done is not None:
            self._on_group_done(summary)


@dataclass
class GroupSummary:
    """Aggregate outcome of a group run."""

    total: int
    results: list[ExecutionResult] = field(default_factory=list)
    stopped_early: bool = False
    failed_script: str | None = None
    message: str = ""

    @property
    def completed(self) -> int:
        """Number of items that were run."""
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success(self) -> bool:
        """True if every item ran and succeeded."""
        return self.completed == self.total and self.failed == 0


class GroupOrchestrator:
    """
    Runs the members of a group one after another.

    Item N+1 is never started before item N has returned. Background runs
    go through a single worker, so two groups never interleave either.
    """

    def __init__(
        self,
        runner: "ScriptRunner",
        context: "Context | None" = None,
        logger: "EventLogger | None" = None,
        terminal_delay: float = TERMINAL_LAUNCH_DELAY,
    ):
        if context is None:
            from scriptdeck.core.context import Context
            context = Context()
        self.runner = runner
        self.context = context
        self.logger = logger
        self.terminal_delay = terminal_delay
        self._executor: ThreadPoolExecutor | None = None

    def run_sequential(
        self,
        scripts: list["ScriptEntry"],
        observer: GroupObserver | None = None,
        elevated: bool = False,
    ) -> GroupSummary:
        """
        Run scripts in order, stopping at the first failure.

        Args:
            scripts: Group members in execution order
            observer: Receives progress, per-item results and the summary
            elevated: Use run_elevated for each member

        Returns:
            GroupSummary; on_done is called with it exactly once
        """
        summary = GroupSummary(total=len(scripts))
        run = self.runner.run_elevated if elevated else self.runner.run

        for index, entry in enumerate(scripts):
            self._notify(observer, "on_progress", index, len(scripts), entry.name)
            try:
                result = run(entry)
            except Exception as e:
                # Still a failed member; on_done must fire
                self._log("error", "Unexpected error running script", script=str(entry.path), error=str(e))
                result = ExecutionResult.failure(entry.name, ErrorKind.SPAWN_FAILURE, f"Execution error: {e}")
            summary.results.append(result)
            self._notify(observer, "on_item_result", entry, result)

            if not result.success:
                summary.stopped_early = index < len(scripts) - 1
                summary.failed_script = entry.name
                summary.message = f"Script failed: {entry.name}"
                self._log("warning", summary.message, completed=summary.completed, total=summary.total)
                break
        else:
            summary.message = "Group execution completed"
            self._log("info", summary.message, total=summary.total)

        self._notify(observer, "on_done", summary)
        return summary

    def run_in_terminals(
        self,
        scripts: list["ScriptEntry"],
        observer: GroupObserver | None = None,
        delay: float | None = None,
    ) -> GroupSummary:
        """
        Open every script in its own terminal, pausing between launches.

        Unlike run_sequential, a failed launch does not stop the group.
        """
        if delay is None:
            delay = self.terminal_delay
        summary = GroupSummary(total=len(scripts))

        for index, entry in enumerate(scripts):
            self._notify(observer, "on_progress", index, len(scripts), entry.name)
            result = self.runner.run_in_terminal(entry)
            summary.results.append(result)
            self._notify(observer, "on_item_result", entry, result)
            if index < len(scripts) - 1:
                self.context.sleep(delay)

        summary.message = (
            f"Group execution completed ({summary.succeeded} terminals opened, "
            f"{summary.failed} failed)"
        )
        self._log("info", summary.message)
        self._notify(observer, "on_done", summary)
        return summary

    def start_sequential(
        self,
        scripts: list["ScriptEntry"],
        observer: GroupObserver | None = None,
        elevated: bool = False,
    ) -> "Future[GroupSummary]":
        """run_sequential on the background worker."""
        return self._worker().submit(self.run_sequential, list(scripts), observer, elevated)

    def start_in_terminals(
        self,
        scripts: list["ScriptEntry"],
        observer: GroupObserver | None = None,
    ) -> "Future[GroupSummary]":
        """run_in_terminals on the background worker."""
        return self._worker().submit(self.run_in_terminals, list(scripts), observer)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _worker(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="scriptdeck-group"
            )
        return self._executor

    def _notify(self, observer: GroupObserver | None, method: str, *args) -> None:
        """Call an observer hook; its errors never break sequencing."""
        if observer is None:
            return
        try:
            getattr(observer, method)(*args)
        except Exception as e:
            if self.logger is not None:
                self.logger.exception(f"Group observer {method} failed", e)

    def _log(self, level: str, message: str, **extra) -> None:
        if self.logger is not None:
            getattr(self.logger, level)(message, **extra)
