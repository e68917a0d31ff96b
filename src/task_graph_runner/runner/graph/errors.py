"""Error taxonomy for task graph construction and execution.

Construction-time errors (duplicate names, unknown references, cycles) are
raised before any action starts. Runtime failures are recorded against the
failing task and surfaced as a single :class:`TaskFailure` for the run.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .report import RunReport


class TaskGraphError(Exception):
    """Base class for all task graph errors."""


class GraphConstructionError(TaskGraphError):
    """The declared graph is invalid and cannot be run."""


class DuplicateTaskError(GraphConstructionError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Task already registered: {name!r}")
        self.name = name


class UnknownTaskError(GraphConstructionError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown task: {name!r}")
        self.name = name


class UnknownDependencyError(GraphConstructionError):
    def __init__(self, task: str, dependency: str) -> None:
        super().__init__(f"Task {task!r} depends on unknown task {dependency!r}")
        self.task = task
        self.dependency = dependency


class CycleError(GraphConstructionError):
    """Raised when the dependency relation contains a cycle.

    ``cycle`` lists the task names along the cycle, with the first name
    repeated at the end (e.g. ``["a", "b", "a"]``).
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle: " + " -> ".join(self.cycle))


class SkippedDueToDependency(TaskGraphError):
    """Terminal outcome for a task whose dependency failed.

    This is recorded, never raised by the runner.
    """

    def __init__(self, name: str, blocked_by: str) -> None:
        super().__init__(f"Task {name!r} skipped: dependency {blocked_by!r} failed")
        self.name = name
        self.blocked_by = blocked_by


class TaskFailure(TaskGraphError):
    """A run failed because a task action reported failure."""

    def __init__(
        self,
        name: str,
        cause: BaseException,
        *,
        skipped: Sequence[str] = (),
        report: RunReport | None = None,
    ) -> None:
        self.name = name
        self.cause = cause
        self.skipped = list(skipped)
        self.report = report
        message = f"Task {name!r} failed: {cause}"
        if self.skipped:
            message += f" (skipped: {', '.join(self.skipped)})"
        super().__init__(message)
