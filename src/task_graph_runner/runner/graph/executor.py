"""Dependency-ordered execution of a task closure.

One driver coroutine per invocation owns the execution state. Actions run
as asyncio tasks (plain callables in worker threads); the driver only
starts a task once every dependency is ``done`` and records each state
change through the state machine, so transitions are serialised on the
event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Iterable

from ..actions import ActionFailed, ActionResult
from .errors import SkippedDueToDependency, TaskFailure
from .report import RunReport, TaskOutcome, utc_now
from .state_machine import TaskState, transition
from .task_graph import Task, TaskGraph

logger = logging.getLogger(__name__)


async def invoke_action(task: Task) -> None:
    """Run a task's action to its single terminal outcome.

    Returns normally on success and raises on failure.
    """

    action = task.action
    if action is None:
        return

    if inspect.iscoroutinefunction(action):
        result = await action()
    else:
        result = await asyncio.to_thread(action)
        if inspect.isawaitable(result):
            result = await result

    if isinstance(result, ActionResult) and not result.ok:
        raise ActionFailed(result)


class TaskRunner:
    """Runs requested tasks of a :class:`TaskGraph` after their dependencies.

    Args:
        graph: The graph to run. It must not be mutated while a run is active.
        max_parallel: Upper bound on concurrently running actions. ``None``
            means unbounded, ``1`` runs everything serially.
        fail_fast: Stop starting new tasks after the first failure. Pending
            tasks are then marked skipped.
    """

    def __init__(
        self,
        graph: TaskGraph,
        *,
        max_parallel: int | None = None,
        fail_fast: bool = False,
    ) -> None:
        if max_parallel is not None and max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self._graph = graph
        self._max_parallel = max_parallel
        self._fail_fast = fail_fast

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    def run_sync(self, names: Iterable[str]) -> RunReport:
        return asyncio.run(self.run(names))

    async def run(self, names: Iterable[str]) -> RunReport:
        """Run ``names`` and their dependency closure.

        Raises:
            GraphConstructionError: Before anything runs, if the closure is invalid.
            TaskFailure: If any task in the closure failed.
        """

        requested = list(dict.fromkeys(names))
        order = self._graph.resolve(requested)
        report = RunReport(requested=requested, order=order)

        states = {name: TaskState.PENDING for name in order}
        outcomes = {name: TaskOutcome(name=name) for name in order}
        report.outcomes = [outcomes[name] for name in order]

        def advance(name: str, to: TaskState) -> None:
            states[name] = transition(current=states[name], to=to)
            outcomes[name].state = states[name]

        def skip(name: str, blocked_by: str, reason: str | None = None) -> None:
            advance(name, TaskState.SKIPPED)
            outcomes[name].blocked_by = blocked_by
            outcomes[name].error = reason or str(SkippedDueToDependency(name, blocked_by))
            logger.warning("Task skipped", extra={"task": name, "blocked_by": blocked_by})

        if order:
            logger.info("Run started", extra={"requested": requested, "order": order})

        in_flight: dict[asyncio.Task[None], str] = {}
        first_failure: tuple[str, BaseException] | None = None
        aborted = False

        try:
            while True:
                if not aborted:
                    for name in order:
                        if self._max_parallel is not None and len(in_flight) >= self._max_parallel:
                            break
                        if states[name] != TaskState.PENDING:
                            continue
                        task = self._graph.get(name)
                        if all(states[dep] == TaskState.DONE for dep in task.dependencies):
                            advance(name, TaskState.RUNNING)
                            outcomes[name].started_at = utc_now()
                            logger.info("Starting task", extra={"task": name})
                            in_flight[asyncio.create_task(invoke_action(task), name=name)] = name

                if not in_flight:
                    break

                finished, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for fut in sorted(finished, key=lambda f: order.index(in_flight[f])):
                    name = in_flight.pop(fut)
                    outcome = outcomes[name]
                    outcome.finished_at = utc_now()

                    error: BaseException | None
                    if fut.cancelled():
                        error = asyncio.CancelledError(f"Task {name!r} was cancelled")
                    else:
                        error = fut.exception()

                    if error is None:
                        advance(name, TaskState.DONE)
                        logger.info(
                            "Finished task",
                            extra={"task": name, "duration_seconds": outcome.duration_seconds},
                        )
                        continue

                    advance(name, TaskState.FAILED)
                    outcome.error = str(error) or type(error).__name__
                    logger.error("Task failed", extra={"task": name}, exc_info=error)
                    if first_failure is None:
                        first_failure = (name, error)

                    for dependent in self._graph.dependents_of(name, order):
                        if states[dependent] == TaskState.PENDING:
                            skip(dependent, name)

                    if self._fail_fast and not aborted:
                        aborted = True
                        for pending in order:
                            if states[pending] == TaskState.PENDING:
                                skip(pending, name, f"Run aborted after task {name!r} failed")

        except asyncio.CancelledError:
            logger.warning("Run cancelled", extra={"in_flight": sorted(in_flight.values())})
            for fut in in_flight:
                fut.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        report.finished_at = utc_now()

        if first_failure is not None:
            failed_name, cause = first_failure
            report.failed_task = failed_name
            raise TaskFailure(
                failed_name, cause, skipped=report.skipped, report=report
            ) from cause

        if order:
            logger.info("Run finished", extra={"order": order})
        return report
