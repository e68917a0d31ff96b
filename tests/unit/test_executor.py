"""Unit tests for the execution driver."""

from __future__ import annotations

import asyncio

import pytest

from task_graph_runner.runner.actions import ActionFailed, ActionResult
from task_graph_runner.runner.graph.errors import TaskFailure, UnknownDependencyError
from task_graph_runner.runner.graph.executor import TaskRunner
from task_graph_runner.runner.graph.state_machine import TaskState
from task_graph_runner.runner.graph.task_graph import TaskGraph

from ..fakes import CallRecorder


def _assert_dependencies_finished_first(graph: TaskGraph, recorder: CallRecorder) -> None:
    positions = {}
    for position, (kind, name) in enumerate(recorder.events):
        positions[(kind, name)] = position
    for task in graph:
        if ("start", task.name) not in positions:
            continue
        for dep in task.dependencies:
            if graph.get(dep).action is None:
                continue
            assert positions[("end", dep)] < positions[("start", task.name)], (dep, task.name)


def test_diamond_runs_dependencies_before_dependent_exactly_once(
    graph: TaskGraph, recorder: CallRecorder
) -> None:
    graph.register("A", action=recorder.action("A", delay=0.05))
    graph.register("B", action=recorder.action("B", delay=0.05))
    graph.register("C", ["A", "B"], action=recorder.action("C"))

    report = TaskRunner(graph).run_sync(["C"])

    assert report.ok
    assert report.order == ["A", "B", "C"]
    assert [recorder.calls(n) for n in "ABC"] == [1, 1, 1]
    assert recorder.started[-1] == "C"
    _assert_dependencies_finished_first(graph, recorder)


def test_larger_graph_respects_every_dependency(graph: TaskGraph, recorder: CallRecorder) -> None:
    graph.register("clean", action=recorder.action("clean"))
    graph.register("tsc", ["clean"], action=recorder.action("tsc", delay=0.02))
    graph.register("ts-lint", action=recorder.action("ts-lint", delay=0.01))
    graph.register("system-build", ["tsc"], action=recorder.action("system-build"))
    graph.register("html", ["clean"], action=recorder.action("html"))
    graph.register("scss-lint", action=recorder.action("scss-lint"))
    graph.register("scss", ["scss-lint"], action=recorder.action("scss", delay=0.02))
    graph.register("app", ["html", "system-build", "ts-lint"])
    graph.register("default", ["app", "scss"], action=recorder.action("default"))

    report = TaskRunner(graph).run_sync(["default"])

    assert report.ok
    assert sorted(report.executed) == sorted(graph.names())
    for name in graph.names():
        if graph.get(name).action is not None:
            assert recorder.calls(name) == 1
    _assert_dependencies_finished_first(graph, recorder)


def test_empty_request_succeeds_trivially(graph: TaskGraph, recorder: CallRecorder) -> None:
    graph.register("A", action=recorder.action("A"))

    report = TaskRunner(graph).run_sync([])

    assert report.ok
    assert report.outcomes == []
    assert recorder.events == []


def test_failed_dependency_skips_dependents_and_reports_failure(
    graph: TaskGraph, recorder: CallRecorder
) -> None:
    graph.register("A", action=recorder.action("A", fail=True))
    graph.register("B", ["A"], action=recorder.action("B"))
    graph.register("C", ["B"], action=recorder.action("C"))
    graph.register("D", action=recorder.action("D"))
    graph.register("all", ["C", "D"])

    with pytest.raises(TaskFailure) as excinfo:
        TaskRunner(graph).run_sync(["all"])

    failure = excinfo.value
    assert failure.name == "A"
    assert isinstance(failure.cause, RuntimeError)
    assert failure.__cause__ is failure.cause
    assert failure.skipped == ["B", "C", "all"]
    assert recorder.calls("B") == 0
    assert recorder.calls("C") == 0
    # Independent branches still complete.
    assert recorder.calls("D") == 1

    report = failure.report
    assert report is not None
    assert not report.ok
    assert report.failed_task == "A"
    assert report.outcome("A").state == TaskState.FAILED
    assert report.outcome("A").error == "A exploded"
    assert report.outcome("B").state == TaskState.SKIPPED
    assert report.outcome("B").blocked_by == "A"
    assert report.outcome("C").blocked_by == "A"
    assert report.outcome("D").state == TaskState.DONE
    assert "Task 'A' failed" in report.summary()


def test_fail_fast_skips_independent_pending_tasks(
    graph: TaskGraph, recorder: CallRecorder
) -> None:
    graph.register("A", action=recorder.action("A", fail=True))
    graph.register("D", action=recorder.action("D"))

    with pytest.raises(TaskFailure) as excinfo:
        TaskRunner(graph, max_parallel=1, fail_fast=True).run_sync(["A", "D"])

    assert recorder.calls("D") == 0
    report = excinfo.value.report
    assert report is not None
    assert report.outcome("D").state == TaskState.SKIPPED
    assert "aborted" in (report.outcome("D").error or "")


def test_max_parallel_one_runs_serially(graph: TaskGraph, recorder: CallRecorder) -> None:
    for name in ("a", "b", "c"):
        graph.register(name, action=recorder.action(name, delay=0.05))

    TaskRunner(graph, max_parallel=1).run_sync(["a", "b", "c"])

    assert recorder.max_active == 1
    assert recorder.started == ["a", "b", "c"]


def test_independent_tasks_run_concurrently(graph: TaskGraph, recorder: CallRecorder) -> None:
    graph.register("a", action=recorder.action("a", delay=0.2))
    graph.register("b", action=recorder.action("b", delay=0.2))

    TaskRunner(graph).run_sync(["a", "b"])

    assert recorder.max_active == 2


def test_invalid_max_parallel(graph: TaskGraph) -> None:
    with pytest.raises(ValueError):
        TaskRunner(graph, max_parallel=0)


def test_action_result_not_ok_fails_task(graph: TaskGraph) -> None:
    graph.register("check", action=lambda: ActionResult(ok=False, message="lint errors"))

    with pytest.raises(TaskFailure) as excinfo:
        TaskRunner(graph).run_sync(["check"])

    assert isinstance(excinfo.value.cause, ActionFailed)
    assert str(excinfo.value.cause) == "lint errors"


def test_coroutine_and_aggregate_tasks(graph: TaskGraph) -> None:
    seen: list[str] = []

    async def compile_ts() -> None:
        await asyncio.sleep(0)
        seen.append("tsc")

    graph.register("tsc", action=compile_ts)
    graph.register("minify", ["tsc"])

    report = TaskRunner(graph).run_sync(["minify"])

    assert seen == ["tsc"]
    assert report.outcome("minify").state == TaskState.DONE


def test_construction_errors_surface_before_any_action(
    graph: TaskGraph, recorder: CallRecorder
) -> None:
    graph.register("A", action=recorder.action("A"))
    graph.register("B", ["A", "missing"], action=recorder.action("B"))

    with pytest.raises(UnknownDependencyError):
        TaskRunner(graph).run_sync(["B"])

    assert recorder.events == []


def test_state_does_not_leak_between_invocations(
    graph: TaskGraph, recorder: CallRecorder
) -> None:
    graph.register("A", action=recorder.action("A"))
    graph.register("B", ["A"], action=recorder.action("B"))
    runner = TaskRunner(graph)

    runner.run_sync(["B"])
    runner.run_sync(["B"])

    assert recorder.calls("A") == 2
    assert recorder.calls("B") == 2


def test_cancelling_a_run_cancels_in_flight_actions(graph: TaskGraph) -> None:
    cleaned_up: list[str] = []
    dependent_ran: list[str] = []

    async def long_running() -> None:
        try:
            await asyncio.sleep(30)
        finally:
            cleaned_up.append("watch-handles")

    async def after() -> None:
        dependent_ran.append("after")

    graph.register("serve", action=long_running)
    graph.register("after", ["serve"], action=after)

    async def scenario() -> None:
        run = asyncio.create_task(TaskRunner(graph).run(["after"]))
        await asyncio.sleep(0.05)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

    asyncio.run(scenario())

    assert cleaned_up == ["watch-handles"]
    assert dependent_ran == []
