"""Unit tests for watch bindings and the change-triggered run loop.

Events are injected with `Watcher.notify` so the tests do not depend on
filesystem notification timing.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from watchfiles import Change

from task_graph_runner.runner.graph.executor import TaskRunner
from task_graph_runner.runner.graph.report import RunReport
from task_graph_runner.runner.graph.task_graph import TaskGraph
from task_graph_runner.runner.watch.watcher import FileChange, Watcher, WatchRegistry


class BuildProbe:
    """Async action that tracks how many runs overlap."""

    def __init__(self, duration: float = 0.0) -> None:
        self.duration = duration
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def __call__(self) -> None:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.duration)
        finally:
            self.active -= 1


def _project(tmp_path: Path, probe: BuildProbe) -> tuple[TaskRunner, WatchRegistry]:
    graph = TaskGraph()
    graph.register("system-build", action=probe)
    watches = WatchRegistry()
    watches.add("src/app/**/*.ts", ["system-build"])
    return TaskRunner(graph), watches


def test_burst_of_events_is_coalesced_into_one_run(tmp_path: Path) -> None:
    probe = BuildProbe()

    async def scenario() -> Watcher:
        runner, watches = _project(tmp_path, probe)
        watcher = Watcher(runner, watches, root=tmp_path, debounce_ms=50)
        for name in ("a.ts", "b.ts", "c.ts"):
            assert watcher.notify(FileChange.MODIFIED, tmp_path / "src" / "app" / name)
        await asyncio.wait_for(watcher.consume(max_runs=1), timeout=5)
        return watcher

    watcher = asyncio.run(scenario())

    assert watcher.runs == 1
    assert probe.calls == 1


def test_triggers_during_a_run_are_serialised_and_coalesced(tmp_path: Path) -> None:
    probe = BuildProbe(duration=0.3)

    async def scenario() -> Watcher:
        runner, watches = _project(tmp_path, probe)
        watcher = Watcher(runner, watches, root=tmp_path, debounce_ms=20)
        consumer = asyncio.create_task(watcher.consume(max_runs=2))

        watcher.notify(FileChange.ADDED, tmp_path / "src/app/new.ts")
        await asyncio.sleep(0.15)
        assert probe.active == 1
        watcher.notify(FileChange.MODIFIED, tmp_path / "src/app/new.ts")
        watcher.notify(FileChange.DELETED, tmp_path / "src/app/old.ts")

        await asyncio.wait_for(consumer, timeout=5)
        return watcher

    watcher = asyncio.run(scenario())

    assert watcher.runs == 2
    assert probe.calls == 2
    assert probe.max_active == 1


def test_failed_run_is_reported_and_loop_keeps_going(tmp_path: Path) -> None:
    reports: list[RunReport] = []
    attempts: list[int] = []

    def flaky() -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("tsc: error TS2304")

    async def scenario() -> None:
        graph = TaskGraph()
        graph.register("tsc", action=flaky)
        graph.register("system-build", ["tsc"])
        watches = WatchRegistry()
        watches.add(["src/**/*.ts"], "system-build")
        watcher = Watcher(
            TaskRunner(graph), watches, root=tmp_path, debounce_ms=10, on_report=reports.append
        )
        consumer = asyncio.create_task(watcher.consume(max_runs=2))
        watcher.notify(FileChange.MODIFIED, tmp_path / "src/main.ts")
        while watcher.runs < 1:
            await asyncio.sleep(0.01)
        watcher.notify(FileChange.MODIFIED, tmp_path / "src/main.ts")
        await asyncio.wait_for(consumer, timeout=5)

    asyncio.run(scenario())

    assert len(reports) == 2
    assert reports[0].failed_task == "tsc"
    assert reports[0].skipped == ["system-build"]
    assert reports[1].ok


def test_notify_ignores_unrelated_paths(tmp_path: Path) -> None:
    runner, watches = _project(tmp_path, BuildProbe())
    watcher = Watcher(runner, watches, root=tmp_path)

    assert not watcher.notify(FileChange.MODIFIED, tmp_path / "src" / "scss" / "main.scss")
    assert not watcher.notify(FileChange.MODIFIED, tmp_path.parent / "src" / "app" / "x.ts")


def test_registry_unions_task_names_in_binding_order() -> None:
    watches = WatchRegistry()
    scss = watches.add("src/scss/**/*.scss", ["scss-lint", "scss"])
    html = watches.add(["src/**/*.html", "src/.htaccess"], "html")
    both = watches.add("src/**/*", ["scss", "html"])

    assert watches.task_names([html, scss]) == ["scss-lint", "scss", "html"]
    assert watches.task_names([both]) == ["scss", "html"]
    assert watches.matching("src/index.html") == [html, both]


def test_registry_rejects_empty_bindings() -> None:
    watches = WatchRegistry()
    with pytest.raises(ValueError):
        watches.add("!src/api/composer.*", ["api"])
    with pytest.raises(ValueError):
        watches.add("src/**/*", [])


def test_base_dirs_collapse_nested_and_missing_directories(tmp_path: Path) -> None:
    (tmp_path / "src" / "app").mkdir(parents=True)
    watches = WatchRegistry()
    watches.add("src/app/**/*.ts", ["system-build"])
    watches.add("src/**/*.html", ["html"])
    assert watches.base_dirs(tmp_path) == [(tmp_path / "src").resolve()]

    watches.add("test/app/**/*.spec.js", ["test-app"])
    assert watches.base_dirs(tmp_path) == [tmp_path.resolve()]


def test_file_change_from_watchfiles() -> None:
    assert FileChange.from_watchfiles(Change.added) is FileChange.ADDED
    assert FileChange.from_watchfiles(Change.modified) is FileChange.MODIFIED
    assert FileChange.from_watchfiles(Change.deleted) is FileChange.DELETED


def test_serve_without_bindings_returns(tmp_path: Path) -> None:
    watcher = Watcher(TaskRunner(TaskGraph()), WatchRegistry(), root=tmp_path)

    asyncio.run(asyncio.wait_for(watcher.serve(), timeout=5))

    assert watcher.runs == 0


def test_registry_selects_named_watch_sets() -> None:
    watches = WatchRegistry()
    watches.add("src/app/**/*.ts", ["system-build"])
    watches.add("test/app/**/*.spec.js", ["test-app"], watch_set="tests")
    watches.add("src/app/**/*.ts", ["test-app"], watch_set="tests")

    assert watches.watch_sets() == ["default", "tests"]

    tests = watches.select("tests")
    assert len(tests) == 2
    assert tests.task_names(tests.matching("src/app/main.ts")) == ["test-app"]
    assert watches.task_names(watches.matching("src/app/main.ts")) == [
        "system-build",
        "test-app",
    ]
    assert len(watches.select("missing")) == 0

    with pytest.raises(ValueError):
        watches.add("src/**/*", ["html"], watch_set="")


def test_serve_runs_bound_tasks_for_real_file_changes(tmp_path: Path) -> None:
    app_dir = tmp_path / "src" / "app"
    app_dir.mkdir(parents=True)
    probe = BuildProbe()

    async def scenario() -> Watcher:
        graph = TaskGraph()
        graph.register("system-build", action=probe)
        watches = WatchRegistry()
        watches.add(["src/app/**/*.ts", "!src/app/skip.ts"], ["system-build"])
        watcher = Watcher(TaskRunner(graph), watches, root=tmp_path, debounce_ms=50)

        serving = asyncio.create_task(watcher.serve())
        try:
            await asyncio.sleep(1.0)
            (app_dir / "skip.ts").write_text("excluded", encoding="utf-8")
            await asyncio.sleep(0.5)
            assert watcher.runs == 0

            (app_dir / "main.ts").write_text("export {};", encoding="utf-8")
            async with asyncio.timeout(10):
                while watcher.runs < 1:
                    await asyncio.sleep(0.05)
        finally:
            serving.cancel()
            await asyncio.gather(serving, return_exceptions=True)
        return watcher

    watcher = asyncio.run(scenario())

    assert watcher.runs == 1
    assert probe.calls == 1
