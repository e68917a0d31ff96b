"""CLI entrypoint for the task runner.

Exit codes:
- 0: success
- 1: a task failed (or was skipped because a dependency failed)
- 2: configuration or taskfile error
- 3: invalid task graph (duplicate, unknown task/dependency, cycle)
- 130: interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from task_graph_runner import __version__
from task_graph_runner.runner.config import RunnerSettings
from task_graph_runner.runner.graph.errors import GraphConstructionError, TaskFailure
from task_graph_runner.runner.graph.executor import TaskRunner
from task_graph_runner.runner.graph.report import RunReport, RunReportStore
from task_graph_runner.runner.logging import configure_logging
from task_graph_runner.runner.taskfile import Taskfile, TaskfileError, load_taskfile
from task_graph_runner.runner.watch.watcher import DEFAULT_WATCH_SET, Watcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_GRAPH_ERROR = 3
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskgraph",
        description="Run dependency-ordered tasks declared in a Python taskfile",
    )
    parser.add_argument("--version", action="version", version=f"task-graph-runner {__version__}")
    parser.add_argument(
        "--taskfile",
        default=None,
        help="Path to the taskfile (defaults to TASKGRAPH_TASKFILE or ./taskfile.py)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run tasks and their dependencies")
    run.add_argument(
        "tasks",
        nargs="*",
        help="Task names to run (defaults to TASKGRAPH_DEFAULT_TASK, 'default')",
    )
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the resolved execution order without running anything",
    )
    run.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum number of tasks running at once (1 = serial)",
    )
    run.add_argument(
        "--fail-fast",
        action="store_true",
        help="Do not start independent tasks after the first failure",
    )

    subparsers.add_parser("list", help="List the tasks defined in the taskfile")

    watch = subparsers.add_parser(
        "watch", help="Re-run bound tasks whenever matching files change"
    )
    watch.add_argument(
        "--set",
        dest="watch_set",
        default=DEFAULT_WATCH_SET,
        help=f"Watch set to serve (default: {DEFAULT_WATCH_SET})",
    )
    watch.add_argument(
        "--debounce-ms",
        type=int,
        default=None,
        help="Quiet period used to coalesce bursts of file events",
    )
    watch.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum number of tasks running at once (1 = serial)",
    )

    subparsers.add_parser("last-report", help="Print the report of the most recent run")

    return parser


def _run_until_complete(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` on a fresh event loop, cancelling it on SIGTERM.

    SIGINT is handled by :func:`asyncio.run`, which cancels the main task
    before raising KeyboardInterrupt.
    """

    async def _main() -> T:
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        if task is not None:
            try:
                loop.add_signal_handler(signal.SIGTERM, task.cancel)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms (Windows).
                logger.debug("SIGTERM handler not installed")
        return await coro

    return asyncio.run(_main())


def _report_failure(e: TaskFailure) -> None:
    print(f"Task '{e.name}' failed: {e.cause}", file=sys.stderr)
    if e.skipped:
        print(f"Skipped due to failed dependencies: {', '.join(e.skipped)}", file=sys.stderr)


def _cmd_run(args: argparse.Namespace, settings: RunnerSettings, taskfile: Taskfile) -> int:
    names = list(args.tasks) or [settings.default_task]
    if args.dry_run:
        for position, name in enumerate(taskfile.graph.resolve(names), start=1):
            print(f"{position}. {name}")
        return EXIT_OK

    runner = TaskRunner(
        taskfile.graph,
        max_parallel=args.max_parallel or settings.max_parallel,
        fail_fast=args.fail_fast or settings.fail_fast,
    )
    store = RunReportStore(settings.last_report_file)

    try:
        report = _run_until_complete(runner.run(names))
    except TaskFailure as e:
        if e.report is not None:
            store.save(e.report)
        _report_failure(e)
        return EXIT_TASK_FAILED

    store.save(report)
    print(report.summary())
    return EXIT_OK


def _cmd_list(taskfile: Taskfile) -> int:
    for task in taskfile.graph:
        line = task.name
        if task.dependencies:
            line += f" [{', '.join(task.dependencies)}]"
        if task.description:
            line += f" - {task.description}"
        print(line)
    return EXIT_OK


def _cmd_watch(args: argparse.Namespace, settings: RunnerSettings, taskfile: Taskfile) -> int:
    if not len(taskfile.watches):
        print(f"No watch bindings defined in {taskfile.path}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    bindings = taskfile.watches.select(args.watch_set)
    if not len(bindings):
        available = ", ".join(taskfile.watches.watch_sets())
        print(
            f"No watch set {args.watch_set!r} in {taskfile.path} (available: {available})",
            file=sys.stderr,
        )
        return EXIT_CONFIG_ERROR

    store = RunReportStore(settings.last_report_file)
    runner = TaskRunner(
        taskfile.graph,
        max_parallel=args.max_parallel or settings.max_parallel,
        fail_fast=settings.fail_fast,
    )
    debounce_ms = settings.watch_debounce_ms if args.debounce_ms is None else args.debounce_ms
    watcher = Watcher(
        runner,
        bindings,
        root=Path.cwd(),
        debounce_ms=debounce_ms,
        on_report=store.save,
    )
    _run_until_complete(watcher.serve())
    return EXIT_OK


def _cmd_last_report(settings: RunnerSettings) -> int:
    report: RunReport | None = RunReportStore(settings.last_report_file).load()
    if report is None:
        print(f"No run report found at {settings.last_report_file}", file=sys.stderr)
        return EXIT_OK
    print(report.model_dump_json(indent=2))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RunnerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment / .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level, settings.log_format)

    if getattr(args, "max_parallel", None) is not None and args.max_parallel < 1:
        print("--max-parallel must be at least 1", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "last-report":
            return _cmd_last_report(settings)

        taskfile_path = Path(args.taskfile) if args.taskfile else settings.taskfile
        taskfile = load_taskfile(taskfile_path)

        if args.command == "run":
            return _cmd_run(args, settings, taskfile)
        if args.command == "list":
            return _cmd_list(taskfile)
        if args.command == "watch":
            return _cmd_watch(args, settings, taskfile)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG_ERROR

    except TaskfileError as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    except GraphConstructionError as e:
        logger.error("Invalid task graph", extra={"error": str(e)})
        print(f"Invalid task graph: {e}", file=sys.stderr)
        return EXIT_GRAPH_ERROR

    except (KeyboardInterrupt, asyncio.CancelledError):
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED

    except Exception:
        logger.exception("Command failed")
        return EXIT_TASK_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
