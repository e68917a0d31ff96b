"""Task Graph Runner.

A dependency-ordered task runner for build pipelines:
- tasks declared in a Python taskfile with explicit dependencies
- concurrent execution of independent branches
- a watch mode that re-runs task sets when files change
"""

__version__ = "0.1.0"

from task_graph_runner.runner.actions import ActionResult, copy_files, remove_paths, shell
from task_graph_runner.runner.graph.errors import (
    CycleError,
    DuplicateTaskError,
    GraphConstructionError,
    SkippedDueToDependency,
    TaskFailure,
    TaskGraphError,
    UnknownDependencyError,
    UnknownTaskError,
)
from task_graph_runner.runner.graph.executor import TaskRunner
from task_graph_runner.runner.graph.report import RunReport, TaskOutcome
from task_graph_runner.runner.graph.state_machine import TaskState
from task_graph_runner.runner.graph.task_graph import Task, TaskGraph
from task_graph_runner.runner.watch.watcher import WatchBinding, Watcher, WatchRegistry

__all__ = [
    "__version__",
    "ActionResult",
    "CycleError",
    "DuplicateTaskError",
    "GraphConstructionError",
    "RunReport",
    "SkippedDueToDependency",
    "Task",
    "TaskFailure",
    "TaskGraph",
    "TaskGraphError",
    "TaskOutcome",
    "TaskRunner",
    "TaskState",
    "UnknownDependencyError",
    "UnknownTaskError",
    "WatchBinding",
    "WatchRegistry",
    "Watcher",
    "copy_files",
    "remove_paths",
    "shell",
]
