"""Load task definitions from a Python taskfile.

A taskfile is an ordinary module that defines::

    def configure(graph: TaskGraph, watches: WatchRegistry) -> None:
        graph.register("clean", action=remove_paths("dist"))
        ...

The loader builds a fresh graph and watch registry for every call, so
nothing is shared between loads.
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from .graph.errors import GraphConstructionError
from .graph.task_graph import TaskGraph
from .watch.watcher import WatchRegistry

logger = logging.getLogger(__name__)

CONFIGURE_HOOK = "configure"


class TaskfileError(Exception):
    """The taskfile is missing or could not be loaded."""


@dataclass(frozen=True, slots=True)
class Taskfile:
    path: Path
    graph: TaskGraph
    watches: WatchRegistry


def load_taskfile(path: Path) -> Taskfile:
    """Import ``path`` and run its ``configure`` hook.

    Graph construction errors (duplicates, unknown dependencies, cycles)
    propagate unchanged so callers can tell them apart from a broken file.
    """

    if not path.is_file():
        raise TaskfileError(f"Taskfile not found: {path}")

    module_name = f"_taskgraph_taskfile_{abs(hash(path.resolve()))}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise TaskfileError(f"Cannot import taskfile: {path}")

    module = importlib.util.module_from_spec(spec)
    # Let the taskfile import helpers that live next to it.
    search_dir = str(path.resolve().parent)
    added = search_dir not in sys.path
    if added:
        sys.path.insert(0, search_dir)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise TaskfileError(f"Failed to import taskfile {path}: {e}") from e
    finally:
        if added:
            sys.path.remove(search_dir)

    configure = getattr(module, CONFIGURE_HOOK, None)
    if not callable(configure):
        raise TaskfileError(f"Taskfile {path} does not define {CONFIGURE_HOOK}(graph, watches)")

    graph = TaskGraph()
    watches = WatchRegistry()
    try:
        configure(graph, watches)
    except GraphConstructionError:
        raise
    except Exception as e:
        raise TaskfileError(f"Taskfile {path} failed to configure tasks: {e}") from e
    graph.validate()
    for binding in watches:
        for name in binding.task_names:
            graph.get(name)

    logger.debug(
        "Taskfile loaded",
        extra={"path": str(path), "tasks": len(graph), "watch_bindings": len(watches)},
    )
    return Taskfile(path=path, graph=graph, watches=watches)
