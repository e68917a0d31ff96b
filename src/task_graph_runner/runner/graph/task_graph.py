"""Task registry and dependency graph.

The graph is an explicitly constructed object: callers build one, register
tasks on it, and hand it to a :class:`~task_graph_runner.runner.graph.executor.TaskRunner`.
There is no process-wide registry.

Rules:
- names are unique; re-registering a name raises unless ``replace=True``
- dependencies may be declared before they are registered (forward
  references); unknown names are reported when the graph is resolved
- a registration that closes a cycle among registered tasks is rejected
  immediately and rolled back
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from .errors import CycleError, DuplicateTaskError, UnknownDependencyError, UnknownTaskError

logger = logging.getLogger(__name__)

Action = Callable[[], object]

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass(frozen=True, slots=True)
class Task:
    """A named unit of work with declared dependencies."""

    name: str
    dependencies: tuple[str, ...] = ()
    action: Action | None = field(default=None, compare=False)
    description: str | None = None
    index: int = 0


def _first_line(text: str | None) -> str | None:
    if not text:
        return None
    for line in text.strip().splitlines():
        if line.strip():
            return line.strip()
    return None


class TaskGraph:
    """Registry of tasks forming a directed acyclic "depends on" graph."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._next_index = 0

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(sorted(self._tasks.values(), key=lambda t: t.index))

    def names(self) -> list[str]:
        """Registered task names in registration order."""

        return [t.name for t in self]

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def register(
        self,
        name: str,
        dependencies: Iterable[str] = (),
        action: Action | None = None,
        *,
        description: str | None = None,
        replace: bool = False,
    ) -> Task:
        """Add a task to the graph.

        Raises:
            ValueError: If the name is empty or a dependency is not a string.
            DuplicateTaskError: If ``name`` is already registered and ``replace`` is false.
            CycleError: If the registration closes a dependency cycle.
        """

        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Task name must be a non-empty string, got {name!r}")
        if isinstance(dependencies, str):
            dependencies = [dependencies]
        deps = tuple(dict.fromkeys(dependencies))
        for dep in deps:
            if not isinstance(dep, str) or not dep.strip():
                raise ValueError(f"Task {name!r} has an invalid dependency name: {dep!r}")
        if action is not None and not callable(action):
            raise ValueError(f"Task {name!r} action is not callable")

        previous = self._tasks.get(name)
        if previous is not None and not replace:
            raise DuplicateTaskError(name)

        if previous is not None:
            index = previous.index
        else:
            index = self._next_index

        task = Task(
            name=name,
            dependencies=deps,
            action=action,
            description=description,
            index=index,
        )
        self._tasks[name] = task

        cycle = self._find_cycle([name])
        if cycle is not None:
            if previous is None:
                del self._tasks[name]
            else:
                self._tasks[name] = previous
            raise CycleError(cycle)

        if previous is None:
            self._next_index += 1
        else:
            logger.debug("Task redefined", extra={"task": name})
        return task

    def task(
        self,
        name: str | None = None,
        dependencies: Iterable[str] = (),
        *,
        description: str | None = None,
        replace: bool = False,
    ) -> Callable[[Action], Action]:
        """Decorator form of :meth:`register`.

        The task name defaults to the function name with underscores turned
        into dashes; the description defaults to the docstring's first line.
        """

        def decorator(fn: Action) -> Action:
            task_name = name or getattr(fn, "__name__", "").replace("_", "-")
            self.register(
                task_name,
                dependencies,
                fn,
                description=description or _first_line(fn.__doc__),
                replace=replace,
            )
            return fn

        return decorator

    def validate(self) -> None:
        """Check the whole graph for unknown dependencies and cycles."""

        for task in self:
            for dep in task.dependencies:
                if dep not in self._tasks:
                    raise UnknownDependencyError(task.name, dep)
        cycle = self._find_cycle(self.names())
        if cycle is not None:
            raise CycleError(cycle)

    def resolve(self, names: Iterable[str]) -> list[str]:
        """Return the dependency closure of ``names`` in topological order.

        Ties between tasks that are ready at the same time are broken by
        registration order, so the result is deterministic.
        """

        requested = list(dict.fromkeys(names))
        for name in requested:
            if name not in self._tasks:
                raise UnknownTaskError(name)

        closure: set[str] = set()
        stack = list(requested)
        while stack:
            current = stack.pop()
            if current in closure:
                continue
            closure.add(current)
            for dep in self._tasks[current].dependencies:
                if dep not in self._tasks:
                    raise UnknownDependencyError(current, dep)
                if dep not in closure:
                    stack.append(dep)

        cycle = self._find_cycle(sorted(closure, key=lambda n: self._tasks[n].index))
        if cycle is not None:
            raise CycleError(cycle)

        remaining = {n: len(self._tasks[n].dependencies) for n in closure}
        dependents = self.reverse_edges(closure)
        ready = [(self._tasks[n].index, n) for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, current = heapq.heappop(ready)
            order.append(current)
            for child in dependents[current]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    heapq.heappush(ready, (self._tasks[child].index, child))
        return order

    def reverse_edges(self, within: Iterable[str]) -> dict[str, list[str]]:
        """Map each task in ``within`` to its direct dependents in ``within``."""

        members = set(within)
        dependents: dict[str, list[str]] = {n: [] for n in members}
        for name in sorted(members, key=lambda n: self._tasks[n].index):
            for dep in self._tasks[name].dependencies:
                if dep in members:
                    dependents[dep].append(name)
        return dependents

    def dependents_of(self, name: str, within: Iterable[str]) -> list[str]:
        """Transitive dependents of ``name`` inside ``within``, in registration order."""

        dependents = self.reverse_edges(within)
        seen: set[str] = set()
        stack = list(dependents.get(name, []))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(dependents[current])
        return sorted(seen, key=lambda n: self._tasks[n].index)

    def _registered_dependencies(self, name: str) -> list[str]:
        return [d for d in self._tasks[name].dependencies if d in self._tasks]

    def _find_cycle(self, roots: Iterable[str]) -> list[str] | None:
        """Depth-first search with white/gray/black colouring.

        Unregistered dependencies are ignored here; they are reported by
        :meth:`validate` and :meth:`resolve`.
        """

        color: dict[str, int] = {}
        for root in roots:
            if color.get(root, _WHITE) != _WHITE:
                continue
            color[root] = _GRAY
            path = [root]
            stack = [iter(self._registered_dependencies(root))]
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    stack.pop()
                    color[path.pop()] = _BLACK
                    continue
                state = color.get(dep, _WHITE)
                if state == _GRAY:
                    return path[path.index(dep) :] + [dep]
                if state == _WHITE:
                    color[dep] = _GRAY
                    path.append(dep)
                    stack.append(iter(self._registered_dependencies(dep)))
        return None
