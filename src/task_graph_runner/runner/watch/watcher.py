"""File-watch mode: re-run task sets when matching files change.

Filesystem events are pushed onto a queue and consumed by a single loop.
The consumer waits for a quiet period (the debounce window) so a burst of
events becomes one run, then awaits that run before looking at the queue
again. Events arriving during a run are therefore coalesced into the next
run and never start an overlapping one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from watchfiles import Change, awatch

from ..graph.errors import GraphConstructionError, TaskFailure
from ..graph.executor import TaskRunner
from ..graph.report import RunReport
from .patterns import glob_base, matches, relative_posix, split_patterns

logger = logging.getLogger(__name__)

DEFAULT_WATCH_SET = "default"


class FileChange(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    @classmethod
    def from_watchfiles(cls, change: Change) -> FileChange:
        return {
            Change.added: cls.ADDED,
            Change.modified: cls.MODIFIED,
            Change.deleted: cls.DELETED,
        }[change]


@dataclass(frozen=True, slots=True)
class WatchBinding:
    """Glob patterns plus the task names to run when a matching file changes.

    ``watch_set`` names the group the binding belongs to; `taskgraph watch`
    serves one set at a time.
    """

    patterns: tuple[str, ...]
    task_names: tuple[str, ...]
    watch_set: str = DEFAULT_WATCH_SET

    def matches(self, relative_path: str) -> bool:
        return matches(relative_path, self.patterns)


@dataclass(frozen=True, slots=True)
class FileEvent:
    change: FileChange
    path: str
    bindings: tuple[WatchBinding, ...]


class WatchRegistry:
    """Ordered collection of watch bindings, independent of the task graph."""

    def __init__(self) -> None:
        self._bindings: list[WatchBinding] = []

    def __iter__(self) -> Iterator[WatchBinding]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def add(
        self,
        patterns: str | Iterable[str],
        names: str | Iterable[str],
        *,
        watch_set: str = DEFAULT_WATCH_SET,
    ) -> WatchBinding:
        if not isinstance(watch_set, str) or not watch_set.strip():
            raise ValueError(f"Watch set name must be a non-empty string, got {watch_set!r}")
        if isinstance(patterns, str):
            patterns = [patterns]
        if isinstance(names, str):
            names = [names]
        binding = WatchBinding(
            patterns=tuple(patterns),
            task_names=tuple(dict.fromkeys(names)),
            watch_set=watch_set,
        )
        includes, _ = split_patterns(binding.patterns)
        if not includes:
            raise ValueError("A watch binding needs at least one include pattern")
        if not binding.task_names:
            raise ValueError("A watch binding needs at least one task name")
        self._bindings.append(binding)
        return binding

    def watch_sets(self) -> list[str]:
        """Names of the watch sets in first-use order."""

        return list(dict.fromkeys(b.watch_set for b in self._bindings))

    def select(self, watch_set: str) -> WatchRegistry:
        """A registry holding only the bindings of ``watch_set``."""

        selected = WatchRegistry()
        selected._bindings = [b for b in self._bindings if b.watch_set == watch_set]
        return selected

    def matching(self, relative_path: str) -> list[WatchBinding]:
        return [b for b in self._bindings if b.matches(relative_path)]

    def task_names(self, bindings: Iterable[WatchBinding]) -> list[str]:
        """Union of the bindings' task names, in registration order."""

        triggered = set(bindings)
        names: dict[str, None] = {}
        for binding in self._bindings:
            if binding in triggered:
                names.update(dict.fromkeys(binding.task_names))
        return list(names)

    def base_dirs(self, root: Path) -> list[Path]:
        """Existing directories to subscribe to, without nested duplicates."""

        dirs: set[Path] = set()
        for binding in self._bindings:
            includes, _ = split_patterns(binding.patterns)
            for pattern in includes:
                candidate = (root / glob_base(pattern)).resolve()
                while not candidate.is_dir() and candidate != candidate.parent:
                    candidate = candidate.parent
                dirs.add(candidate)
        ordered = sorted(dirs, key=lambda p: len(p.parts))
        result: list[Path] = []
        for path in ordered:
            if not any(path == kept or kept in path.parents for kept in result):
                result.append(path)
        return result


class Watcher:
    """Feeds filesystem events to a single, serialising consumer loop."""

    def __init__(
        self,
        runner: TaskRunner,
        bindings: WatchRegistry,
        *,
        root: str | Path = ".",
        debounce_ms: int = 200,
        on_report: Callable[[RunReport], None] | None = None,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must not be negative")
        self._runner = runner
        self._bindings = bindings
        self._root = Path(root)
        self._debounce_ms = debounce_ms
        self._on_report = on_report
        self._queue: asyncio.Queue[FileEvent] = asyncio.Queue()
        self._runs = 0

    @property
    def runs(self) -> int:
        """Number of runs the consumer has completed (successful or not)."""

        return self._runs

    def notify(self, change: FileChange, path: str | Path) -> bool:
        """Queue a filesystem event; returns False if no binding matches it."""

        relative = relative_posix(path, self._root)
        if relative is None:
            return False
        triggered = tuple(self._bindings.matching(relative))
        if not triggered:
            return False
        logger.info(
            f"File {relative} was {change.value}. Running tasks...",
            extra={"path": relative, "change": change.value},
        )
        self._queue.put_nowait(FileEvent(change=change, path=relative, bindings=triggered))
        return True

    async def consume(self, *, max_runs: int | None = None) -> None:
        """Consume queued events until cancelled (or ``max_runs`` runs completed)."""

        window = self._debounce_ms / 1000
        while max_runs is None or self._runs < max_runs:
            batch = [await self._queue.get()]
            while True:
                try:
                    batch.append(await asyncio.wait_for(self._queue.get(), timeout=window))
                except TimeoutError:
                    break

            triggered = [b for event in batch for b in event.bindings]
            names = self._bindings.task_names(triggered)
            logger.debug("Coalesced file events", extra={"events": len(batch), "tasks": names})
            await self._run(names)

    async def _run(self, names: list[str]) -> None:
        report: RunReport | None = None
        try:
            report = await self._runner.run(names)
            logger.info("Watch run finished", extra={"tasks": names})
        except TaskFailure as e:
            report = e.report
            logger.error(
                "Watch run failed",
                extra={"task": e.name, "cause": str(e.cause), "skipped": e.skipped},
            )
        except GraphConstructionError:
            logger.exception("Watch run could not start", extra={"tasks": names})
        finally:
            self._runs += 1

        if report is not None and self._on_report is not None:
            self._on_report(report)

    def _filter(self, change: Change, path: str) -> bool:
        relative = relative_posix(path, self._root)
        return relative is not None and bool(self._bindings.matching(relative))

    async def serve(self) -> None:
        """Watch the filesystem and run bound tasks until cancelled."""

        dirs = self._bindings.base_dirs(self._root)
        if not dirs:
            logger.warning("No watch bindings configured; nothing to watch")
            return

        logger.info("Watching for changes", extra={"paths": [str(d) for d in dirs]})
        consumer = asyncio.create_task(self.consume(), name="watch-consumer")
        try:
            async for changes in awatch(
                *dirs,
                watch_filter=self._filter,
                debounce=max(self._debounce_ms, 50),
            ):
                if consumer.done():
                    # Surface a crashed consumer instead of watching without one.
                    consumer.result()
                for change, path in sorted(changes, key=lambda c: c[1]):
                    self.notify(FileChange.from_watchfiles(change), path)
        finally:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
            logger.info("Stopped watching")
