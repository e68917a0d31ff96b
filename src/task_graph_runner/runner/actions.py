"""Reusable task actions.

Actions are zero-argument callables. The helpers here build actions that
delegate to external tools (a shell command) or perform the small file
chores build pipelines need (clean output directories, copy static files).
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .watch.patterns import expand_globs, glob_base

logger = logging.getLogger(__name__)

# Seconds a cancelled subprocess gets to exit after SIGTERM before it is killed.
TERMINATE_GRACE_SECONDS = 5.0

_POSIX = os.name == "posix"

# Output is read in fixed-size chunks so arbitrarily long lines never hit the
# StreamReader line limit.
READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Explicit outcome an action may return instead of raising."""

    ok: bool
    message: str = ""
    details: dict[str, object] | None = None


class ActionFailed(RuntimeError):
    """Raised by the runner for an ``ActionResult`` with ``ok=False``."""

    def __init__(self, result: ActionResult) -> None:
        super().__init__(result.message or "Action reported failure")
        self.result = result


class CommandFailed(RuntimeError):
    def __init__(self, command: str, returncode: int) -> None:
        super().__init__(f"Command exited with status {returncode}: {command}")
        self.command = command
        self.returncode = returncode


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    # Commands run in their own session so the whole pipeline gets the signal.
    try:
        if _POSIX:
            os.killpg(process.pid, sig)
        else:
            process.send_signal(sig)
    except ProcessLookupError:
        pass


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        _signal_group(process, signal.SIGKILL if _POSIX else signal.SIGTERM)
        await process.wait()


def _log_output(line: bytes, command: str) -> None:
    text = line.decode(errors="replace").rstrip()
    if text:
        logger.info(text, extra={"command": command})


async def _stream_output(stream: asyncio.StreamReader, command: str) -> None:
    pending = b""
    while chunk := await stream.read(READ_CHUNK_SIZE):
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            _log_output(line, command)
    if pending:
        _log_output(pending, command)


def shell(
    command: str,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Callable[[], Awaitable[None]]:
    """Build an action that runs ``command`` through the shell.

    Output is streamed to the log line by line. A non-zero exit raises
    :class:`CommandFailed`. If reading the output fails or the run is
    cancelled, the subprocess is terminated before the error propagates.
    """

    async def run_command() -> None:
        merged_env = None
        if env is not None:
            merged_env = {**os.environ, **env}

        logger.info("Running command", extra={"command": command, "cwd": str(cwd or ".")})
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env=merged_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=_POSIX,
        )
        try:
            assert process.stdout is not None
            await _stream_output(process.stdout, command)
            returncode = await process.wait()
        except BaseException:
            if process.returncode is None:
                logger.warning("Terminating command", extra={"command": command})
                await _terminate(process)
            raise

        if returncode != 0:
            raise CommandFailed(command, returncode)

    run_command.__name__ = "shell"
    run_command.__doc__ = f"$ {command}"
    return run_command


def remove_paths(*paths: str | Path) -> Callable[[], None]:
    """Build an action that deletes files and directory trees.

    Missing paths are ignored.
    """

    targets = [Path(p) for p in paths]

    def remove() -> None:
        for target in targets:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            else:
                continue
            logger.info("Removed path", extra={"path": str(target)})

    return remove


def copy_files(
    patterns: str | Iterable[str],
    dest: str | Path,
    *,
    base: str | Path = ".",
) -> Callable[[], ActionResult]:
    """Build an action that copies files matching ``patterns`` into ``dest``.

    Paths are kept relative to the static base of the pattern that matched
    them, so ``src/**/*.html`` copies ``src/a/index.html`` to
    ``<dest>/a/index.html``.
    """

    if isinstance(patterns, str):
        patterns = [patterns]
    pattern_list = list(patterns)
    root = Path(base)
    target_dir = Path(dest)

    def copy() -> ActionResult:
        copied = 0
        for path, pattern in expand_globs(pattern_list, root=root):
            relative = path.relative_to(root / glob_base(pattern))
            target = target_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            copied += 1
        logger.info("Copied files", extra={"count": copied, "dest": str(target_dir)})
        return ActionResult(ok=True, message=f"Copied {copied} file(s)", details={"count": copied})

    return copy
