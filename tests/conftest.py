"""Test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from task_graph_runner.runner.graph.task_graph import TaskGraph

from .fakes import CallRecorder


@pytest.fixture
def recorder() -> CallRecorder:
    return CallRecorder()


@pytest.fixture
def graph() -> TaskGraph:
    return TaskGraph()


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A temporary working directory with runner env vars cleared."""

    for var in (
        "TASKGRAPH_TASKFILE",
        "LOG_LEVEL",
        "TASKGRAPH_LOG_FORMAT",
        "TASKGRAPH_DEFAULT_TASK",
        "TASKGRAPH_MAX_PARALLEL",
        "TASKGRAPH_FAIL_FAST",
        "TASKGRAPH_WATCH_DEBOUNCE_MS",
        "TASKGRAPH_STATE_PATH",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
