"""Configuration for the task runner CLI.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Command-line flags take precedence over both.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    """Settings for the task runner.

    Environment variables:
    - TASKGRAPH_TASKFILE           (optional)
    - LOG_LEVEL                    (optional)
    - TASKGRAPH_LOG_FORMAT         (optional, json | text)
    - TASKGRAPH_DEFAULT_TASK       (optional)
    - TASKGRAPH_MAX_PARALLEL       (optional)
    - TASKGRAPH_FAIL_FAST          (optional)
    - TASKGRAPH_WATCH_DEBOUNCE_MS  (optional)
    - TASKGRAPH_STATE_PATH         (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `RunnerSettings(_env_file=path_to_env)`.
    """

    taskfile: Path = Field(
        default=Path("taskfile.py"),
        validation_alias="TASKGRAPH_TASKFILE",
        description="Python module defining `configure(graph, watches)`",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="TASKGRAPH_LOG_FORMAT",
        description="Structured JSON lines or plain text for interactive use",
    )

    default_task: str = Field(
        default="default",
        min_length=1,
        validation_alias="TASKGRAPH_DEFAULT_TASK",
        description="Task run when `taskgraph run` is given no task names",
    )
    max_parallel: int | None = Field(
        default=None,
        ge=1,
        validation_alias="TASKGRAPH_MAX_PARALLEL",
        description="Maximum number of concurrently running actions (unset = unbounded)",
    )
    fail_fast: bool = Field(
        default=False,
        validation_alias="TASKGRAPH_FAIL_FAST",
        description="Stop starting new tasks after the first failure",
    )

    watch_debounce_ms: int = Field(
        default=200,
        ge=0,
        validation_alias="TASKGRAPH_WATCH_DEBOUNCE_MS",
        description="Quiet period used to coalesce bursts of file events in watch mode",
    )

    state_path: Path = Field(
        default=Path(".taskgraph"),
        validation_alias="TASKGRAPH_STATE_PATH",
        description="Directory where local runner state is persisted",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_log_level(self) -> RunnerSettings:
        if self.log_level.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL is not a logging level: {self.log_level!r}")
        return self

    @property
    def last_report_file(self) -> Path:
        """Path where the report of the most recent run is persisted."""

        return self.state_path / "last_run.json"
