"""Run reports and their local persistence.

A report is produced for every invocation of the runner, whether it
succeeds or not. The CLI persists the most recent one so it can be
inspected after the fact (`taskgraph last-report`).
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .state_machine import TaskState

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class TaskOutcome(BaseModel):
    """Final state of one task within one invocation."""

    name: str
    state: TaskState = TaskState.PENDING
    error: str | None = None
    blocked_by: str | None = Field(
        default=None,
        description="Failed task this task was waiting on (skipped outcomes only)",
    )
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class RunReport(BaseModel):
    """Summary of a single invocation."""

    requested: list[str] = Field(default_factory=list)
    order: list[str] = Field(default_factory=list)
    outcomes: list[TaskOutcome] = Field(default_factory=list)
    failed_task: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return all(o.state == TaskState.DONE for o in self.outcomes)

    @property
    def failed(self) -> list[str]:
        return [o.name for o in self.outcomes if o.state == TaskState.FAILED]

    @property
    def skipped(self) -> list[str]:
        return [o.name for o in self.outcomes if o.state == TaskState.SKIPPED]

    @property
    def executed(self) -> list[str]:
        """Names of tasks that reached ``done``, in completion order."""

        done = [o for o in self.outcomes if o.state == TaskState.DONE]
        done.sort(key=lambda o: o.finished_at or self.started_at)
        return [o.name for o in done]

    def outcome(self, name: str) -> TaskOutcome:
        for o in self.outcomes:
            if o.name == name:
                return o
        raise KeyError(name)

    def summary(self) -> str:
        if self.ok:
            return f"{len(self.outcomes)} task(s) completed: {', '.join(self.order) or 'none'}"
        lines = []
        for o in self.outcomes:
            if o.state == TaskState.FAILED:
                lines.append(f"Task '{o.name}' failed: {o.error}")
        skipped = self.skipped
        if skipped:
            lines.append(f"Skipped due to failed dependencies: {', '.join(skipped)}")
        return "\n".join(lines)


class RunReportStore:
    """JSON-file backed store for the most recent run report."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RunReport | None:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Run report file is not valid JSON; ignoring",
                extra={"path": str(self._path)},
            )
            return None
        if not isinstance(raw, dict):
            return None
        try:
            return RunReport.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Run report file does not match the report schema; ignoring",
                extra={"path": str(self._path), "errors": e.error_count()},
            )
            return None

    def save(self, report: RunReport) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
