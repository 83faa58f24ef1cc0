"""Typed model of the ansible-playbook JSON stdout callback document.

The document nests plays -> tasks -> per-host results and ends with a
per-host stats block. Host results keep every field Ansible emits; the
ones this service reads are declared explicitly.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ResultParseError(ValueError):
    """Raised when playbook output does not contain a valid result document."""


class FlexibleModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class Duration(FlexibleModel):
    start: str | None = None
    end: str | None = None


class PlayInfo(FlexibleModel):
    id: str | None = None
    name: str = ""
    duration: Duration | None = None


class TaskInfo(FlexibleModel):
    id: str | None = None
    name: str = ""
    duration: Duration | None = None


class HostResult(FlexibleModel):
    action: str | None = None
    changed: bool = False
    failed: bool = False
    skipped: bool = False
    unreachable: bool = False
    # `cmd` is a string for shell/raw and a list for command; `msg` varies by module.
    cmd: Any = None
    msg: Any = None
    rc: int | None = None
    stdout: str = ""
    stderr: str = ""
    stdout_lines: list[str] = Field(default_factory=list)
    stderr_lines: list[str] = Field(default_factory=list)


class TaskResult(FlexibleModel):
    task: TaskInfo
    hosts: dict[str, HostResult] = Field(default_factory=dict)


class PlayResult(FlexibleModel):
    play: PlayInfo
    tasks: list[TaskResult] = Field(default_factory=list)


class HostStats(FlexibleModel):
    changed: int = 0
    failures: int = 0
    ignored: int = 0
    ok: int = 0
    rescued: int = 0
    skipped: int = 0
    unreachable: int = 0


class PlaybookResults(FlexibleModel):
    plays: list[PlayResult] = Field(default_factory=list)
    stats: dict[str, HostStats] = Field(default_factory=dict)

    def host_outcomes(self) -> Iterator[HostOutcome]:
        """Flatten plays/tasks/hosts into one record per host per task."""
        for play in self.plays:
            for task in play.tasks:
                for host, result in task.hosts.items():
                    yield HostOutcome(
                        play=play.play.name,
                        task=task.task.name,
                        host=host,
                        result=result,
                    )

    def has_failures(self) -> bool:
        return any(
            stats.failures > 0 or stats.unreachable > 0 for stats in self.stats.values()
        )


@dataclass(frozen=True)
class HostOutcome:
    play: str
    task: str
    host: str
    result: HostResult

    @property
    def state(self) -> str:
        if self.result.unreachable:
            return "unreachable"
        if self.result.failed:
            return "failed"
        if self.result.skipped:
            return "skipped"
        if self.result.changed:
            return "changed"
        return "ok"


def parse_results_stream(output: str) -> PlaybookResults:
    """Parse callback output, skipping any warnings printed before the JSON body."""
    lines = output.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if line.lstrip().startswith("{"):
            document = "".join(lines[index:])
            break
    else:
        raise ResultParseError("No JSON document found in playbook output")

    try:
        raw = json.loads(document)
    except json.JSONDecodeError as exc:
        raise ResultParseError(f"Malformed playbook output: {exc}") from exc
    try:
        return PlaybookResults.model_validate(raw)
    except ValidationError as exc:
        raise ResultParseError(f"Unexpected playbook output shape: {exc}") from exc


def dump_results(results: PlaybookResults) -> str:
    return json.dumps(results.model_dump(mode="json"), indent=4)
