# model.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class Status(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class IncludeMode(str, Enum):
    """How an include entry is applied to the generated matrix."""
    ADD = "add"            # fully specified combination, appended if new
    OVERRIDE = "override"  # partial match, merges attributes only


def canonical(value: Any) -> str:
    """Stable text form of an axis value, used for identity and matching."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


# ----------------------------------------------------------------------
# Definition side
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """
    A single step reference inside a job.

    `kind` selects how the step is turned into a command ("sh", "lint",
    "test"); `options` holds the kind-specific settings.
    """
    name: str
    run: str | None = None
    cwd: str | None = None
    kind: str = "sh"
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IncludeEntry:
    values: Dict[str, Any]
    mode: Optional[IncludeMode] = None
    continue_on_error: Optional[bool] = None
    timeout: Optional[float] = None

    def attributes(self) -> Dict[str, Any]:
        """Override attributes actually set on this entry."""
        attrs: Dict[str, Any] = {}
        if self.continue_on_error is not None:
            attrs["continue_on_error"] = self.continue_on_error
        if self.timeout is not None:
            attrs["timeout"] = self.timeout
        return attrs


@dataclass
class ExcludeEntry:
    values: Dict[str, Any]


@dataclass
class Matrix:
    """Axis set plus include/exclude rules for one job."""
    axes: Dict[str, List[Any]]
    include: List[IncludeEntry] = field(default_factory=list)
    exclude: List[ExcludeEntry] = field(default_factory=list)
    # default mode for include entries that do not declare one
    include_mode: Optional[IncludeMode] = None


@dataclass(frozen=True)
class TriggerRule:
    event: EventKind
    branches: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Event:
    """An incoming trigger: what happened, and on which branch."""
    kind: EventKind
    branch: str


@dataclass
class Job:
    """
    A job definition: steps + dependencies + an optional matrix.

    `continue_on_error` is either a bool or a "${{ matrix.<axis> }}"
    reference resolved against each instance's bindings.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    matrix: Optional[Matrix] = None
    continue_on_error: Union[bool, str] = False
    timeout: Optional[float] = None
    env: Dict[str, str] = field(default_factory=dict)
    # job runs only when the event matches one of these; empty = always
    triggers: list[TriggerRule] = field(default_factory=list)
    runs_on: Optional[str] = None


@dataclass
class Pipeline:
    name: str
    jobs: list[Job]
    triggers: list[TriggerRule] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ----------------------------------------------------------------------
# Execution side
# ----------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class JobInstance:
    """One concrete, fully-bound execution unit of a job."""
    job: str
    bindings: Tuple[Tuple[str, Any], ...] = ()
    continue_on_error: bool = False
    timeout: Optional[float] = None

    @property
    def key(self) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return self.job, tuple((axis, canonical(value)) for axis, value in self.bindings)

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self.bindings)

    @property
    def label(self) -> str:
        if not self.bindings:
            return self.job
        shown = ", ".join(_format_value(v) for _axis, v in self.bindings)
        return f"{self.job} ({shown})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JobInstance):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value if value else "''"
    return canonical(value)


@dataclass
class ExecutionResult:
    instance: JobInstance
    status: Status
    step: Optional[str] = None      # failing step, if any
    output: str = ""
    reason: Optional[str] = None
    duration: float = 0.0

    @property
    def non_blocking(self) -> bool:
        return self.status is Status.FAILED and self.instance.continue_on_error

    @property
    def blocking(self) -> bool:
        return self.status is Status.FAILED and not self.instance.continue_on_error


def aggregate_status(results: list[ExecutionResult]) -> Status:
    """Failed iff a non-fault-tolerant instance failed; skips do not count."""
    if any(r.blocking for r in results):
        return Status.FAILED
    return Status.PASSED


@dataclass
class PipelineResult:
    pipeline: str
    status: Status
    results: list[ExecutionResult] = field(default_factory=list)
    job_status: Dict[str, Status] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def passed(self) -> bool:
        return self.status is not Status.FAILED

    def for_job(self, name: str) -> list[ExecutionResult]:
        return [r for r in self.results if r.instance.job == name]
