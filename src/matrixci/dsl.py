# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import ConfigurationError
from .model import (
    EventKind,
    ExcludeEntry,
    IncludeEntry,
    IncludeMode,
    Job,
    Matrix,
    Pipeline,
    Step,
    TriggerRule,
)
from .step_workflows.lint import lint_step
from .step_workflows.test import test_step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


# ---------------------------------------------------------------------
# Matrix helpers
# ---------------------------------------------------------------------

def include(
    values: Optional[Dict[str, Any]] = None,
    /,
    *,
    mode: Union[IncludeMode, str, None] = None,
    continue_on_error: Optional[bool] = None,
    timeout: Optional[float] = None,
    **axes: Any,
) -> IncludeEntry:
    """
    include(toolchain="nightly", features="nightly", mode="add", continue_on_error=True)

    Pass axis values as a dict when an axis name clashes with a keyword.
    """
    merged = dict(values or {})
    merged.update(axes)
    return IncludeEntry(
        values=merged,
        mode=IncludeMode(mode) if mode is not None else None,
        continue_on_error=continue_on_error,
        timeout=timeout,
    )


def exclude(values: Optional[Dict[str, Any]] = None, /, **axes: Any) -> ExcludeEntry:
    merged = dict(values or {})
    merged.update(axes)
    return ExcludeEntry(values=merged)


def matrix(
    include: Iterable[IncludeEntry] = (),
    exclude: Iterable[ExcludeEntry] = (),
    *,
    include_mode: Union[IncludeMode, str, None] = None,
    **axes: Iterable[Any],
) -> Matrix:
    """
    Example:
        matrix(toolchain=["stable", "beta"], features=[""],
               include=[include(toolchain="nightly", features="nightly",
                                mode="add", continue_on_error=True)])
    """
    return Matrix(
        axes={k: list(v) for k, v in axes.items()},
        include=list(include),
        exclude=list(exclude),
        include_mode=IncludeMode(include_mode) if include_mode is not None else None,
    )


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on_push(*branches: str) -> TriggerRule:
    return TriggerRule(event=EventKind.PUSH, branches=tuple(branches))


def on_pull_request(*branches: str) -> TriggerRule:
    return TriggerRule(event=EventKind.PULL_REQUEST, branches=tuple(branches))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    matrix: Optional[Matrix] = None,
    continue_on_error: Union[bool, str] = False,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
    triggers: Optional[List[TriggerRule]] = None,
    runs_on: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ConfigurationError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        matrix=matrix,
        continue_on_error=continue_on_error,
        timeout=timeout,
        env={k: str(v) for k, v in (env or {}).items()},
        triggers=list(triggers or []),
        runs_on=runs_on,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._matrix: Optional[Matrix] = None
        self._continue_on_error: Union[bool, str] = False
        self._timeout: Optional[float] = None
        self._triggers: list[TriggerRule] = []
        self._runs_on: Optional[str] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def add_step(self, step: Step):
        self._steps.append(step)
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_matrix(self, m: Matrix):
        self._matrix = m
        return self

    def allow_failure(self, flag: Union[bool, str] = True):
        self._continue_on_error = flag
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def only_on(self, *rules: TriggerRule):
        self._triggers.extend(rules)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ConfigurationError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            matrix=self._matrix,
            continue_on_error=self._continue_on_error,
            timeout=self._timeout,
            env=dict(self._env),
            triggers=list(self._triggers),
            runs_on=self._runs_on,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *jobs: Job,
    triggers: Optional[List[TriggerRule]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Pipeline definition helper.

    Users can write:
        from matrixci import dsl

        def pipeline():
            return dsl.pipeline(
                "ci",
                dsl.job(...),
                triggers=[dsl.on_push("master")],
            )

    Or define PIPELINE directly:
        PIPELINE = dsl.pipeline("ci", job(...))
    """
    return Pipeline(
        name=name,
        jobs=list(jobs),
        triggers=list(triggers or []),
        env={k: str(v) for k, v in (env or {}).items()},
    )


__all__ = [
    "sh",
    "lint_step",
    "test_step",
    "include",
    "exclude",
    "matrix",
    "on_push",
    "on_pull_request",
    "job",
    "JobBuilder",
    "build",
    "pipeline",
]
