# loader.py
from __future__ import annotations

import runpy
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ConfigurationError
from .matrix import check_timeout
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

YAML_SUFFIXES = (".yml", ".yaml")

_JOB_KEYS = {"name", "needs", "continue_on_error", "timeout", "runs_on", "env", "if", "matrix", "steps"}
_MATRIX_KEYS = {"axes", "include", "exclude", "include_mode"}
_STEP_KEYS = {"name", "run", "cwd", "kind", "with"}
_INCLUDE_ATTRS = {"mode", "continue_on_error", "timeout"}


# ----------------------------------------------------------------------
# Python workflow files
# ----------------------------------------------------------------------

def _load_python(path: Path) -> Pipeline:
    module_name = f"matrixci_pipeline_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    pipeline = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        try:
            pipeline = globals_dict["pipeline"]()
        except TypeError as e:
            if "required positional argument" in str(e):
                raise TypeError(
                    "Your pipeline() is being called with no arguments, but it looks like the "
                    "DSL helper. Import it under another name: "
                    "`from matrixci import dsl` then `def pipeline(): return dsl.pipeline(...)`"
                ) from e
            raise
    elif "PIPELINE" in globals_dict:
        pipeline = globals_dict["PIPELINE"]

    if not isinstance(pipeline, Pipeline):
        raise ConfigurationError(
            f"{path.name} must define pipeline() -> Pipeline or PIPELINE = Pipeline(...)."
        )
    return pipeline


# ----------------------------------------------------------------------
# YAML files
# ----------------------------------------------------------------------

def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"Pipeline file must contain a YAML mapping: {path}")
    return dict(payload)


def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, int, float, bool)):
        return [value]
    if isinstance(value, list):
        return value
    raise ConfigurationError(f"{what} must be a list, got {type(value).__name__}")


def _env(value: Any, what: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{what} must be a mapping")
    out: Dict[str, str] = {}
    for k, v in value.items():
        out[str(k)] = str(v).lower() if isinstance(v, bool) else str(v)
    return out


def _check_keys(data: Mapping, allowed: set, what: str) -> None:
    unknown = sorted(str(k) for k in set(data) - allowed)
    if unknown:
        raise ConfigurationError(f"{what}: unknown key(s) {unknown}. Allowed: {sorted(allowed)}")


def _triggers(value: Any, what: str) -> List[TriggerRule]:
    rules: List[TriggerRule] = []
    for idx, raw in enumerate(_as_list(value, what), start=1):
        if not isinstance(raw, Mapping) or "event" not in raw:
            raise ConfigurationError(f"{what} #{idx} must be a mapping with an 'event' key")
        _check_keys(raw, {"event", "branches"}, f"{what} #{idx}")
        try:
            kind = EventKind(raw["event"])
        except ValueError:
            raise ConfigurationError(
                f"{what} #{idx}: unknown event {raw['event']!r}. "
                f"Known events: {[k.value for k in EventKind]}"
            ) from None
        branches = tuple(str(b) for b in _as_list(raw.get("branches"), f"{what} #{idx} branches"))
        rules.append(TriggerRule(event=kind, branches=branches))
    return rules


def _mode(value: Any, what: str) -> IncludeMode | None:
    if value is None:
        return None
    try:
        return IncludeMode(value)
    except ValueError:
        raise ConfigurationError(f"{what}: unknown include mode {value!r} (use 'add' or 'override')") from None


def _matrix(raw: Any, job: str) -> Matrix:
    what = f"Job '{job}' matrix"
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{what} must be a mapping")
    _check_keys(raw, _MATRIX_KEYS, what)

    axes = raw.get("axes")
    if not isinstance(axes, Mapping):
        raise ConfigurationError(f"{what} needs an 'axes' mapping")

    includes: List[IncludeEntry] = []
    for idx, entry in enumerate(_as_list(raw.get("include"), f"{what} include"), start=1):
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"{what} include #{idx} must be a mapping")
        values = {str(k): v for k, v in entry.items() if k not in _INCLUDE_ATTRS}
        includes.append(
            IncludeEntry(
                values=values,
                mode=_mode(entry.get("mode"), f"{what} include #{idx}"),
                continue_on_error=entry.get("continue_on_error"),
                timeout=entry.get("timeout"),
            )
        )

    excludes: List[ExcludeEntry] = []
    for idx, entry in enumerate(_as_list(raw.get("exclude"), f"{what} exclude"), start=1):
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"{what} exclude #{idx} must be a mapping")
        excludes.append(ExcludeEntry(values={str(k): v for k, v in entry.items()}))

    return Matrix(
        axes={str(k): v for k, v in axes.items()},
        include=includes,
        exclude=excludes,
        include_mode=_mode(raw.get("include_mode"), what),
    )


def _step(raw: Any, job: str, idx: int) -> Step:
    what = f"Job '{job}' step #{idx}"
    if isinstance(raw, str):
        return Step(name=raw, run=raw)
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{what} must be a mapping or a command string")
    _check_keys(raw, _STEP_KEYS, what)

    kind = str(raw.get("kind", "sh"))
    options = raw.get("with") or {}
    if not isinstance(options, Mapping):
        raise ConfigurationError(f"{what}: 'with' must be a mapping")

    name = raw.get("name") or raw.get("run") or f"{kind} #{idx}"
    return Step(
        name=str(name),
        run=str(raw["run"]) if raw.get("run") is not None else None,
        cwd=str(raw["cwd"]) if raw.get("cwd") is not None else None,
        kind=kind,
        options=dict(options),
    )


def _job(name: str, raw: Any) -> Job:
    what = f"Job '{name}'"
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{what} must be a mapping")
    _check_keys(raw, _JOB_KEYS, what)

    timeout = check_timeout(raw.get("timeout"), job=name)

    return Job(
        name=name,
        steps=[_step(s, name, i) for i, s in enumerate(_as_list(raw.get("steps"), f"{what} steps"), start=1)],
        needs=[str(n) for n in _as_list(raw.get("needs"), f"{what} needs")],
        matrix=_matrix(raw["matrix"], name) if raw.get("matrix") is not None else None,
        continue_on_error=raw.get("continue_on_error", False),
        timeout=timeout,
        env=_env(raw.get("env"), f"{what} env"),
        triggers=_triggers(raw.get("if"), f"{what} if"),
        runs_on=raw.get("runs_on"),
    )


def pipeline_from_dict(data: Mapping[str, Any], *, default_name: str = "pipeline") -> Pipeline:
    """Build a Pipeline from the plain-data schema (as read from YAML)."""
    _check_keys(data, {"name", "env", "triggers", "jobs"}, "Pipeline")

    raw_jobs = data.get("jobs")
    jobs: List[Job] = []
    if isinstance(raw_jobs, Mapping):
        for name, raw in raw_jobs.items():
            jobs.append(_job(str(name), raw))
    elif isinstance(raw_jobs, list):
        for idx, raw in enumerate(raw_jobs, start=1):
            if not isinstance(raw, Mapping) or "name" not in raw:
                raise ConfigurationError(f"Job #{idx} must be a mapping with a 'name'")
            jobs.append(_job(str(raw["name"]), {k: v for k, v in raw.items() if k != "name"}))
    else:
        raise ConfigurationError("Pipeline needs a 'jobs' mapping")

    return Pipeline(
        name=str(data.get("name") or default_name),
        jobs=jobs,
        triggers=_triggers(data.get("triggers"), "Pipeline triggers"),
        env=_env(data.get("env"), "Pipeline env"),
    )


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline definition from a .py or .yml/.yaml file.

    A Python file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")

    if p.suffix == ".py":
        return _load_python(p)
    if p.suffix in YAML_SUFFIXES:
        return pipeline_from_dict(_load_yaml_mapping(p), default_name=p.stem)

    raise ConfigurationError(f"Pipeline must be a .py, .yml or .yaml file, got: {p.name}")
