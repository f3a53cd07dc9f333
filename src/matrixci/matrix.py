# matrix.py
from __future__ import annotations

import itertools
import re
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigurationError
from .model import IncludeMode, JobInstance, Matrix, canonical

# "${{ matrix.optional }}" style reference to an axis value
MATRIX_REF = re.compile(r"^\s*\$\{\{\s*matrix\.([A-Za-z0-9_\-]+)\s*\}\}\s*$")

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}

Bindings = Tuple[Tuple[str, Any], ...]


def as_bool(value: Any, what: str) -> bool:
    """Accept a bool or a boolean-like string or int, as written in YAML or env."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    raise ConfigurationError(f"{what} must be a boolean, got {value!r}")


def resolve_flag(value: Union[bool, str, None], bindings: Mapping[str, Any], *, job: str) -> bool:
    """
    Resolve a continue_on_error setting for one instance.

    Accepts a bool, a boolean-like string, or a matrix reference such as
    "${{ matrix.optional }}".
    """
    if value is None:
        return False
    if isinstance(value, str):
        m = MATRIX_REF.match(value)
        if m:
            axis = m.group(1)
            if axis not in bindings:
                raise ConfigurationError(
                    f"Job '{job}': continue_on_error references undeclared axis '{axis}'. "
                    f"Declared axes: {list(bindings)}"
                )
            return as_bool(bindings[axis], f"Job '{job}': matrix.{axis}")
    return as_bool(value, f"Job '{job}': continue_on_error")


def check_timeout(value: Any, *, job: str, what: str = "timeout") -> Optional[float]:
    """Return `value` if it is a usable timeout in seconds, else raise."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"Job '{job}': {what} must be a positive number of seconds, got {value!r}")
    return value


def _check_axes(matrix: Matrix, job: str) -> List[str]:
    if not matrix.axes:
        raise ConfigurationError(f"Job '{job}': matrix declares no axes")
    for name, values in matrix.axes.items():
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise ConfigurationError(f"Job '{job}': matrix axis '{name}' must be a list of values")
        if len(values) == 0:
            raise ConfigurationError(f"Job '{job}': matrix axis '{name}' has no values")
    return list(matrix.axes)


def _check_keys(values: Mapping[str, Any], axes: List[str], what: str, job: str) -> None:
    unknown = [k for k in values if k not in axes]
    if unknown:
        raise ConfigurationError(
            f"Job '{job}': {what} references undeclared axis {unknown}. Declared axes: {axes}"
        )


def _matches(bindings: Bindings, partial: Mapping[str, Any]) -> bool:
    bound = {axis: canonical(value) for axis, value in bindings}
    return all(bound[axis] == canonical(value) for axis, value in partial.items())


def expand(
    matrix: Optional[Matrix],
    *,
    job: str = "",
    continue_on_error: Union[bool, str] = False,
    timeout: Optional[float] = None,
) -> List[JobInstance]:
    """
    Compile a matrix into an ordered, deduplicated list of JobInstances.

    Order:
      1. cartesian product of the axes, in declaration order
      2. "add" includes that introduce a new combination, in include order

    "override" includes and "add" includes that hit an existing combination
    only merge attributes. Excludes remove every matching combination,
    including added ones. A job without a matrix yields a single instance.
    """
    check_timeout(timeout, job=job)
    if matrix is None:
        return [
            JobInstance(
                job=job,
                continue_on_error=resolve_flag(continue_on_error, {}, job=job),
                timeout=timeout,
            )
        ]

    axes = _check_axes(matrix, job)

    # value-tuple key -> (bindings, override attributes); dict keeps first-seen order
    combos: Dict[Tuple[str, ...], Tuple[Bindings, Dict[str, Any]]] = {}
    for values in itertools.product(*(matrix.axes[a] for a in axes)):
        key = tuple(canonical(v) for v in values)
        combos.setdefault(key, (tuple(zip(axes, values)), {}))
    base_keys = set(combos)

    for idx, entry in enumerate(matrix.include, start=1):
        what = f"include #{idx}"
        _check_keys(entry.values, axes, what, job)

        mode = entry.mode or matrix.include_mode
        if mode is None:
            raise ConfigurationError(
                f"Job '{job}': {what} does not declare a mode. "
                f"Set mode: add|override on the entry or include_mode on the matrix."
            )
        try:
            mode = IncludeMode(mode)
        except ValueError:
            raise ConfigurationError(f"Job '{job}': {what} has unknown mode {mode!r}") from None

        attrs = entry.attributes()
        check_timeout(attrs.get("timeout"), job=job, what=f"{what} timeout")

        if mode is IncludeMode.ADD:
            missing = [a for a in axes if a not in entry.values]
            if missing:
                raise ConfigurationError(
                    f"Job '{job}': {what} is mode 'add' but gives no value for {missing}"
                )
            values = [entry.values[a] for a in axes]
            key = tuple(canonical(v) for v in values)
            if key in combos:
                combos[key][1].update(attrs)
            else:
                combos[key] = (tuple(zip(axes, values)), dict(attrs))
        else:
            for key in base_keys:
                bindings, existing = combos[key]
                if _matches(bindings, entry.values):
                    existing.update(attrs)

    for idx, exclusion in enumerate(matrix.exclude, start=1):
        what = f"exclude #{idx}"
        _check_keys(exclusion.values, axes, what, job)
        if not exclusion.values:
            raise ConfigurationError(f"Job '{job}': {what} is empty and would exclude everything")
        combos = {k: v for k, v in combos.items() if not _matches(v[0], exclusion.values)}

    instances: List[JobInstance] = []
    for bindings, attrs in combos.values():
        flag = attrs.get("continue_on_error", continue_on_error)
        instances.append(
            JobInstance(
                job=job,
                bindings=bindings,
                continue_on_error=resolve_flag(flag, dict(bindings), job=job),
                timeout=attrs.get("timeout", timeout),
            )
        )

    if not instances:
        raise ConfigurationError(f"Job '{job}': matrix produced no job instances")
    return instances
