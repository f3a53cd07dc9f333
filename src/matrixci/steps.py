# steps.py
from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .errors import ConfigurationError
from .matrix import as_bool
from .model import Step, canonical
from .step_workflows.lint import LINT_OPTIONS, lint_command
from .step_workflows.test import FRAMEWORKS, TEST_OPTIONS, test_command

# "${{ matrix.toolchain }}" anywhere inside a string
MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_\-]+)\s*\}\}")

OUTPUT_TAIL = 4000

TOOL_HINTS = {
    "cargo": "Install Rust (rustup) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "python": "Install Python 3 or fix PATH.",
}


@dataclass(frozen=True)
class StepKind:
    required: frozenset
    options: frozenset
    command: Callable[[Step], str]


def _sh_command(step: Step) -> str:
    return step.run or ""


# Closed set of recognized step kinds and their options.
STEP_KINDS: Dict[str, StepKind] = {
    "sh": StepKind(frozenset(), frozenset(), _sh_command),
    "lint": StepKind(frozenset({"tool"}), frozenset(LINT_OPTIONS), lint_command),
    "test": StepKind(frozenset({"framework"}), frozenset(TEST_OPTIONS), test_command),
}


# ----------------------------------------------------------------------
# Validation + interpolation (plan time)
# ----------------------------------------------------------------------

def validate_step(step: Step, *, job: str) -> None:
    kind = STEP_KINDS.get(step.kind)
    where = f"Job '{job}' step '{step.name}'"
    if kind is None:
        raise ConfigurationError(f"{where}: unknown step kind {step.kind!r}. Known kinds: {sorted(STEP_KINDS)}")

    if step.kind == "sh":
        if not step.run:
            raise ConfigurationError(f"{where}: 'sh' step needs a 'run' command")
        if step.options:
            raise ConfigurationError(f"{where}: 'sh' step takes no options, got {sorted(step.options)}")
        return

    if step.run:
        raise ConfigurationError(f"{where}: '{step.kind}' step does not take 'run'")
    unknown = set(step.options) - kind.options
    if unknown:
        raise ConfigurationError(
            f"{where}: unknown option(s) {sorted(unknown)} for kind '{step.kind}'. "
            f"Recognized: {sorted(kind.options)}"
        )
    missing = kind.required - set(step.options)
    if missing:
        raise ConfigurationError(f"{where}: missing required option(s) {sorted(missing)}")
    if step.kind == "test" and step.options["framework"] not in FRAMEWORKS:
        raise ConfigurationError(
            f"{where}: unknown test framework {step.options['framework']!r}. Known: {sorted(FRAMEWORKS)}"
        )
    if step.kind == "test" and "install" in step.options:
        as_bool(step.options["install"], f"{where}: install")


def _interpolate_str(text: str, values: Mapping[str, Any], where: str) -> str:
    def sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in values:
            raise ConfigurationError(f"{where}: references undeclared axis 'matrix.{axis}'")
        value = values[axis]
        return value if isinstance(value, str) else canonical(value)

    return MATRIX_EXPR.sub(sub, text)


def _interpolate(value: Any, values: Mapping[str, Any], where: str) -> Any:
    if isinstance(value, str):
        return _interpolate_str(value, values, where)
    if isinstance(value, list):
        return [_interpolate(v, values, where) for v in value]
    if isinstance(value, dict):
        return {k: _interpolate(v, values, where) for k, v in value.items()}
    return value


def resolve_step(step: Step, values: Mapping[str, Any], *, job: str) -> Step:
    """
    Return a copy of `step` with matrix expressions replaced by the
    instance's axis values. Other expressions (secrets, env) stay opaque.
    """
    where = f"Job '{job}' step '{step.name}'"
    return replace(
        step,
        name=_interpolate_str(step.name, values, where),
        run=_interpolate_str(step.run, values, where) if step.run else step.run,
        cwd=_interpolate_str(step.cwd, values, where) if step.cwd else step.cwd,
        options=_interpolate(dict(step.options), values, where),
    )


def resolve_env(env: Mapping[str, Any], values: Mapping[str, Any], *, job: str) -> Dict[str, str]:
    where = f"Job '{job}' env"
    return {str(k): _interpolate_str(str(v), values, where) for k, v in env.items()}


def command_for(step: Step) -> str:
    return STEP_KINDS[step.kind].command(step)


def matrix_env(values: Mapping[str, Any]) -> Dict[str, str]:
    """Export instance bindings as MATRIX_<AXIS> variables."""
    env: Dict[str, str] = {}
    for axis, value in values.items():
        name = "MATRIX_" + re.sub(r"[^A-Za-z0-9]", "_", axis).upper()
        env[name] = value if isinstance(value, str) else canonical(value)
    return env


# ----------------------------------------------------------------------
# Step runner contract
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Outcome:
    ok: bool
    output: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False


class StepRunner(Protocol):
    def run(self, step: Step, env: Mapping[str, str], *, timeout: Optional[float] = None) -> Outcome:
        ...


class ShellStepRunner:
    """Runs steps as shell commands in a working directory."""

    def __init__(self, root: str | Path = ".", shell: str | None = None):
        self.root = Path(root).resolve()
        self.shell = shell

    def run(self, step: Step, env: Mapping[str, str], *, timeout: Optional[float] = None) -> Outcome:
        cwd = (self.root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            return Outcome(ok=False, output=f"cwd not found: {cwd}")

        cmd = command_for(step)
        full_env = os.environ.copy()
        full_env.update(env)

        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                executable=self.shell,
                cwd=str(cwd),
                env=full_env,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            partial = e.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return Outcome(ok=False, output=partial[-OUTPUT_TAIL:], timed_out=True)

        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode == 127:
            tool = cmd.split()[0] if cmd.split() else ""
            hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
            output += f"\nHint: {hint}"
        return Outcome(ok=proc.returncode == 0, output=output[-OUTPUT_TAIL:], exit_code=proc.returncode)
