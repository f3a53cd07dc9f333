# step_workflows/lint.py
from __future__ import annotations

import shlex
from typing import List

from ..model import Step

LINT_OPTIONS = {"tool", "args", "files"}


# ---------------------------------------------------------------------
# Lint step helper
# ---------------------------------------------------------------------

def lint_step(
    name: str,
    tool: str,
    args: str | None = None,
    *,
    cwd: str | None = None,
    files: List[str] | None = None,
) -> Step:
    """Create a lint step that runs a linting tool (e.g. `cargo fmt`, `ruff`)."""
    options: dict = {"tool": tool}
    if args:
        options["args"] = args
    if files:
        options["files"] = list(files)
    return Step(name=name, kind="lint", cwd=cwd, options=options)


# ---------------------------------------------------------------------
# Compilation to a shell command
# ---------------------------------------------------------------------

def lint_command(step: Step) -> str:
    """Turn a lint step into the shell command the runner executes."""
    opts = step.options
    parts = [str(opts["tool"])]

    lint_args = opts.get("args")
    if lint_args:
        parts.extend(shlex.split(str(lint_args)))

    files = opts.get("files")
    if files:
        parts.extend(str(f) for f in files)

    return shlex.join(parts)
