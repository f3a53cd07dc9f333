# errors.py
from __future__ import annotations

from dataclasses import dataclass


class ConfigurationError(ValueError):
    """Invalid pipeline definition. Raised before any step executes."""


@dataclass
class StepFailure(Exception):
    """A step failed inside one job instance; remaining steps are not run."""
    instance: str
    step: str
    cmd: str
    exit_code: int | None
    output: str = ""
    reason: str | None = None

    def __str__(self) -> str:
        why = self.reason or f"exit={self.exit_code}"
        return f"[{self.instance}] step '{self.step}' failed ({why}): {self.cmd}"
