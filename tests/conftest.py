from __future__ import annotations

import threading
import time
from typing import Callable, List, Mapping, Optional, Tuple

import pytest

from matrixci.model import Step
from matrixci.steps import Outcome
from matrixci.ui.console import Console, set_console


class FakeStepRunner:
    """Step runner that records calls and fails on demand."""

    def __init__(
        self,
        fail: Optional[Callable[[Step, Mapping[str, str]], bool]] = None,
        delay: float = 0.0,
    ):
        self.fail = fail or (lambda step, env: False)
        self.delay = delay
        self.calls: List[Tuple[str, dict]] = []
        self._lock = threading.Lock()

    def run(self, step: Step, env: Mapping[str, str], *, timeout: Optional[float] = None) -> Outcome:
        with self._lock:
            self.calls.append((step.name, dict(env)))
        if self.delay:
            time.sleep(self.delay)
        if self.fail(step, env):
            return Outcome(ok=False, output=f"{step.name} broke", exit_code=1)
        return Outcome(ok=True, output=f"{step.name} ok", exit_code=0)

    def ran(self, step_name: str) -> List[dict]:
        return [env for name, env in self.calls if name == step_name]


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def runner() -> FakeStepRunner:
    return FakeStepRunner()


@pytest.fixture
def make_runner():
    return FakeStepRunner
