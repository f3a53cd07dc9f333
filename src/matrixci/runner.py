# runner.py
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .dag import build_dag
from .errors import StepFailure
from .model import Event, ExecutionResult, JobInstance, Pipeline, PipelineResult, Status, Step, aggregate_status
from .plan import Plan, PlannedInstance, PlannedJob, compile_plan
from .steps import Outcome, ShellStepRunner, StepRunner, command_for
from .triggers import is_triggered
from .ui.console import get_console


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_step(
    instance: JobInstance,
    step: Step,
    runner: StepRunner,
    env: Mapping[str, str],
    timeout: Optional[float],
) -> Outcome:
    try:
        outcome = runner.run(step, env, timeout=timeout)
    except Exception as e:
        # a crashing step runner fails the step, not the pipeline run
        raise StepFailure(
            instance=instance.label,
            step=step.name,
            cmd=command_for(step),
            exit_code=None,
            reason=f"{type(e).__name__}: {e}",
        ) from e

    if outcome.timed_out:
        raise StepFailure(
            instance=instance.label,
            step=step.name,
            cmd=command_for(step),
            exit_code=outcome.exit_code,
            output=outcome.output,
            reason="timed out",
        )
    if not outcome.ok:
        raise StepFailure(
            instance=instance.label,
            step=step.name,
            cmd=command_for(step),
            exit_code=outcome.exit_code,
            output=outcome.output,
            reason=f"exit code {outcome.exit_code}" if outcome.exit_code is not None else "step failed",
        )
    return outcome


def _run_instance(planned: PlannedInstance, runner: StepRunner, cancel: threading.Event) -> ExecutionResult:
    """
    Run one instance's steps strictly in order, stopping at the first failure.
    Never raises: every way an instance can end is an ExecutionResult.
    """
    console = get_console()
    instance = planned.instance

    if cancel.is_set():
        return ExecutionResult(instance=instance, status=Status.SKIPPED, reason="cancelled")

    console.print_instance_start(instance.label)
    start = time.monotonic()
    deadline = start + instance.timeout if instance.timeout is not None else None
    outputs: List[str] = []

    def finish(status: Status, **kw) -> ExecutionResult:
        output = "\n".join(o for o in outputs if o)
        return ExecutionResult(
            instance=instance,
            status=status,
            output=output,
            duration=time.monotonic() - start,
            **kw,
        )

    try:
        for idx, step in enumerate(planned.steps):
            if idx and cancel.is_set():
                return finish(Status.SKIPPED, step=step.name, reason="cancelled")

            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return finish(Status.FAILED, step=step.name, reason="timed out")

            console.print_step(instance.label, step.name)
            outcome = _run_step(instance, step, runner, planned.env, remaining)
            outputs.append(outcome.output)

            if deadline is not None and time.monotonic() > deadline:
                return finish(Status.FAILED, step=step.name, reason="timed out")
    except StepFailure as e:
        console.print_debug(str(e))
        outputs.append(e.output)
        return finish(Status.FAILED, step=e.step, reason=e.reason)

    return finish(Status.PASSED)


def _skip_all(planned: PlannedJob, reason: str) -> List[ExecutionResult]:
    return [
        ExecutionResult(instance=p.instance, status=Status.SKIPPED, reason=reason)
        for p in planned.instances
    ]


def _job_status(results: List[ExecutionResult]) -> Status:
    if all(r.status is Status.SKIPPED for r in results):
        return Status.SKIPPED
    return aggregate_status(results)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute_plan(
    plan: Plan,
    event: Event,
    *,
    step_runner: StepRunner,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
    fail_fast: bool = False,
) -> PipelineResult:
    """
    Run a compiled plan.

    - Jobs start once all their dependencies finished.
    - A job whose dependency did not pass, or whose own triggers do not
      match the event, has all its instances recorded as skipped.
    - Instances of all running jobs share one pool of `max_workers` slots
      (default: one slot per instance).
    - With `fail_fast`, the first blocking failure cancels the rest.
    """
    console = get_console()
    cancel = cancel or threading.Event()

    jobs: Dict[str, PlannedJob] = {pj.name: pj for pj in plan.jobs}
    rank = {pj.name: i for i, pj in enumerate(plan.jobs)}
    adj, indeg = build_dag([pj.job for pj in plan.jobs])

    results: Dict[Tuple, ExecutionResult] = {}
    job_status: Dict[str, Status] = {}
    job_results: Dict[str, List[ExecutionResult]] = {name: [] for name in jobs}
    remaining: Dict[str, int] = {}
    ready: List[str] = [pj.name for pj in plan.jobs if indeg[pj.name] == 0]
    in_flight: Dict[Future, Tuple[str, PlannedInstance]] = {}

    total = len(plan.instances())
    if max_workers is None:
        max_workers = max(1, total)

    def finish_job(name: str) -> None:
        job_status[name] = _job_status(job_results[name])
        for child in sorted(adj[name], key=rank.__getitem__):
            indeg[child] -= 1
            if indeg[child] == 0:
                ready.append(child)

    def record(name: str, result: ExecutionResult) -> None:
        results[result.instance.key] = result
        job_results[name].append(result)
        if fail_fast and result.blocking:
            cancel.set()

    def skip_job(name: str, reason: str) -> None:
        console.print_job_skipped(name, reason)
        for result in _skip_all(jobs[name], reason):
            record(name, result)
        finish_job(name)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            # schedule every job whose dependencies are done
            while ready:
                name = ready.pop(0)
                planned = jobs[name]
                not_passed = [d for d in planned.job.needs if job_status[d] is not Status.PASSED]

                if cancel.is_set():
                    skip_job(name, "cancelled")
                elif not_passed:
                    skip_job(name, f"dependency did not pass: {', '.join(not_passed)}")
                elif planned.job.triggers and not is_triggered(planned.job.triggers, event):
                    skip_job(name, f"not triggered by {event.kind.value} on {event.branch}")
                else:
                    remaining[name] = len(planned.instances)
                    for p in planned.instances:
                        fut = pool.submit(_run_instance, p, step_runner, cancel)
                        in_flight[fut] = (name, p)

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name, planned_instance = in_flight.pop(fut)
            try:
                result = fut.result()
            except Exception as e:
                console.print_exception(e)
                result = ExecutionResult(
                    instance=planned_instance.instance,
                    status=Status.FAILED,
                    reason=f"{type(e).__name__}: {e}",
                )
            console.print_instance_done(result)
            record(name, result)

            remaining[name] -= 1
            if remaining[name] == 0:
                finish_job(name)

    ordered = [results[p.instance.key] for p in plan.instances()]
    return PipelineResult(
        pipeline=plan.pipeline.name,
        status=aggregate_status(ordered),
        results=ordered,
        job_status={pj.name: job_status[pj.name] for pj in plan.jobs},
        cancelled=cancel.is_set(),
    )


def run(
    pipeline: Pipeline,
    event: Event,
    *,
    step_runner: StepRunner | None = None,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
    fail_fast: bool = False,
    root: str | Path = ".",
    shell: str | None = None,
) -> PipelineResult:
    """
    Evaluate triggers, compile the plan and execute it.

    Raises ConfigurationError before anything runs if the pipeline is
    invalid. Step failures never raise; they end up in the result.
    """
    console = get_console()

    if not is_triggered(pipeline.triggers, event):
        console.print_not_triggered(pipeline.name, event)
        return PipelineResult(pipeline=pipeline.name, status=Status.SKIPPED)

    plan = compile_plan(pipeline)
    runner = step_runner or ShellStepRunner(root=root, shell=shell)

    return execute_plan(
        plan,
        event,
        step_runner=runner,
        max_workers=max_workers,
        cancel=cancel,
        fail_fast=fail_fast,
    )
