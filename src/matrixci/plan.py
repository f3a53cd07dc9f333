# plan.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .dag import topo_order
from .errors import ConfigurationError
from .matrix import expand
from .model import Job, JobInstance, Pipeline, Step
from .steps import matrix_env, resolve_env, resolve_step, validate_step


@dataclass
class PlannedInstance:
    """A job instance with its steps and environment fully resolved."""
    instance: JobInstance
    steps: List[Step]
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class PlannedJob:
    job: Job
    instances: List[PlannedInstance]

    @property
    def name(self) -> str:
        return self.job.name


@dataclass
class Plan:
    pipeline: Pipeline
    jobs: List[PlannedJob]  # dependency order

    def instances(self) -> List[PlannedInstance]:
        return [p for job in self.jobs for p in job.instances]


def compile_plan(pipeline: Pipeline) -> Plan:
    """
    Validate the whole pipeline and expand every matrix.

    Nothing here has side effects, so any ConfigurationError surfaces
    before a single step runs.
    """
    order = topo_order(pipeline.jobs)
    by_name = {j.name: j for j in pipeline.jobs}

    planned: List[PlannedJob] = []
    for name in order:
        job = by_name[name]
        if not job.steps:
            raise ConfigurationError(f"Job '{name}' has no steps")

        instances = expand(
            job.matrix,
            job=name,
            continue_on_error=job.continue_on_error,
            timeout=job.timeout,
        )

        resolved: List[PlannedInstance] = []
        for instance in instances:
            values = instance.values
            steps = [resolve_step(s, values, job=name) for s in job.steps]
            for s in steps:
                validate_step(s, job=name)
            env = {
                **resolve_env(pipeline.env, values, job=name),
                **resolve_env(job.env, values, job=name),
                **matrix_env(values),
            }
            resolved.append(PlannedInstance(instance=instance, steps=steps, env=env))

        planned.append(PlannedJob(job=job, instances=resolved))

    return Plan(pipeline=pipeline, jobs=planned)
