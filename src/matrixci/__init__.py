from .dsl import job, sh, lint_step, test_step, matrix, include, exclude, on_push, on_pull_request, pipeline, JobBuilder, build
from .errors import ConfigurationError, StepFailure
from .matrix import expand
from .model import Event, EventKind, ExecutionResult, Job, JobInstance, Pipeline, PipelineResult, Status, Step
from .runner import run
from .steps import Outcome, ShellStepRunner

__all__ = [
    "job", "sh", "lint_step", "test_step", "matrix", "include", "exclude", "on_push", "on_pull_request",
    "pipeline", "JobBuilder", "build", "expand", "run", "Event", "EventKind", "ExecutionResult", "Job",
    "JobInstance", "Pipeline", "PipelineResult", "Status", "Step", "ConfigurationError", "StepFailure",
    "Outcome", "ShellStepRunner",
]
