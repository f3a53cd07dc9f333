# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
import threading
from pathlib import Path

import click

from matrixci.errors import ConfigurationError
from matrixci.git import current_branch
from matrixci.loader import load_pipeline
from matrixci.model import Event, EventKind, Status
from matrixci.plan import compile_plan
from matrixci.runner import run as run_pipeline
from matrixci.ui.console import Console, get_console, set_console

DEFAULT_PIPELINE = "matrixci_pipeline.py"
PIPELINE_GLOBS = ("*_pipeline.py", "*_pipeline.yml", "*_pipeline.yaml")

EXIT_FAILED = 1
EXIT_NOT_TRIGGERED = 3
EXIT_CANCELLED = 130


def find_pipeline_files() -> list[Path]:
    """
    Find all pipeline definition files in the current directory.

    Returns:
        List of Path objects for pipeline files
    """
    current_dir = Path(".")
    default = current_dir / DEFAULT_PIPELINE
    if default.exists():
        return [default]

    found: set[Path] = set()
    for pattern in PIPELINE_GLOBS:
        found.update(current_dir.glob(pattern))
    return sorted(found)


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover the pipeline file from argument or default.

    Raises:
        SystemExit: If no pipeline can be found or several exist
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists() and path.suffix == "":
            path = Path(str(path) + ".py")
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or specify a different path:\n  matrixci run --pipeline ci_pipeline.yml",
            )
            sys.exit(EXIT_FAILED)
        return path

    files = find_pipeline_files()

    if len(files) == 0:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", f"  {DEFAULT_PIPELINE}", *(f"  {g}" for g in PIPELINE_GLOBS)],
            suggestion="Specify a pipeline explicitly:\n  matrixci run --pipeline ci_pipeline.yml",
        )
        sys.exit(EXIT_FAILED)

    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {f}" for f in files],
            suggestion=f"Specify a pipeline explicitly:\n  matrixci run --pipeline {files[0]}",
        )
        sys.exit(EXIT_FAILED)

    return files[0]


def _load(ctx: click.Context, path: Path):
    console = get_console()
    try:
        return load_pipeline(path)
    except Exception as e:
        console.print_error("Failed to load pipeline", f"Could not load pipeline from {path}", details=[str(e)])
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_FAILED)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: matrix-expanding CI pipeline runner."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.py, .yml, .yaml)")
@click.option(
    "--event",
    "event_kind",
    type=click.Choice([k.value for k in EventKind]),
    default=EventKind.PUSH.value,
    show_default=True,
    help="Trigger event kind",
)
@click.option("--branch", default=None, help="Trigger branch (defaults to the current git branch)")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Max concurrently running job instances")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Cancel the run on the first blocking failure")
@click.option("--shell", default=None, help="Shell used to run step commands")
@click.pass_context
def run(ctx, pipeline_arg, event_kind, branch, workers, fail_fast, shell):
    """Run a pipeline for a trigger event."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    pipeline = _load(ctx, path)

    if branch is None:
        try:
            branch = current_branch()
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine branch",
                "No --branch specified and the current git branch is unknown.",
                suggestion="Pass the branch explicitly:\n  matrixci run --branch master",
            )
            sys.exit(EXIT_FAILED)

    event = Event(kind=EventKind(event_kind), branch=branch)
    console.print_run_started(pipeline.name, str(path), event)

    cancel = threading.Event()

    def _signal_handler(signum, frame):
        console.print_info(f"\nReceived signal {signum}, stopping at the next step boundary...")
        cancel.set()

    previous = {sig: signal.signal(sig, _signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = run_pipeline(
            pipeline,
            event,
            max_workers=workers,
            cancel=cancel,
            fail_fast=fail_fast,
            shell=shell,
        )
    except ConfigurationError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(EXIT_FAILED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if result.status is Status.SKIPPED:
        sys.exit(EXIT_NOT_TRIGGERED)

    console.print_results(result)

    if result.cancelled:
        sys.exit(EXIT_CANCELLED)
    if result.status is Status.FAILED:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.py, .yml, .yaml)")
@click.pass_context
def plan(ctx, pipeline_arg):
    """Show job order and expanded job instances without running anything."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    pipeline = _load(ctx, path)

    try:
        compiled = compile_plan(pipeline)
    except ConfigurationError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(EXIT_FAILED)

    console.print_plan(compiled)


def main() -> None:
    cli(auto_envvar_prefix="MATRIXCI")


if __name__ == "__main__":
    main()
