# matrixci_pipeline.py
# Pipeline for matrixci itself: lint, then tests across Python versions.
from __future__ import annotations

from matrixci import dsl


def pipeline():
    return dsl.pipeline(
        "matrixci",
        dsl.job(
            "lint",
            dsl.lint_step("Ruff check", tool="ruff", args="check", files=["src/", "tests/"]),
            dsl.lint_step("Ruff format check", tool="ruff", args="format --check", files=["src/", "tests/"]),
        ),
        dsl.job(
            "test",
            dsl.sh("Install package", "uv venv -p ${{ matrix.python }} .venv-${{ matrix.python }} && "
                   ".venv-${{ matrix.python }}/bin/pip install -e '.[test]'"),
            dsl.sh("Run pytest", ".venv-${{ matrix.python }}/bin/pytest -q"),
            needs=["lint"],
            matrix=dsl.matrix(
                python=["3.10", "3.11", "3.12"],
                include=[
                    dsl.include(python="3.13", mode="add", continue_on_error=True),
                ],
            ),
            timeout=900,
        ),
        triggers=[dsl.on_push(), dsl.on_pull_request("main")],
    )
