"""Tests for loading pipeline definitions from YAML and Python files."""

from pathlib import Path
from textwrap import dedent

import pytest

from matrixci.errors import ConfigurationError
from matrixci.loader import load_pipeline, pipeline_from_dict
from matrixci.matrix import expand
from matrixci.model import EventKind, IncludeMode
from matrixci.plan import compile_plan

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "stabilizer_pipeline.yml"


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(dedent(text), encoding="utf-8")
    return path


class TestExamplePipeline:
    def test_structure(self) -> None:
        pipeline = load_pipeline(EXAMPLE)

        assert pipeline.name == "Continuous Integration"
        assert [j.name for j in pipeline.jobs] == ["style", "compile", "test"]
        assert pipeline.env == {"CARGO_TERM_COLOR": "always"}
        assert pipeline.triggers[0].event is EventKind.PUSH
        assert pipeline.triggers[0].branches == ("master", "staging", "trying")
        assert pipeline.triggers[1].event is EventKind.PULL_REQUEST

    def test_compile_matrix(self) -> None:
        compile_job = load_pipeline(EXAMPLE).job("compile")
        assert compile_job.matrix.include_mode is IncludeMode.ADD

        instances = expand(
            compile_job.matrix,
            job="compile",
            continue_on_error=compile_job.continue_on_error,
        )
        assert [(i.values["toolchain"], i.values["features"], i.continue_on_error) for i in instances] == [
            ("stable", "", False),
            ("beta", "", False),
            ("stable", "pounder_v1_1", False),
            ("nightly", "nightly", True),
        ]

    def test_plan_resolves_steps(self) -> None:
        plan = compile_plan(load_pipeline(EXAMPLE))
        nightly = plan.jobs[1].instances[-1]
        assert nightly.steps[0].name == "install nightly"
        assert nightly.steps[1].run == 'cargo +nightly build --release --features "nightly"'

        test_beta = plan.jobs[2].instances[1]
        assert test_beta.env["RUSTUP_TOOLCHAIN"] == "beta"
        assert test_beta.steps[1].kind == "test"


class TestSchema:
    def test_minimal(self) -> None:
        pipeline = pipeline_from_dict({"jobs": {"build": {"steps": ["make"]}}}, default_name="p")
        assert pipeline.name == "p"
        assert pipeline.triggers == []
        (job,) = pipeline.jobs
        assert job.steps[0].run == "make"
        assert job.steps[0].name == "make"

    def test_list_of_jobs(self) -> None:
        pipeline = pipeline_from_dict(
            {"name": "p", "jobs": [{"name": "a", "steps": ["x"]}, {"name": "b", "needs": "a", "steps": ["y"]}]}
        )
        assert [j.name for j in pipeline.jobs] == ["a", "b"]
        assert pipeline.jobs[1].needs == ["a"]

    def test_include_attributes_are_split_from_values(self) -> None:
        pipeline = pipeline_from_dict(
            {
                "jobs": {
                    "t": {
                        "steps": ["x"],
                        "matrix": {
                            "axes": {"os": ["linux", "mac"]},
                            "include": [{"os": "mac", "mode": "override", "continue_on_error": True, "timeout": 60}],
                        },
                    }
                }
            }
        )
        (entry,) = pipeline.jobs[0].matrix.include
        assert entry.values == {"os": "mac"}
        assert entry.mode is IncludeMode.OVERRIDE
        assert entry.continue_on_error is True
        assert entry.timeout == 60

    def test_job_trigger_and_bool_env(self) -> None:
        pipeline = pipeline_from_dict(
            {
                "env": {"VERBOSE": True},
                "jobs": {"deploy": {"steps": ["x"], "if": [{"event": "push", "branches": "main"}]}},
            }
        )
        assert pipeline.env == {"VERBOSE": "true"}
        assert pipeline.jobs[0].triggers[0].branches == ("main",)

    @pytest.mark.parametrize(
        "data, message",
        [
            ({}, "needs a 'jobs' mapping"),
            ({"jobs": {}, "on": {}}, "unknown key"),
            ({"jobs": {"a": {"step": []}}}, "unknown key\\(s\\) \\['step'\\]"),
            ({"jobs": {"a": {"steps": [{"run": "x", "uses": "y"}]}}}, "step #1: unknown key"),
            ({"jobs": {"a": {"steps": ["x"], "timeout": -1}}}, "timeout must be a positive"),
            ({"jobs": {"a": {"steps": ["x"], "matrix": {"toolchain": ["a"]}}}}, "unknown key"),
            ({"jobs": {"a": {"steps": ["x"], "matrix": {"include": []}}}}, "needs an 'axes' mapping"),
            (
                {"jobs": {"a": {"steps": ["x"], "matrix": {"axes": {"x": [1]}, "include_mode": "merge"}}}},
                "unknown include mode",
            ),
            ({"triggers": [{"event": "tag"}], "jobs": {}}, "unknown event 'tag'"),
        ],
    )
    def test_rejects_bad_shapes(self, data, message) -> None:
        with pytest.raises(ConfigurationError, match=message):
            pipeline_from_dict(data)


class TestFiles:
    def test_invalid_yaml(self, tmp_path) -> None:
        path = _write(tmp_path, "bad_pipeline.yml", "jobs: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_pipeline(path)

    def test_yaml_must_be_mapping(self, tmp_path) -> None:
        path = _write(tmp_path, "list_pipeline.yaml", "- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must contain a YAML mapping"):
            load_pipeline(path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_pipeline(tmp_path / "nope.yml")

    def test_unsupported_suffix(self, tmp_path) -> None:
        path = _write(tmp_path, "pipeline.toml", "")
        with pytest.raises(ConfigurationError, match="must be a .py"):
            load_pipeline(path)

    def test_python_pipeline_function(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            "ci_pipeline.py",
            """
            from matrixci import dsl

            def pipeline():
                return dsl.pipeline("py", dsl.job("a", dsl.sh("a", "true")), triggers=[dsl.on_push()])
            """,
        )
        pipeline = load_pipeline(path)
        assert pipeline.name == "py"
        assert pipeline.jobs[0].name == "a"

    def test_python_pipeline_constant(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            "ci_pipeline.py",
            """
            from matrixci.dsl import job, sh
            from matrixci.model import Pipeline

            PIPELINE = Pipeline(name="const", jobs=[job("a", sh("a", "true"))])
            """,
        )
        assert load_pipeline(path).name == "const"

    def test_python_file_without_pipeline(self, tmp_path) -> None:
        path = _write(tmp_path, "empty_pipeline.py", "X = 1\n")
        with pytest.raises(ConfigurationError, match="must define pipeline"):
            load_pipeline(path)

    def test_python_file_with_dsl_helper_shadowing(self, tmp_path) -> None:
        path = _write(tmp_path, "shadow_pipeline.py", "from matrixci.dsl import pipeline\n")
        with pytest.raises(TypeError, match="Import it under another name"):
            load_pipeline(path)
