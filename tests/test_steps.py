"""Tests for step kinds, interpolation and the shell step runner."""

import sys

import pytest

from matrixci import dsl
from matrixci.errors import ConfigurationError
from matrixci.model import Step
from matrixci.steps import (
    ShellStepRunner,
    command_for,
    matrix_env,
    resolve_env,
    resolve_step,
    validate_step,
)


class TestValidation:
    def test_sh_needs_run(self) -> None:
        with pytest.raises(ConfigurationError, match="needs a 'run' command"):
            validate_step(Step(name="empty"), job="j")

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="unknown step kind 'docker'"):
            validate_step(Step(name="d", kind="docker", options={"image": "x"}), job="j")

    def test_unknown_option(self) -> None:
        step = Step(name="l", kind="lint", options={"tool": "ruff", "fix": True})
        with pytest.raises(ConfigurationError, match="unknown option\\(s\\) \\['fix'\\]"):
            validate_step(step, job="j")

    def test_missing_required_option(self) -> None:
        with pytest.raises(ConfigurationError, match="missing required option"):
            validate_step(Step(name="l", kind="lint", options={"args": "check"}), job="j")

    def test_unknown_test_framework(self) -> None:
        with pytest.raises(ConfigurationError, match="unknown test framework"):
            validate_step(dsl.test_step("t", framework="jest"), job="j")

    def test_install_must_be_boolean(self) -> None:
        step = Step(name="t", kind="test", options={"framework": "npm", "install": "maybe"})
        with pytest.raises(ConfigurationError, match="install must be a boolean"):
            validate_step(step, job="j")

    def test_valid_steps_pass(self) -> None:
        validate_step(dsl.sh("build", "cargo build"), job="j")
        validate_step(dsl.lint_step("fmt", tool="cargo", args="fmt -- --check"), job="j")
        validate_step(dsl.test_step("tests", framework="cargo", args="--package dsp"), job="j")


class TestCommands:
    def test_lint_command(self) -> None:
        step = dsl.lint_step("ruff", tool="ruff", args="check --quiet", files=["src/", "tests/"])
        assert command_for(step) == "ruff check --quiet src/ tests/"

    def test_test_command_with_install(self) -> None:
        assert command_for(dsl.test_step("py", framework="pytest", args="-q")) == (
            "python -m pip install -r requirements.txt && pytest -q"
        )

    def test_test_command_without_install(self) -> None:
        assert command_for(dsl.test_step("js", framework="npm", install=False)) == "npm test"

    @pytest.mark.parametrize("install", ["false", "no", 0])
    def test_install_written_as_text_is_honoured(self, install) -> None:
        step = Step(name="js", kind="test", options={"framework": "npm", "install": install})
        validate_step(step, job="j")
        assert command_for(step) == "npm test"


class TestInterpolation:
    def test_matrix_values_replace_expressions(self) -> None:
        step = dsl.sh(
            "build ${{ matrix.toolchain }}",
            'cargo +${{matrix.toolchain}} build --features "${{ matrix.features }}"',
        )
        resolved = resolve_step(step, {"toolchain": "nightly", "features": ""}, job="compile")
        assert resolved.name == "build nightly"
        assert resolved.run == 'cargo +nightly build --features ""'

    def test_options_are_interpolated(self) -> None:
        step = dsl.lint_step("lint", tool="cargo", args="+${{ matrix.toolchain }} clippy")
        resolved = resolve_step(step, {"toolchain": "beta"}, job="j")
        assert resolved.options["args"] == "+beta clippy"

    def test_other_expressions_stay_opaque(self) -> None:
        step = dsl.sh("publish", "upload --token ${{ secrets.TOKEN }}")
        assert resolve_step(step, {}, job="j").run == "upload --token ${{ secrets.TOKEN }}"

    def test_unknown_axis_is_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="undeclared axis 'matrix.target'"):
            resolve_step(dsl.sh("b", "build --target ${{ matrix.target }}"), {"toolchain": "stable"}, job="j")

    def test_non_string_values(self) -> None:
        step = dsl.sh("flag", "echo ${{ matrix.optional }}")
        assert resolve_step(step, {"optional": True}, job="j").run == "echo true"

    def test_env_interpolation(self) -> None:
        env = resolve_env({"RUSTUP_TOOLCHAIN": "${{ matrix.toolchain }}"}, {"toolchain": "beta"}, job="t")
        assert env == {"RUSTUP_TOOLCHAIN": "beta"}

    def test_matrix_env(self) -> None:
        assert matrix_env({"toolchain": "stable", "target-os": "linux", "optional": False}) == {
            "MATRIX_TOOLCHAIN": "stable",
            "MATRIX_TARGET_OS": "linux",
            "MATRIX_OPTIONAL": "false",
        }


@pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")
class TestShellStepRunner:
    def test_success_captures_output(self, tmp_path) -> None:
        outcome = ShellStepRunner(root=tmp_path).run(dsl.sh("echo", "echo hello $GREETING"), {"GREETING": "world"})
        assert outcome.ok
        assert outcome.exit_code == 0
        assert "hello world" in outcome.output

    def test_failure_reports_exit_code(self, tmp_path) -> None:
        outcome = ShellStepRunner(root=tmp_path).run(dsl.sh("fail", "echo oops >&2; exit 3"), {})
        assert not outcome.ok
        assert outcome.exit_code == 3
        assert "oops" in outcome.output

    def test_runs_in_step_cwd(self, tmp_path) -> None:
        (tmp_path / "sub").mkdir()
        outcome = ShellStepRunner(root=tmp_path).run(dsl.sh("pwd", "pwd", cwd="sub"), {})
        assert outcome.output.strip().endswith("sub")

    def test_missing_cwd(self, tmp_path) -> None:
        outcome = ShellStepRunner(root=tmp_path).run(dsl.sh("x", "true", cwd="nope"), {})
        assert not outcome.ok
        assert "cwd not found" in outcome.output

    def test_timeout(self, tmp_path) -> None:
        outcome = ShellStepRunner(root=tmp_path).run(dsl.sh("slow", "exec sleep 5"), {}, timeout=0.2)
        assert not outcome.ok
        assert outcome.timed_out
