"""Tests for dependency ordering."""

import pytest

from matrixci import dsl
from matrixci.dag import build_dag, topo_levels, topo_order
from matrixci.errors import ConfigurationError


def _job(name, needs=()):
    return dsl.job(name, dsl.sh("noop", "true"), needs=list(needs))


def test_dependencies_come_first():
    jobs = [_job("test", ["compile"]), _job("compile", ["style"]), _job("style")]
    assert topo_order(jobs) == ["style", "compile", "test"]


def test_independent_jobs_keep_declaration_order():
    jobs = [_job("style"), _job("compile"), _job("test", ["style"]), _job("docs")]
    levels = topo_levels(*build_dag(jobs), order=[j.name for j in jobs])
    assert levels == [["style", "compile", "docs"], ["test"]]


def test_cycle_is_rejected():
    jobs = [_job("a", ["c"]), _job("b", ["a"]), _job("c", ["b"]), _job("d")]
    with pytest.raises(ConfigurationError, match="cycle"):
        topo_order(jobs)


def test_self_dependency_is_a_cycle():
    with pytest.raises(ConfigurationError, match="cycle"):
        topo_order([_job("a", ["a"])])


def test_missing_dependency_is_rejected():
    with pytest.raises(ConfigurationError, match="needs missing job 'lint'"):
        topo_order([_job("test", ["lint"])])


def test_duplicate_names_are_rejected():
    with pytest.raises(ConfigurationError, match="Duplicate job names"):
        build_dag([_job("a"), _job("a")])
