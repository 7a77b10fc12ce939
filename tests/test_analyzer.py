# tests/test_analyzer.py
"""
End-to-end tests of the analysis pipeline and its result channel.
"""

import logging

import pytest

import yul_dsa
from yul_dsa.analyzer import (
    AnalysisStatus, DsaAnalyzer, EngineState, analyze,
)
from yul_dsa.errors import (
    CallGraphCycleError, ErrorKind, IRSyntaxError, UndefinedIdentifierError,
)
from yul_dsa.ir_reader import load_program
from yul_dsa.taint_analysis import TaintConfig
from tests.conftest import (
    CLEAN_IR, DIRECT_IR, MUTUAL_RECURSION_IR, NESTED_CALLS_IR,
    STORAGE_RETURN_IR, run_ir,
)


class TestStates:

    def test_clean_run(self):
        result = run_ir(CLEAN_IR)
        assert result.status is AnalysisStatus.CLEAN
        assert result.clean
        assert bool(result)
        assert result.states == [
            EngineState.COLLECTING,
            EngineState.RESOLVING,
            EngineState.PROPAGATING,
            EngineState.CHECKING,
            EngineState.CLEAN,
        ]

    def test_violations_run(self):
        result = run_ir(STORAGE_RETURN_IR)
        assert result.status is AnalysisStatus.VIOLATIONS
        assert not result
        assert result.states[-1] is EngineState.VIOLATIONS

    def test_one_resolving_state_per_embedding(self):
        result = run_ir(NESTED_CALLS_IR)
        resolving = [s for s in result.states if s is EngineState.RESOLVING]
        assert len(resolving) == len(result.embeddings) == 2

    def test_no_calls_skips_resolving(self):
        result = run_ir(DIRECT_IR)
        assert EngineState.RESOLVING not in result.states

    def test_result_keeps_graph_and_taint(self):
        result = run_ir(STORAGE_RETURN_IR)
        assert result.graph is not None
        assert result.taint is not None
        assert result.taint.tainted


class TestFatal:

    def test_recursion(self):
        result = run_ir(MUTUAL_RECURSION_IR)
        assert result.fatal
        assert result.violations == []
        assert isinstance(result.error, CallGraphCycleError)
        assert result.error.kind is ErrorKind.UNSUPPORTED
        assert result.states[-1] is EngineState.FATAL
        assert EngineState.PROPAGATING not in result.states

    def test_structural(self):
        result = run_ir("(let y z)")
        assert isinstance(result.error, UndefinedIdentifierError)
        assert result.states == [EngineState.COLLECTING, EngineState.FATAL]

    def test_raise_for_error(self):
        with pytest.raises(CallGraphCycleError):
            run_ir(MUTUAL_RECURSION_IR).raise_for_error()

    def test_raise_for_error_when_clean(self):
        run_ir(CLEAN_IR).raise_for_error()

    def test_fatal_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="yul_dsa.analyzer"):
            run_ir(MUTUAL_RECURSION_IR)
        assert "analysis aborted" in caplog.text

    def test_bad_tainted_variable(self):
        config = TaintConfig().add_tainted_variable("direct", "missing")
        result = run_ir(DIRECT_IR, config)
        assert result.fatal
        assert result.states[-2] is EngineState.PROPAGATING


class TestAnalyze:

    def test_text_input(self):
        result = analyze(DIRECT_IR)
        assert [v.variable_name for v in result.violations] == ["key"]

    def test_program_input(self):
        result = analyze(load_program(CLEAN_IR))
        assert result.clean

    def test_unreadable_text(self):
        result = analyze("(let x")
        assert result.fatal
        assert isinstance(result.error, IRSyntaxError)
        assert result.states == [EngineState.FATAL]

    def test_config(self):
        result = analyze(DIRECT_IR, TaintConfig(taint_parameters=False))
        assert result.clean

    def test_analyzer_is_reusable(self):
        analyzer = DsaAnalyzer()
        program = load_program(NESTED_CALLS_IR)
        first = analyzer.run(program)
        second = analyzer.run(load_program(NESTED_CALLS_IR))
        assert [e.index for e in first.embeddings] == [0, 1]
        assert [e.index for e in second.embeddings] == [0, 1]
        assert len(first.violations) == len(second.violations)

    def test_package_exports(self):
        result = yul_dsa.analyze("(function f (params slot) (expr (sstore slot 1)))")
        assert [v.variable_name for v in result.violations] == ["slot"]
        assert "analyzer" in yul_dsa.list_submodules()
        assert yul_dsa.package_info()["version"] == yul_dsa.__version__
