"""
yul_dsa.analyzer
================

Runs the whole pass over one compilation unit::

    Collecting ─► Resolving ─┐ ─► Propagating ─► Checking ─► Clean
                     ▲       │                            └► Violations
                     └───────┘
              any phase ───────────────────────────────────► Fatal

``Resolving`` is entered once per embedding; every other state at most
once.  Each run builds its own graph and embedding counter, so an analyzer
can be reused for any number of units.

Fatal conditions (malformed IR, recursion, internal errors) do not escape
:meth:`DsaAnalyzer.run`: they are returned in :attr:`AnalysisResult.error`,
separately from the violations.

Usage
-----
    >>> from yul_dsa import analyze
    >>> result = analyze('''
    ...     (function f (params k) (expr (sstore k 0)))
    ... ''')
    >>> result.status
    <AnalysisStatus.VIOLATIONS: 'violations'>
    >>> result.violations[0].variable_name
    'k'
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from yul_dsa.checker import Violation, ViolationChecker
from yul_dsa.collector import FlowCollector
from yul_dsa.errors import DsaError
from yul_dsa.flow_graph import EmbeddingCounter, FlowGraph
from yul_dsa.inliner import Embedding, FunctionResolver
from yul_dsa.ir import Program
from yul_dsa.ir_reader import load_program
from yul_dsa.taint_analysis import TaintConfig, TaintPropagator, TaintResult

logger = logging.getLogger(__name__)

__all__ = [
    "EngineState",
    "AnalysisStatus",
    "AnalysisResult",
    "DsaAnalyzer",
    "analyze",
]


class EngineState(enum.Enum):
    COLLECTING = "collecting"
    RESOLVING = "resolving"
    PROPAGATING = "propagating"
    CHECKING = "checking"
    CLEAN = "clean"
    VIOLATIONS = "violations"
    FATAL = "fatal"


class AnalysisStatus(enum.Enum):
    CLEAN = "clean"
    VIOLATIONS = "violations"
    FATAL = "fatal"


@dataclass
class AnalysisResult:
    """
    Outcome of one run.

    Attributes
    ----------
    status     : CLEAN, VIOLATIONS or FATAL
    violations : Violations in arena order; empty unless VIOLATIONS
    error      : The fatal error; set only when FATAL
    states     : Engine states visited, in order
    graph      : The resolved flow graph (partial when FATAL)
    taint      : Propagation result, once propagation ran
    embeddings : Embeddings performed by the resolver
    """
    status: AnalysisStatus
    violations: List[Violation] = field(default_factory=list)
    error: Optional[DsaError] = None
    states: List[EngineState] = field(default_factory=list)
    graph: Optional[FlowGraph] = None
    taint: Optional[TaintResult] = None
    embeddings: List[Embedding] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.status is AnalysisStatus.CLEAN

    @property
    def fatal(self) -> bool:
        return self.status is AnalysisStatus.FATAL

    def raise_for_error(self) -> None:
        """Re-raise the fatal error, if any."""
        if self.error is not None:
            raise self.error

    def __bool__(self) -> bool:
        return self.clean


class DsaAnalyzer:
    """Dynamic state access analysis of Yul compilation units."""

    def __init__(self, config: Optional[TaintConfig] = None) -> None:
        self.config = config if config is not None else TaintConfig()

    def run(self, program: Program) -> AnalysisResult:
        states: List[EngineState] = []
        graph: Optional[FlowGraph] = None
        resolver: Optional[FunctionResolver] = None

        def enter(state: EngineState) -> None:
            logger.debug("%s: %s", getattr(program, "name", "<program>"), state.value)
            states.append(state)

        try:
            enter(EngineState.COLLECTING)
            graph = FlowCollector().collect(program)

            resolver = FunctionResolver(graph, EmbeddingCounter())
            while not resolver.is_done():
                enter(EngineState.RESOLVING)
                resolver.step()

            enter(EngineState.PROPAGATING)
            taint = TaintPropagator(self.config).propagate(graph)

            enter(EngineState.CHECKING)
            violations = ViolationChecker(self.config).check(graph, taint)
        except DsaError as exc:
            logger.warning("analysis aborted: %s", exc)
            enter(EngineState.FATAL)
            return AnalysisResult(
                status=AnalysisStatus.FATAL,
                error=exc,
                states=states,
                graph=graph,
                embeddings=list(resolver.embeddings) if resolver is not None else [],
            )

        if violations:
            enter(EngineState.VIOLATIONS)
            status = AnalysisStatus.VIOLATIONS
        else:
            enter(EngineState.CLEAN)
            status = AnalysisStatus.CLEAN

        return AnalysisResult(
            status=status,
            violations=violations,
            states=states,
            graph=graph,
            taint=taint,
            embeddings=list(resolver.embeddings),
        )


def analyze(
    program: Union[Program, str],
    config: Optional[TaintConfig] = None,
) -> AnalysisResult:
    """Analyse *program*, given as an AST or as IR text."""
    if isinstance(program, str):
        try:
            program = load_program(program)
        except DsaError as exc:
            logger.warning("analysis aborted: %s", exc)
            return AnalysisResult(
                status=AnalysisStatus.FATAL,
                error=exc,
                states=[EngineState.FATAL],
            )
    return DsaAnalyzer(config).run(program)
