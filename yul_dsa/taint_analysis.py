"""
yul_dsa/taint_analysis.py
═════════════════════════

Taint propagation over the resolved flow graph.

Taint is plain reachability: a node is tainted if it is an initial source
or reachable from one along the graph's edges.  The only exception is a
variable marked ``untaintable`` (a compile-time constant storage address),
which is never entered, so nothing flows through it either.

    ┌─────────────────────────────────────────────────────────────────┐
    │                     PROPAGATION                                 │
    │                                                                 │
    │   1. Collect initial sources from the TaintConfig               │
    │        - parameters of the unit's functions                     │
    │        - results of source builtins (sload, calldataload, ...)  │
    │        - explicitly listed (scope, variable) pairs              │
    │   2. Breadth-first walk, recording the parent of each node      │
    │   3. Write the ``tainted`` flag of every node                   │
    │   4. Check that no untaintable node ended up tainted            │
    └─────────────────────────────────────────────────────────────────┘

The graph may contain cycles (loops inside one scope); the walk is guarded
by its visited set.  Every run resets the flags first, so propagating twice
over the same graph gives the same tainted set.

Key Components
──────────────

TaintConfig
    Which nodes start tainted, and whether to stop at the first violation.

TaintResult
    The tainted set, the initial sources and the parent map from which the
    path from a source to any tainted node can be rebuilt.

TaintPropagator
    The propagation engine.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Deque,
    Dict,
    FrozenSet,
    List,
    Optional,
    Set,
    Tuple,
)

from yul_dsa.errors import TaintInvariantError, UndefinedIdentifierError
from yul_dsa.flow_graph import FlowGraph

logger = logging.getLogger(__name__)

__all__ = [
    "TaintConfig",
    "TaintResult",
    "TaintPropagator",
    "propagate",
]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1: CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TaintConfig:
    """
    Configuration of the initial taint sources.

    Attributes:
        taint_parameters: Parameters of the unit's functions are attacker
            controlled
        tainted_functions: Restrict parameter taint to these functions;
            ``None`` means every function
        tainted_variables: Additional ``(scope, variable)`` sources
        builtin_sources: Results of source builtins (storage reads,
            calldata, call results, block environment) start tainted
        stop_at_first_violation: Report only the first violation
    """
    taint_parameters: bool = True
    tainted_functions: Optional[Set[str]] = None
    tainted_variables: Set[Tuple[str, str]] = field(default_factory=set)
    builtin_sources: bool = True
    stop_at_first_violation: bool = False

    # ─────────────────────────────────────────────────────────────────
    #  Registration methods
    # ─────────────────────────────────────────────────────────────────

    def add_tainted_function(self, function: str) -> 'TaintConfig':
        """
        Restrict parameter taint to *function* (and any others added).

        Args:
            function: Function name

        Returns:
            self for method chaining
        """
        if self.tainted_functions is None:
            self.tainted_functions = set()
        self.tainted_functions.add(function)
        return self

    def add_tainted_variable(self, scope: str, name: str) -> 'TaintConfig':
        """
        Mark a variable as an initial taint source.

        Args:
            scope: Function name, or ``!!main`` for top-level code
            name: Variable name within that scope

        Returns:
            self for method chaining
        """
        self.tainted_variables.add((scope, name))
        return self

    # ─────────────────────────────────────────────────────────────────
    #  Query methods
    # ─────────────────────────────────────────────────────────────────

    def are_parameters_tainted(self, function: str) -> bool:
        if not self.taint_parameters:
            return False
        return self.tainted_functions is None or function in self.tainted_functions


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2: RESULT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TaintResult:
    """
    Outcome of one propagation.

    Attributes:
        tainted: Ids of every tainted node
        sources: Ids of the initial sources that could be tainted
        parents: For each tainted non-source node, the node it was first
            reached from
    """
    tainted: FrozenSet[int] = frozenset()
    sources: FrozenSet[int] = frozenset()
    parents: Dict[int, int] = field(default_factory=dict)

    def is_tainted(self, nid: int) -> bool:
        return nid in self.tainted

    def path_to(self, nid: int) -> List[int]:
        """Node ids from a source to *nid*, both included; empty if untainted."""
        if nid not in self.tainted:
            return []
        path = [nid]
        while path[-1] in self.parents:
            path.append(self.parents[path[-1]])
        path.reverse()
        return path


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3: PROPAGATION
# ═══════════════════════════════════════════════════════════════════════════

class TaintPropagator:
    """
    Computes the tainted set of a resolved flow graph.

    Usage:
        result = TaintPropagator(TaintConfig()).propagate(graph)
    """

    def __init__(self, config: Optional[TaintConfig] = None) -> None:
        self.config = config if config is not None else TaintConfig()

    def initial_sources(self, graph: FlowGraph) -> List[int]:
        """Node ids that start tainted, in arena order."""
        config = self.config
        sources: Set[int] = set()

        for scope in graph.scopes.values():
            if scope.is_main:
                continue
            if config.are_parameters_tainted(scope.name):
                sources.update(scope.params)

        if config.tainted_functions:
            for name in sorted(config.tainted_functions - set(graph.scopes)):
                logger.warning("tainted function %s is not defined", name)

        if config.builtin_sources:
            sources.update(n.id for n in graph if n.source)

        for scope_name, name in sorted(config.tainted_variables):
            scope = graph.scopes.get(scope_name)
            nid = scope.lookup(name) if scope is not None else None
            if nid is None:
                raise UndefinedIdentifierError(name, scope_name)
            sources.add(nid)

        return sorted(sources)

    def propagate(self, graph: FlowGraph) -> TaintResult:
        for node in graph:
            node.tainted = False

        sources = [nid for nid in self.initial_sources(graph)
                   if not graph.node(nid).untaintable]
        visited: Set[int] = set(sources)
        parents: Dict[int, int] = {}
        worklist: Deque[int] = deque(sources)

        while worklist:
            nid = worklist.popleft()
            for succ in sorted(graph.successors(nid)):
                if succ in visited or graph.node(succ).untaintable:
                    continue
                visited.add(succ)
                parents[succ] = nid
                worklist.append(succ)

        for nid in visited:
            graph.node(nid).tainted = True

        for node in graph:
            if node.tainted and node.untaintable:
                raise TaintInvariantError(node.name)

        logger.debug(
            "propagated taint from %d sources to %d nodes", len(sources), len(visited)
        )
        return TaintResult(
            tainted=frozenset(visited),
            sources=frozenset(sources),
            parents=parents,
        )


def propagate(graph: FlowGraph, config: Optional[TaintConfig] = None) -> TaintResult:
    """Propagate taint over *graph* with *config*."""
    return TaintPropagator(config).propagate(graph)
