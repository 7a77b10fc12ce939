"""
yul_dsa.inliner
===============

Function Inliner / Resolver: embeds callee flow graphs into their callers
until no call site is left unresolved.

Each step picks the first call site, in scope order, whose callee has no
unresolved call sites of its own, and embeds the callee::

        caller                           callee  f
        ──────                           ─────────
        a ─────────────────────────────► f#0/x        (argument → parameter)
        [caller block] ────────────────► f#0/f:body   (control)
        r ◄───────────────────────────── f#0/ret      (return → result)

1. every node of the callee scope is cloned into the caller under the name
   ``<callee>#<index>/<name>``, with a fresh embedding index from the
   :class:`~yul_dsa.flow_graph.EmbeddingCounter`;
2. every edge of the callee's local graph is copied through the clone map
   (global memory words are shared, not cloned);
3. arguments flow into the parameter clones and return clones into the
   call's result variables; the caller block governing the call flows into
   the clone of the callee's body block;
4. the call site is marked resolved.

Embedding a callee copies the clones of its own earlier embeddings, so the
caller ends up with the fully inlined call tree.  Recursion can never be
resolved: when call sites remain but none is eligible, the remaining call
graph is decomposed into strongly connected components and a
:class:`~yul_dsa.errors.CallGraphCycleError` names the recursive functions.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Set, Tuple

from yul_dsa.errors import CallGraphCycleError, InternalError
from yul_dsa.flow_graph import CallSite, EmbeddingCounter, FlowGraph

logger = logging.getLogger(__name__)

__all__ = [
    "Embedding",
    "FunctionResolver",
    "resolve_functions",
    "strongly_connected_components",
]


class Embedding:
    """Record of one embedding: which call site, which index, which clones."""

    __slots__ = ("index", "site", "mapping")

    def __init__(self, index: int, site: CallSite, mapping: Dict[int, int]) -> None:
        self.index = index
        self.site = site
        self.mapping = mapping

    @property
    def nodes(self) -> Set[int]:
        return set(self.mapping.values())

    def __repr__(self) -> str:
        return (
            f"Embedding(#{self.index} {self.site.callee} into {self.site.caller}, "
            f"{len(self.mapping)} nodes)"
        )


class FunctionResolver:
    """Iteratively resolves the call sites of *graph*.

    Parameters
    ----------
    graph : FlowGraph
        Collected graph; modified in place.
    counter : EmbeddingCounter, optional
        Source of embedding indices.  A fresh counter is used if omitted.
    """

    def __init__(
        self,
        graph: FlowGraph,
        counter: Optional[EmbeddingCounter] = None,
    ) -> None:
        self.graph = graph
        self.counter = counter if counter is not None else EmbeddingCounter()
        self.embeddings: List[Embedding] = []

    # ----- driving ----------------------------------------------------------

    def pending(self) -> Iterator[CallSite]:
        for scope in self.graph.scopes.values():
            yield from scope.unresolved_calls()

    def is_done(self) -> bool:
        return next(self.pending(), None) is None

    def next_eligible(self) -> Optional[CallSite]:
        """First unresolved call site whose callee is fully resolved."""
        for site in self.pending():
            if self.graph.scope(site.callee).is_resolved():
                return site
        return None

    def step(self) -> bool:
        """Embed one call site.

        Returns ``False`` once everything is resolved.  Raises
        :class:`CallGraphCycleError` when call sites remain but none can be
        embedded.
        """
        if self.is_done():
            return False
        site = self.next_eligible()
        if site is None:
            involved = self.recursive_functions()
            logger.debug("resolution stuck, recursive functions: %s", sorted(involved))
            raise CallGraphCycleError(involved)
        self.embed(site)
        return True

    def resolve(self) -> List[Embedding]:
        while self.step():
            pass
        logger.debug(
            "resolved all call sites with %d embeddings", len(self.embeddings)
        )
        return self.embeddings

    # ----- embedding --------------------------------------------------------

    def embed(self, site: CallSite) -> Embedding:
        graph = self.graph
        caller = graph.scope(site.caller)
        callee = graph.scope(site.callee)
        if site.resolved:
            raise InternalError(f"call site {site!r} embedded twice")
        if len(site.arguments) != len(callee.params) or len(site.results) != len(callee.returns):
            raise InternalError(f"call site {site!r} does not match {callee.name}")

        index = self.counter.next()
        mapping: Dict[int, int] = {}
        for nid in list(callee.nodes):
            orig = graph.node(nid)
            mapping[nid] = graph.clone_node(
                nid, caller, f"{callee.name}#{index}/{orig.name}", index
            )

        def mapped(nid: int) -> int:
            return mapping.get(nid, nid)

        for src, dst in sorted(callee.edges):
            graph.add_edge(mapped(src), mapped(dst), caller)

        for arg, param in zip(site.arguments, callee.params):
            graph.add_edge(arg, mapping[param], caller)
        for ret, result in zip(callee.returns, site.results):
            graph.add_edge(mapping[ret], result, caller)
        graph.add_edge(site.block, mapping[callee.root_block], caller)

        site.resolved = True
        embedding = Embedding(index, site, mapping)
        self.embeddings.append(embedding)
        logger.debug("embedded %r", embedding)
        return embedding

    # ----- cycle diagnosis --------------------------------------------------

    def pending_call_graph(self) -> Dict[str, Set[str]]:
        """Caller → callees over the unresolved call sites."""
        edges: Dict[str, Set[str]] = {name: set() for name in self.graph.scopes}
        for site in self.pending():
            edges[site.caller].add(site.callee)
        return edges

    def recursive_functions(self) -> Set[str]:
        edges = self.pending_call_graph()
        involved: Set[str] = set()
        for component in strongly_connected_components(edges):
            if len(component) > 1:
                involved.update(component)
            elif component[0] in edges[component[0]]:
                involved.add(component[0])
        return involved


def strongly_connected_components(edges: Dict[str, Set[str]]) -> List[List[str]]:
    """Tarjan's algorithm over a ``{node: successors}`` mapping.

    Components come out in reverse topological order (callees first).
    """
    index_counter = [0]
    stack: List[str] = []
    lowlink: Dict[str, int] = {}
    index: Dict[str, int] = {}
    on_stack: Set[str] = set()
    result: List[List[str]] = []

    def strongconnect(v: str):
        index[v] = index_counter[0]
        lowlink[v] = index_counter[0]
        index_counter[0] += 1
        stack.append(v)
        on_stack.add(v)

        for w in sorted(edges.get(v, ())):
            if w not in index:
                strongconnect(w)
                lowlink[v] = min(lowlink[v], lowlink[w])
            elif w in on_stack:
                lowlink[v] = min(lowlink[v], index[w])

        if lowlink[v] == index[v]:
            scc: List[str] = []
            while True:
                w = stack.pop()
                on_stack.discard(w)
                scc.append(w)
                if w == v:
                    break
            result.append(scc)

    for v in edges:
        if v not in index:
            strongconnect(v)

    return result


def resolve_functions(
    graph: FlowGraph,
    counter: Optional[EmbeddingCounter] = None,
) -> Tuple[FlowGraph, List[Embedding]]:
    """Resolve every call site of *graph* in place."""
    resolver = FunctionResolver(graph, counter)
    return graph, resolver.resolve()
