"""
yul_dsa.flow_graph
==================

Arena-backed data-flow graph shared by every phase of a run.

Nodes are addressed by stable integer ids; the graph owns every node and
edges are ``(src_id, dst_id)`` pairs, so cycles inside a scope and nodes
shared between embeddings need no special handling.

Node kinds
----------
``VARIABLE``
    A program variable, a materialised sub-expression, or a synthetic memory
    word.  Memory words are *global*: they belong to no scope and are shared
    by every embedding.
``BLOCK``
    A synthetic block node.  An edge ``block -> v`` means "``v`` was defined
    on the control path governed by this block", as opposed to a direct data
    dependency.

Edges are only ever added.  Each scope additionally remembers the edges it
contributed so that the inliner can copy a callee's local graph into a
caller.

Public API
----------
    NodeKind            - enum of node kinds
    FlowNode            - one arena entry
    CallSite            - a call from one scope to a user function
    Scope               - one function or the top-level ``!!main`` unit
    FlowGraph           - the arena + adjacency
    EmbeddingCounter    - explicit source of embedding indices
"""

from __future__ import annotations

import enum
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from yul_dsa.ir import FunctionDefinition, Loc

MAIN_SCOPE = "!!main"

Edge = Tuple[int, int]


class NodeKind(enum.Enum):
    """Classification of a graph node."""

    VARIABLE = "variable"
    BLOCK = "block"


@dataclass(eq=False)
class FlowNode:
    """A node of the data-flow graph.

    Attributes
    ----------
    id : int
        Arena index.
    kind : NodeKind
    name : str
        Unique within the owning scope.  Embedded clones carry the callee
        and embedding index as a prefix (``f#3/x``).
    scope : str or None
        Owning scope; ``None`` for global memory words.
    const_value : int or None
        Compile-time constant value, once known.
    tainted, untaintable, protected : bool
        See the data model: ``untaintable`` forbids ``tainted``.
    source : bool
        The value comes from outside the program (storage, calldata, ...).
    origin : int or None
        Node this one was cloned from during embedding.
    embedding : int or None
        Embedding index of the clone.
    call_chain : tuple[str, ...]
        Scope names from the owning scope down to the scope that declared
        the original node.
    """

    id: int
    kind: NodeKind
    name: str
    scope: Optional[str]
    const_value: Optional[int] = None
    tainted: bool = False
    untaintable: bool = False
    protected: bool = False
    source: bool = False
    origin: Optional[int] = None
    embedding: Optional[int] = None
    call_chain: Tuple[str, ...] = ()
    loc: Optional[Loc] = None

    @property
    def is_variable(self) -> bool:
        return self.kind is NodeKind.VARIABLE

    @property
    def is_block(self) -> bool:
        return self.kind is NodeKind.BLOCK

    @property
    def is_global(self) -> bool:
        return self.scope is None

    @property
    def is_constant(self) -> bool:
        return self.const_value is not None

    def __repr__(self) -> str:
        flags = "".join(
            ch for ch, on in (
                ("T", self.tainted),
                ("U", self.untaintable),
                ("P", self.protected),
                ("S", self.source),
            ) if on
        )
        return f"FlowNode({self.id}, {self.name!r}, {self.scope}, [{flags}])"


@dataclass(eq=False)
class CallSite:
    """A call from ``caller`` to the user function ``callee``.

    ``arguments`` and ``results`` are node ids in the caller; ``block`` is the
    caller's block node governing the call.
    """

    caller: str
    callee: str
    arguments: List[int]
    results: List[int]
    block: int
    loc: Optional[Loc] = None
    resolved: bool = False

    def __repr__(self) -> str:
        state = "resolved" if self.resolved else "unresolved"
        return f"CallSite({self.caller} -> {self.callee}, {state})"


@dataclass(eq=False)
class Scope:
    """One function (or the top-level unit) and its local graph."""

    name: str
    root_block: int
    definition: Optional[FunctionDefinition] = None
    params: List[int] = field(default_factory=list)
    returns: List[int] = field(default_factory=list)
    nodes: List[int] = field(default_factory=list)
    edges: Set[Edge] = field(default_factory=set)
    call_sites: List[CallSite] = field(default_factory=list)
    _by_name: Dict[str, int] = field(default_factory=dict, repr=False)

    @property
    def is_main(self) -> bool:
        return self.name == MAIN_SCOPE

    def lookup(self, name: str) -> Optional[int]:
        """Node id of the variable called *name* in this scope."""
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return list(self._by_name)

    def unresolved_calls(self) -> List[CallSite]:
        return [cs for cs in self.call_sites if not cs.resolved]

    def is_resolved(self) -> bool:
        return all(cs.resolved for cs in self.call_sites)


class EmbeddingCounter:
    """Hands out embedding indices, unique for the lifetime of the counter.

    One counter is created per analysis run and passed to the inliner.
    """

    def __init__(self, start: int = 0) -> None:
        self._next = start

    def next(self) -> int:
        index = self._next
        self._next += 1
        return index

    @property
    def issued(self) -> int:
        return self._next


class FlowGraph:
    """The arena of nodes, the global adjacency and the scopes."""

    def __init__(self) -> None:
        self.nodes: List[FlowNode] = []
        self.scopes: "OrderedDict[str, Scope]" = OrderedDict()
        self._succ: Dict[int, Set[int]] = defaultdict(set)
        self._pred: Dict[int, Set[int]] = defaultdict(set)
        self._globals: Dict[str, int] = {}

    # ----- construction ---------------------------------------------------

    def _append(self, node: FlowNode) -> int:
        self.nodes.append(node)
        return node.id

    def add_scope(
        self,
        name: str,
        definition: Optional[FunctionDefinition] = None,
    ) -> Scope:
        root = FlowNode(
            id=len(self.nodes),
            kind=NodeKind.BLOCK,
            name=f"{name}:body",
            scope=name,
            call_chain=(name,),
            loc=definition.loc if definition is not None else None,
        )
        self._append(root)
        scope = Scope(name=name, root_block=root.id, definition=definition)
        scope.nodes.append(root.id)
        self.scopes[name] = scope
        return scope

    def new_variable(
        self,
        scope: Scope,
        name: str,
        loc: Optional[Loc] = None,
    ) -> int:
        node = FlowNode(
            id=len(self.nodes),
            kind=NodeKind.VARIABLE,
            name=name,
            scope=scope.name,
            call_chain=(scope.name,),
            loc=loc,
        )
        self._append(node)
        scope.nodes.append(node.id)
        scope._by_name[name] = node.id
        return node.id

    def new_block(
        self,
        scope: Scope,
        name: str,
        loc: Optional[Loc] = None,
    ) -> int:
        node = FlowNode(
            id=len(self.nodes),
            kind=NodeKind.BLOCK,
            name=name,
            scope=scope.name,
            call_chain=(scope.name,),
            loc=loc,
        )
        self._append(node)
        scope.nodes.append(node.id)
        return node.id

    def global_variable(self, name: str) -> int:
        """Return the global node called *name*, creating it on first use."""
        nid = self._globals.get(name)
        if nid is None:
            node = FlowNode(
                id=len(self.nodes),
                kind=NodeKind.VARIABLE,
                name=name,
                scope=None,
            )
            nid = self._append(node)
            self._globals[name] = nid
        return nid

    def clone_node(
        self,
        nid: int,
        into: Scope,
        name: str,
        embedding: int,
    ) -> int:
        """Copy node *nid* into scope *into* as part of an embedding."""
        orig = self.nodes[nid]
        clone = FlowNode(
            id=len(self.nodes),
            kind=orig.kind,
            name=name,
            scope=into.name,
            const_value=orig.const_value,
            untaintable=orig.untaintable,
            protected=orig.protected,
            source=orig.source,
            origin=nid,
            embedding=embedding,
            call_chain=(into.name,) + orig.call_chain,
            loc=orig.loc,
        )
        self._append(clone)
        into.nodes.append(clone.id)
        if clone.is_variable:
            into._by_name[name] = clone.id
        return clone.id

    def add_edge(self, src: int, dst: int, scope: Optional[Scope] = None) -> None:
        """Add ``src -> dst``; *scope* records the edge as part of its local graph."""
        self._succ[src].add(dst)
        self._pred[dst].add(src)
        if scope is not None:
            scope.edges.add((src, dst))

    # ----- queries --------------------------------------------------------

    def node(self, nid: int) -> FlowNode:
        return self.nodes[nid]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[FlowNode]:
        return iter(self.nodes)

    def successors(self, nid: int) -> Set[int]:
        return self._succ.get(nid, set())

    def predecessors(self, nid: int) -> Set[int]:
        return self._pred.get(nid, set())

    def has_edge(self, src: int, dst: int) -> bool:
        return dst in self._succ.get(src, ())

    def edges(self) -> Iterator[Edge]:
        for src in sorted(self._succ):
            for dst in sorted(self._succ[src]):
                yield (src, dst)

    def edge_count(self) -> int:
        return sum(len(dsts) for dsts in self._succ.values())

    def scope(self, name: str) -> Scope:
        return self.scopes[name]

    def variable(self, scope: str, name: str) -> FlowNode:
        """The node for variable *name* of *scope*; ``KeyError`` if absent."""
        nid = self.scopes[scope].lookup(name)
        if nid is None:
            raise KeyError(f"{scope}: no variable {name!r}")
        return self.nodes[nid]

    def memory_word(self, name: str) -> Optional[FlowNode]:
        nid = self._globals.get(name)
        return self.nodes[nid] if nid is not None else None

    def original(self, nid: int) -> FlowNode:
        """Follow the embedding chain back to the node declared in source."""
        node = self.nodes[nid]
        while node.origin is not None:
            node = self.nodes[node.origin]
        return node

    def protected_variables(self) -> List[FlowNode]:
        return [n for n in self.nodes if n.is_variable and n.protected]

    def tainted_nodes(self) -> Set[int]:
        return {n.id for n in self.nodes if n.tainted}

    def statistics(self) -> Dict[str, int]:
        return {
            "nodes": len(self.nodes),
            "edges": self.edge_count(),
            "scopes": len(self.scopes),
            "blocks": sum(1 for n in self.nodes if n.is_block),
            "protected": len(self.protected_variables()),
            "memory_words": len(self._globals),
            "call_sites": sum(len(s.call_sites) for s in self.scopes.values()),
        }

    def __repr__(self) -> str:
        return (
            f"FlowGraph({len(self.nodes)} nodes, {self.edge_count()} edges, "
            f"{len(self.scopes)} scopes)"
        )
