"""
yul_dsa.collector
=================

Scope & Flow Collector: a single walk over the IR that builds one
:class:`~yul_dsa.flow_graph.Scope` per function (plus ``!!main`` for the
top-level statements), their variables, the intra-scope data-flow edges
and the list of unresolved call sites.

Walk rules
----------
* ``let x := e`` / ``x := e``: every variable read by ``e`` flows into
  ``x``, unless every operand of a builtin is a compile-time constant (see
  :attr:`~yul_dsa.builtins.BuiltinEffect.taints`).  A builtin application
  writes its value straight into its target;
  nested applications and literal operands are materialised as temporaries
  (``expr#n``, ``lit#n``) so every operand of a builtin is a variable.
* A call to a user function becomes a :class:`~yul_dsa.flow_graph.CallSite`
  whose result variables are left for the inliner to wire.
* Block nodes carry control influence::

        selector ──► [case#2] ──► twixt
                        ▲
        [f:body] ───────┘

  Each ``if`` body, ``switch`` case and loop gets a block node governed by
  its condition or selector; nested blocks get an edge from the enclosing
  block node and every variable defined inside gets an edge from its block.
  ``leave`` ties its block to the function body block, ``break`` and
  ``continue`` tie theirs to the loop block.
* Names follow Yul scoping: no shadowing of a visible name; sibling blocks
  may reuse a name, the later variable is renamed ``x#1``.
* Function names are hoisted to the start of the block that defines them
  and are visible in that block and everything nested in it, function
  bodies included.  A function nested in ``a`` gets the scope name
  ``a/helper``, so sibling functions may define helpers of the same name.

Finalisation
------------
Constant values are only known once the whole scope has been walked, so
the builtin effects are applied afterwards, per scope:

1. constant propagation to a fixed point over the recorded definitions;
2. operand edges are added for applications whose result depends on
   their operands, results of source builtins are marked ``source``;
3. operands in protected positions are marked ``protected`` and memory
   accesses are resolved through :class:`~yul_dsa.memory_model.MemoryModel`,
   stores getting an edge from the block node that governs them;
4. protected variables with a constant value become ``untaintable``.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Dict,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from yul_dsa import builtins
from yul_dsa.errors import (
    ArityMismatchError,
    DuplicateDefinitionError,
    MalformedIRError,
    UndefinedIdentifierError,
    UnknownNodeError,
)
from yul_dsa.flow_graph import MAIN_SCOPE, CallSite, FlowGraph, Scope
from yul_dsa.ir import (
    Assignment,
    Block,
    Break,
    Continue,
    Expr,
    ExpressionStatement,
    ForLoop,
    FunctionCall,
    FunctionDefinition,
    Identifier,
    If,
    Leave,
    Literal,
    Loc,
    Program,
    Stmt,
    Switch,
    VariableDeclaration,
    literal_value,
)
from yul_dsa.memory_model import MemoryModel

logger = logging.getLogger(__name__)

__all__ = ["FlowCollector", "collect"]


# ═══════════════════════════════════════════════════════════════════════════
# Definitions recorded for constant propagation
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class _ConstDef:
    target: int
    value: int


@dataclass
class _CopyDef:
    target: int
    source: int


@dataclass
class _AppDef:
    target: int
    name: str
    operands: List[int]


@dataclass
class _OpaqueDef:
    target: int


_Definition = Union[_ConstDef, _CopyDef, _AppDef, _OpaqueDef]


@dataclass
class _Application:
    """A builtin application whose effects are applied at finalisation."""

    node: int
    name: str
    operands: List[int]
    block: int
    loc: Optional[Loc] = None


# Source name -> (scope name, definition) of the functions hoisted in one block
_FunctionFrame = Dict[str, Tuple[str, FunctionDefinition]]
_PendingFunction = Tuple[str, FunctionDefinition, List[_FunctionFrame]]


# Constant lattice: UNDEF < CONST(v) < NAC
_UNDEF = object()
_NAC = object()


def _join(a, b):
    if a is _UNDEF:
        return b
    if b is _UNDEF:
        return a
    if a is _NAC or b is _NAC or a != b:
        return _NAC
    return a


@dataclass
class _ScopeState:
    """Walk state of one scope."""

    scope: Scope
    frames: List[Dict[str, int]] = field(default_factory=list)
    functions: List[_FunctionFrame] = field(default_factory=list)
    blocks: List[int] = field(default_factory=list)
    loops: List[int] = field(default_factory=list)
    definitions: List[_Definition] = field(default_factory=list)
    applications: List[_Application] = field(default_factory=list)
    counter: int = 0

    @property
    def block(self) -> int:
        return self.blocks[-1]

    def visible(self, name: str) -> Optional[int]:
        for frame in reversed(self.frames):
            if name in frame:
                return frame[name]
        return None

    def function(self, name: str) -> Optional[Tuple[str, FunctionDefinition]]:
        """Scope name and definition of the function *name* visible here."""
        for frame in reversed(self.functions):
            if name in frame:
                return frame[name]
        return None


# ═══════════════════════════════════════════════════════════════════════════
# Collector
# ═══════════════════════════════════════════════════════════════════════════

class FlowCollector:
    """Builds the flow graph of one compilation unit.

    Usage::

        graph = FlowCollector().collect(program)
    """

    def __init__(self, graph: Optional[FlowGraph] = None) -> None:
        self.graph = graph if graph is not None else FlowGraph()
        self.memory = MemoryModel(self.graph)
        self._state: Optional[_ScopeState] = None
        self._pending: "deque[_PendingFunction]" = deque()
        self._scope_names: Set[str] = set()

    # ----- entry point ------------------------------------------------------

    def collect(self, program: Program) -> FlowGraph:
        if not isinstance(program, Program):
            raise UnknownNodeError(program)

        states = [self._walk_main(program)]
        while self._pending:
            name, fdef, functions = self._pending.popleft()
            states.append(self._walk_function(name, fdef, functions))

        for state in states:
            self._finalize(state)

        logger.debug("collected %r", self.graph)
        return self.graph

    # ----- scope walks ------------------------------------------------------

    def _walk_main(self, program: Program) -> _ScopeState:
        scope = self.graph.add_scope(MAIN_SCOPE)
        state = self._enter(scope)
        self._visit_statements(program.statements)
        self._state = None
        return state

    def _walk_function(
        self,
        name: str,
        fdef: FunctionDefinition,
        functions: List[_FunctionFrame],
    ) -> _ScopeState:
        scope = self.graph.add_scope(name, fdef)
        state = self._enter(scope)
        state.functions = list(functions)
        for param in fdef.params:
            nid = self._declare(param, fdef.loc)
            scope.params.append(nid)
            state.definitions.append(_OpaqueDef(nid))
        for ret in fdef.returns:
            nid = self._declare(ret, fdef.loc)
            scope.returns.append(nid)
            state.definitions.append(_ConstDef(nid, 0))
        self._visit_block(fdef.body)
        self._state = None
        logger.debug(
            "function %s: %d params, %d returns, %d call sites",
            scope.name, len(scope.params), len(scope.returns), len(scope.call_sites),
        )
        return state

    def _enter(self, scope: Scope) -> _ScopeState:
        state = _ScopeState(scope=scope, frames=[{}], blocks=[scope.root_block])
        self._state = state
        return state

    # ----- naming -----------------------------------------------------------

    def _unique(self, name: str) -> str:
        scope = self._state.scope
        if scope.lookup(name) is None:
            return name
        k = 1
        while scope.lookup(f"{name}#{k}") is not None:
            k += 1
        return f"{name}#{k}"

    def _define(self, nid: int) -> int:
        """Attach a freshly created variable to the current block."""
        self.graph.add_edge(self._state.block, nid, self._state.scope)
        return nid

    def _declare(self, name: str, loc: Optional[Loc]) -> int:
        """Create and bind a source-level variable in the current frame."""
        nid = self._new_local(name, loc)
        self._state.frames[-1][name] = nid
        return nid

    def _new_local(self, name: str, loc: Optional[Loc]) -> int:
        state = self._state
        if state.visible(name) is not None:
            raise MalformedIRError(
                f"'{name}' shadows a visible variable in '{state.scope.name}'", loc=loc
            )
        if state.function(name) is not None or builtins.is_builtin(name):
            raise MalformedIRError(f"variable '{name}' shadows a function", loc=loc)
        nid = self.graph.new_variable(state.scope, self._unique(name), loc)
        return self._define(nid)

    def _temporary(self, prefix: str, loc: Optional[Loc]) -> int:
        state = self._state
        while True:
            state.counter += 1
            name = f"{prefix}#{state.counter}"
            if state.scope.lookup(name) is None:
                break
        return self._define(self.graph.new_variable(state.scope, name, loc))

    def _new_block(self, prefix: str, loc: Optional[Loc]) -> int:
        state = self._state
        state.counter += 1
        blk = self.graph.new_block(state.scope, f"{prefix}#{state.counter}", loc)
        self.graph.add_edge(state.block, blk, state.scope)
        return blk

    def _resolve(self, name: str, loc: Optional[Loc]) -> int:
        nid = self._state.visible(name)
        if nid is None:
            raise UndefinedIdentifierError(name, self._state.scope.name, loc)
        return nid

    # ----- statements -------------------------------------------------------

    def _visit_statements(self, statements: Sequence[Stmt]) -> None:
        state = self._state
        state.functions.append(self._hoist(statements))
        try:
            for stmt in statements:
                self._visit_statement(stmt)
        finally:
            state.functions.pop()

    def _hoist(self, statements: Sequence[Stmt]) -> _FunctionFrame:
        """Bind the functions defined directly in *statements* and queue their walks."""
        state = self._state
        frame: _FunctionFrame = {}
        for stmt in statements:
            if not isinstance(stmt, FunctionDefinition):
                continue
            if stmt.name in frame or state.function(stmt.name) is not None:
                raise DuplicateDefinitionError(stmt.name, loc=stmt.loc)
            if builtins.is_builtin(stmt.name):
                raise MalformedIRError(
                    f"function '{stmt.name}' redefines a builtin", loc=stmt.loc
                )
            frame[stmt.name] = (self._scope_name(stmt.name), stmt)
        # siblings and enclosing functions are visible in every body
        visible = state.functions + [frame]
        for scope_name, fdef in frame.values():
            self._pending.append((scope_name, fdef, visible))
        return frame

    def _scope_name(self, name: str) -> str:
        """Graph scope name of a function defined in the current scope."""
        scope = self._state.scope
        base = name if scope.is_main else f"{scope.name}/{name}"
        unique = base
        k = 1
        while unique in self._scope_names or unique == MAIN_SCOPE:
            unique = f"{base}#{k}"
            k += 1
        self._scope_names.add(unique)
        return unique

    def _visit_block(self, block: Block, governing: Optional[int] = None) -> None:
        """Visit *block* in a new name frame, under *governing* if given."""
        if not isinstance(block, Block):
            raise UnknownNodeError(block)
        state = self._state
        state.frames.append({})
        if governing is not None:
            state.blocks.append(governing)
        try:
            self._visit_statements(block.statements)
        finally:
            if governing is not None:
                state.blocks.pop()
            state.frames.pop()

    def _visit_statement(self, stmt: Stmt) -> None:
        if isinstance(stmt, VariableDeclaration):
            self._visit_declaration(stmt)
        elif isinstance(stmt, Assignment):
            self._visit_assignment(stmt)
        elif isinstance(stmt, ExpressionStatement):
            if not isinstance(stmt.expr, FunctionCall):
                raise MalformedIRError(
                    "expression statement must be a call", loc=stmt.loc
                )
            self._call(stmt.expr, targets=[])
        elif isinstance(stmt, If):
            cond = self._operand(stmt.condition)
            blk = self._new_block("if", stmt.loc)
            self.graph.add_edge(cond, blk, self._state.scope)
            self._visit_block(stmt.body, blk)
        elif isinstance(stmt, Switch):
            self._visit_switch(stmt)
        elif isinstance(stmt, ForLoop):
            self._visit_for(stmt)
        elif isinstance(stmt, Block):
            self._visit_block(stmt)
        elif isinstance(stmt, FunctionDefinition):
            # hoisted; walked as its own scope
            pass
        elif isinstance(stmt, (Break, Continue)):
            if not self._state.loops:
                raise MalformedIRError(
                    f"'{type(stmt).__name__.lower()}' outside of a loop", loc=stmt.loc
                )
            self._jump(self._state.loops[-1])
        elif isinstance(stmt, Leave):
            if self._state.scope.is_main:
                raise MalformedIRError("'leave' outside of a function", loc=stmt.loc)
            self._jump(self._state.scope.root_block)
        else:
            raise UnknownNodeError(stmt, getattr(stmt, "loc", None))

    def _jump(self, target_block: int) -> None:
        if self._state.block != target_block:
            self.graph.add_edge(self._state.block, target_block, self._state.scope)

    def _visit_declaration(self, stmt: VariableDeclaration) -> None:
        if not stmt.names:
            raise MalformedIRError("declaration without names", loc=stmt.loc)
        if len(set(stmt.names)) != len(stmt.names):
            raise MalformedIRError("duplicate name in declaration", loc=stmt.loc)

        if stmt.value is None:
            nids = [self._declare(name, stmt.loc) for name in stmt.names]
            for nid in nids:
                self._state.definitions.append(_ConstDef(nid, 0))
            return

        # The initializer cannot see the names it declares.
        nids = [self._new_local(name, stmt.loc) for name in stmt.names]
        self._assign(nids, stmt.value, stmt.loc)
        for name, nid in zip(stmt.names, nids):
            self._state.frames[-1][name] = nid

    def _visit_assignment(self, stmt: Assignment) -> None:
        if not stmt.names:
            raise MalformedIRError("assignment without targets", loc=stmt.loc)
        targets = [self._resolve(name, stmt.loc) for name in stmt.names]
        if len(set(targets)) != len(targets):
            raise MalformedIRError("duplicate assignment target", loc=stmt.loc)
        for nid in targets:
            self._define(nid)
        self._assign(targets, stmt.value, stmt.loc)

    def _assign(self, targets: List[int], value: Expr, loc: Optional[Loc]) -> None:
        state = self._state
        if isinstance(value, FunctionCall):
            self._call(value, targets=targets)
            return
        if len(targets) != 1:
            raise ArityMismatchError(
                "assignment", "values", len(targets), 1, loc=loc
            )
        (target,) = targets
        if isinstance(value, Literal):
            state.definitions.append(_ConstDef(target, self._literal(value)))
        elif isinstance(value, Identifier):
            source = self._resolve(value.name, value.loc)
            self.graph.add_edge(source, target, state.scope)
            state.definitions.append(_CopyDef(target, source))
        else:
            raise UnknownNodeError(value, loc)

    def _visit_switch(self, stmt: Switch) -> None:
        if not stmt.cases and stmt.default is None:
            raise MalformedIRError("switch without cases", loc=stmt.loc)
        selector = self._operand(stmt.selector)
        seen = set()
        for case in stmt.cases:
            if not isinstance(case.value, Literal):
                raise MalformedIRError("case value must be a literal", loc=case.loc)
            value = self._literal(case.value)
            if value in seen:
                raise MalformedIRError(f"duplicate case {value:#x}", loc=case.loc)
            seen.add(value)
            blk = self._new_block("case", case.loc)
            self.graph.add_edge(selector, blk, self._state.scope)
            self._visit_block(case.body, blk)
        if stmt.default is not None:
            blk = self._new_block("default", stmt.loc)
            self.graph.add_edge(selector, blk, self._state.scope)
            self._visit_block(stmt.default, blk)

    def _visit_for(self, stmt: ForLoop) -> None:
        state = self._state
        # init variables stay visible in condition, post and body
        state.frames.append({})
        try:
            self._visit_statements(stmt.pre.statements)
            cond = self._operand(stmt.condition)
            blk = self._new_block("for", stmt.loc)
            self.graph.add_edge(cond, blk, state.scope)
            state.loops.append(blk)
            try:
                self._visit_block(stmt.body, blk)
                self._visit_block(stmt.post, blk)
            finally:
                state.loops.pop()
        finally:
            state.frames.pop()

    # ----- expressions ------------------------------------------------------

    def _literal(self, lit: Literal) -> int:
        try:
            return literal_value(lit)
        except ValueError as exc:
            raise MalformedIRError(str(exc), loc=lit.loc) from exc

    def _operand(self, expr: Expr) -> int:
        """Node holding the value of *expr*."""
        if isinstance(expr, Literal):
            nid = self._temporary("lit", expr.loc)
            self._state.definitions.append(_ConstDef(nid, self._literal(expr)))
            return nid
        if isinstance(expr, Identifier):
            return self._resolve(expr.name, expr.loc)
        if isinstance(expr, FunctionCall):
            (nid,) = self._call(expr, targets=None)
            return nid
        raise UnknownNodeError(expr, getattr(expr, "loc", None))

    def _call(self, call: FunctionCall, targets: Optional[List[int]]) -> List[int]:
        """Visit *call*.

        *targets* are the statement's result variables; ``None`` means the
        call is nested inside another expression and must yield one value.
        Returns the nodes holding the call's results.
        """
        function = self._state.function(call.name)
        if function is not None:
            return self._user_call(call, targets, *function)
        return self._builtin_call(call, targets)

    def _user_call(
        self,
        call: FunctionCall,
        targets: Optional[List[int]],
        callee: str,
        fdef: FunctionDefinition,
    ) -> List[int]:
        state = self._state
        if len(call.args) != len(fdef.params):
            raise ArityMismatchError(
                call.name, "arguments", len(fdef.params), len(call.args), loc=call.loc
            )
        expected = 1 if targets is None else len(targets)
        if len(fdef.returns) != expected:
            raise ArityMismatchError(
                call.name, "return values", expected, len(fdef.returns), loc=call.loc
            )

        arguments = [self._operand(arg) for arg in call.args]
        if targets is None:
            results = [self._temporary("expr", call.loc)]
        else:
            results = list(targets)
        for nid in results:
            state.definitions.append(_OpaqueDef(nid))

        site = CallSite(
            caller=state.scope.name,
            callee=callee,
            arguments=arguments,
            results=results,
            block=state.block,
            loc=call.loc,
        )
        state.scope.call_sites.append(site)
        return results

    def _builtin_call(
        self,
        call: FunctionCall,
        targets: Optional[List[int]],
    ) -> List[int]:
        state = self._state
        spec = builtins.lookup(call.name)
        if spec is not None:
            if len(call.args) != spec.arity:
                raise ArityMismatchError(
                    call.name, "arguments", spec.arity, len(call.args), loc=call.loc
                )
            expected = 1 if targets is None else len(targets)
            if spec.returns != expected:
                raise ArityMismatchError(
                    call.name, "return values", expected, spec.returns, loc=call.loc
                )

        # Yul evaluates arguments right to left; only the node order differs.
        operands = [self._operand(arg) for arg in call.args]

        if targets is not None and len(targets) == 1:
            node = targets[0]
        else:
            node = self._temporary("expr", call.loc)

        state.definitions.append(_AppDef(node, call.name, operands))
        state.applications.append(
            _Application(node, call.name, operands, state.block, call.loc)
        )

        if targets is None:
            return [node]
        if len(targets) > 1:
            # only unknown builtins get here
            for target in targets:
                self.graph.add_edge(node, target, state.scope)
                state.definitions.append(_OpaqueDef(target))
        return list(targets) if targets else [node]

    # ----- finalisation -----------------------------------------------------

    def _finalize(self, state: _ScopeState) -> None:
        values = self._propagate_constants(state)
        graph = self.graph
        for nid, value in values.items():
            if value is not _UNDEF and value is not _NAC:
                graph.node(nid).const_value = value

        for app in state.applications:
            consts = [graph.node(op).const_value for op in app.operands]
            effect = builtins.resolve(app.name, consts)
            if not effect.known:
                logger.debug("unknown builtin %s, treated conservatively", app.name)
            if effect.taints:
                for op in app.operands:
                    graph.add_edge(op, app.node, state.scope)
            node = graph.node(app.node)
            if effect.source:
                node.source = True
            for index in effect.protected_operand_indices:
                graph.node(app.operands[index]).protected = True
            self._apply_memory(state.scope, app, effect, consts)

        for nid in state.scope.nodes:
            node = graph.node(nid)
            if node.protected and node.is_constant:
                node.untaintable = True

        logger.debug(
            "scope %s finalized: %d nodes, %d edges",
            state.scope.name, len(state.scope.nodes), len(state.scope.edges),
        )

    def _propagate_constants(self, state: _ScopeState) -> Dict[int, object]:
        """Flow-insensitive constant propagation over the scope's definitions.

        The value of a variable is the join of all of its definitions.
        Anything still undefined at the fixed point is not a constant.
        """
        values: Dict[int, object] = {d.target: _UNDEF for d in state.definitions}

        def value_of(nid: int):
            return values.get(nid, _NAC)

        changed = True
        while changed:
            changed = False
            for d in state.definitions:
                if isinstance(d, _ConstDef):
                    new = d.value
                elif isinstance(d, _CopyDef):
                    new = value_of(d.source)
                elif isinstance(d, _AppDef):
                    operands = [value_of(op) for op in d.operands]
                    if any(v is _NAC for v in operands):
                        new = _NAC
                    elif any(v is _UNDEF for v in operands):
                        new = _UNDEF
                    else:
                        effect = builtins.resolve(d.name, operands)
                        new = effect.constant_value
                        if new is None:
                            new = _NAC
                else:
                    new = _NAC
                joined = _join(values[d.target], new)
                if joined != values[d.target]:
                    values[d.target] = joined
                    changed = True

        for nid, value in values.items():
            if value is _UNDEF:
                values[nid] = _NAC
        return values

    def _apply_memory(
        self,
        scope: Scope,
        app: _Application,
        effect: builtins.BuiltinEffect,
        consts: List[Optional[int]],
    ) -> None:
        def extent(access: builtins.MemoryAccess):
            offset = consts[access.offset_index]
            if access.width is not None:
                return offset, access.width
            return offset, consts[access.length_index]

        for access in effect.memory_reads:
            offset, width = extent(access)
            self.memory.load(
                scope, app.operands[access.offset_index], offset, width, app.node
            )
        for access in effect.memory_writes:
            offset, width = extent(access)
            if access.value_index is None:
                value = app.node
            else:
                value = app.operands[access.value_index]
            self.memory.store(
                scope, app.operands[access.offset_index], offset, width, value,
                block=app.block,
            )


def collect(program: Program) -> FlowGraph:
    """Collect the flow graph of *program* into a fresh graph."""
    return FlowCollector().collect(program)
