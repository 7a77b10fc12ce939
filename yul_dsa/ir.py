# yul_dsa/ir.py
"""
Yul IR abstract syntax tree consumed by the analysis.

The node kinds are a closed set: every expression is one of
``EXPRESSION_TYPES`` and every statement one of ``STATEMENT_TYPES``.
Consumers dispatch with exhaustive ``isinstance`` matching and treat any
other object as malformed IR.

Every node carries an optional source location for diagnostics.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union


WORD_BITS = 256
WORD_MASK = (1 << WORD_BITS) - 1


# ── Source Location ──────────────────────────────────────────────

@dataclass(frozen=True)
class Loc:
    """Source location for diagnostics."""
    file: str = "<unknown>"
    line: int = 0
    col: int = 0

    def __str__(self):
        return f"{self.file}:{self.line}:{self.col}"


# ── Expressions ──────────────────────────────────────────────────

@dataclass
class Literal:
    value: Union[int, str, bool]
    loc: Loc = field(default_factory=Loc)


@dataclass
class Identifier:
    name: str
    loc: Loc = field(default_factory=Loc)


@dataclass
class FunctionCall:
    name: str
    args: list[Expr] = field(default_factory=list)
    loc: Loc = field(default_factory=Loc)


Expr = Union[Literal, Identifier, FunctionCall]


# ── Statements ───────────────────────────────────────────────────

@dataclass
class Block:
    statements: list[Stmt] = field(default_factory=list)
    loc: Loc = field(default_factory=Loc)


@dataclass
class VariableDeclaration:
    names: list[str]
    value: Optional[Expr] = None
    loc: Loc = field(default_factory=Loc)


@dataclass
class Assignment:
    names: list[str]
    value: Expr
    loc: Loc = field(default_factory=Loc)


@dataclass
class ExpressionStatement:
    expr: Expr
    loc: Loc = field(default_factory=Loc)


@dataclass
class If:
    condition: Expr
    body: Block
    loc: Loc = field(default_factory=Loc)


@dataclass
class Case:
    value: Literal
    body: Block
    loc: Loc = field(default_factory=Loc)


@dataclass
class Switch:
    selector: Expr
    cases: list[Case] = field(default_factory=list)
    default: Optional[Block] = None
    loc: Loc = field(default_factory=Loc)


@dataclass
class ForLoop:
    pre: Block
    condition: Expr
    post: Block
    body: Block
    loc: Loc = field(default_factory=Loc)


@dataclass
class FunctionDefinition:
    name: str
    params: list[str] = field(default_factory=list)
    returns: list[str] = field(default_factory=list)
    body: Block = field(default_factory=Block)
    loc: Loc = field(default_factory=Loc)


@dataclass
class Break:
    loc: Loc = field(default_factory=Loc)


@dataclass
class Continue:
    loc: Loc = field(default_factory=Loc)


@dataclass
class Leave:
    loc: Loc = field(default_factory=Loc)


Stmt = Union[
    Block, VariableDeclaration, Assignment, ExpressionStatement, If,
    Switch, ForLoop, FunctionDefinition, Break, Continue, Leave,
]


@dataclass
class Program:
    """A compilation unit; top-level statements form the ``!!main`` scope."""
    statements: list[Stmt] = field(default_factory=list)
    name: str = "<program>"
    loc: Loc = field(default_factory=Loc)


EXPRESSION_TYPES = (Literal, Identifier, FunctionCall)

STATEMENT_TYPES = (
    Block, VariableDeclaration, Assignment, ExpressionStatement, If,
    Switch, ForLoop, FunctionDefinition, Break, Continue, Leave,
)


# ── Helpers ──────────────────────────────────────────────────────

def literal_value(lit: Literal) -> int:
    """Return the 256-bit word a literal denotes.

    Strings are left-aligned in the word like Yul string literals.
    """
    # bool first: it is a subclass of int
    if isinstance(lit.value, bool):
        return int(lit.value)
    if isinstance(lit.value, int):
        if lit.value < 0:
            return lit.value & WORD_MASK
        if lit.value > WORD_MASK:
            raise ValueError(f"literal {lit.value:#x} does not fit in a word")
        return lit.value
    data = lit.value.encode("utf-8")
    if len(data) > 32:
        raise ValueError(f"string literal {lit.value!r} is longer than 32 bytes")
    return int.from_bytes(data.ljust(32, b"\0"), "big")

