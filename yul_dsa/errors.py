# yul_dsa/errors.py
"""
Error types for the DSA analysis pipeline.

Error Hierarchy:
────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│  DsaError (base)                                                            │
│  ├── StructuralError            - malformed IR, aborts the run              │
│  │   ├── IRSyntaxError          - IR text could not be read                 │
│  │   ├── MalformedIRError       - well-formed text, invalid tree            │
│  │   ├── UnknownNodeError       - object outside the closed node set        │
│  │   ├── UndefinedIdentifierError                                           │
│  │   ├── DuplicateDefinitionError                                           │
│  │   └── ArityMismatchError                                                 │
│  ├── UnsupportedConstructError  - valid IR the analysis cannot model        │
│  │   └── CallGraphCycleError    - recursion in the call graph               │
│  └── InternalError              - analysis bugs (should never happen)       │
│      └── TaintInvariantError    - an untaintable variable became tainted    │
└─────────────────────────────────────────────────────────────────────────────┘

Taint violations are results, not errors: they are returned by the checker
and never raised.

Error Codes:
────────────
  - DSA-1xxx: structural errors
  - DSA-2xxx: unsupported constructs
  - DSA-9xxx: internal errors
"""

from __future__ import annotations

from enum import Enum, unique
from typing import AbstractSet, FrozenSet, Optional

from yul_dsa.ir import Loc


@unique
class ErrorKind(Enum):
    """Which part of the error taxonomy an error belongs to."""
    STRUCTURAL = "structural"
    UNSUPPORTED = "unsupported"
    INTERNAL = "internal"


class ErrorCode:
    """A ``DSA-NNNN`` error code."""

    __slots__ = ("number", "kind", "summary")

    def __init__(self, number: int, kind: ErrorKind, summary: str) -> None:
        self.number = number
        self.kind = kind
        self.summary = summary

    @property
    def code(self) -> str:
        return f"DSA-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.kind.name})"

    def __hash__(self) -> int:
        return hash(self.number)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class ErrorCodes:
    """Predefined error codes."""

    IR_SYNTAX = ErrorCode(1001, ErrorKind.STRUCTURAL, "unreadable IR text")
    MALFORMED_IR = ErrorCode(1002, ErrorKind.STRUCTURAL, "malformed IR")
    UNKNOWN_NODE = ErrorCode(1003, ErrorKind.STRUCTURAL, "unknown node kind")
    UNDEFINED_IDENTIFIER = ErrorCode(1004, ErrorKind.STRUCTURAL, "undefined identifier")
    DUPLICATE_DEFINITION = ErrorCode(1005, ErrorKind.STRUCTURAL, "duplicate definition")
    ARITY_MISMATCH = ErrorCode(1006, ErrorKind.STRUCTURAL, "arity mismatch")

    CALL_GRAPH_CYCLE = ErrorCode(2001, ErrorKind.UNSUPPORTED, "recursive call graph")

    INTERNAL = ErrorCode(9000, ErrorKind.INTERNAL, "internal error")
    TAINT_INVARIANT = ErrorCode(9001, ErrorKind.INTERNAL, "untaintable variable tainted")


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class DsaError(Exception):
    """Base exception for every fatal condition of an analysis run."""

    default_code: ErrorCode = ErrorCodes.INTERNAL

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        loc: Optional[Loc] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.loc = loc

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    def to_gcc_format(self) -> str:
        """Format as ``file:line:col: error[DSA-NNNN]: message``."""
        prefix = f"{self.loc}: " if self.loc is not None and self.loc.line else ""
        return f"{prefix}error[{self.code}]: {self.message}"

    def __str__(self) -> str:
        return self.to_gcc_format()


# ───────────────────────────────────────────────────────────────────────────────
# STRUCTURAL ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class StructuralError(DsaError):
    """The IR handed to the analysis is not a valid program."""

    default_code = ErrorCodes.MALFORMED_IR


class IRSyntaxError(StructuralError):
    default_code = ErrorCodes.IR_SYNTAX


class MalformedIRError(StructuralError):
    default_code = ErrorCodes.MALFORMED_IR


class UnknownNodeError(StructuralError):
    """An object outside the closed set of IR node kinds."""

    default_code = ErrorCodes.UNKNOWN_NODE

    def __init__(self, node: object, loc: Optional[Loc] = None) -> None:
        super().__init__(f"unknown IR node kind {type(node).__name__}", loc=loc)
        self.node = node


class UndefinedIdentifierError(StructuralError):
    default_code = ErrorCodes.UNDEFINED_IDENTIFIER

    def __init__(self, name: str, scope: str, loc: Optional[Loc] = None) -> None:
        super().__init__(f"identifier '{name}' is not declared in '{scope}'", loc=loc)
        self.name = name
        self.scope = scope


class DuplicateDefinitionError(StructuralError):
    default_code = ErrorCodes.DUPLICATE_DEFINITION

    def __init__(self, name: str, what: str = "function", loc: Optional[Loc] = None) -> None:
        super().__init__(f"{what} '{name}' is already defined", loc=loc)
        self.name = name


class ArityMismatchError(StructuralError):
    default_code = ErrorCodes.ARITY_MISMATCH

    def __init__(
        self,
        name: str,
        what: str,
        expected: int,
        actual: int,
        loc: Optional[Loc] = None,
    ) -> None:
        super().__init__(
            f"'{name}' expects {expected} {what}, got {actual}", loc=loc
        )
        self.name = name
        self.expected = expected
        self.actual = actual


# ───────────────────────────────────────────────────────────────────────────────
# UNSUPPORTED CONSTRUCTS
# ───────────────────────────────────────────────────────────────────────────────

class UnsupportedConstructError(DsaError):
    default_code = ErrorCodes.CALL_GRAPH_CYCLE


class CallGraphCycleError(UnsupportedConstructError):
    """Function resolution cannot terminate because of recursion."""

    default_code = ErrorCodes.CALL_GRAPH_CYCLE

    def __init__(self, involved_functions: AbstractSet[str]) -> None:
        names = ", ".join(sorted(involved_functions))
        super().__init__(f"recursive call graph is not supported: {names}")
        self.involved_functions: FrozenSet[str] = frozenset(involved_functions)


# ───────────────────────────────────────────────────────────────────────────────
# INTERNAL ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class InternalError(DsaError):
    default_code = ErrorCodes.INTERNAL


class TaintInvariantError(InternalError):
    default_code = ErrorCodes.TAINT_INVARIANT

    def __init__(self, variable: str) -> None:
        super().__init__(f"untaintable variable '{variable}' was tainted")
        self.variable = variable
