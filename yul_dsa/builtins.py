"""
yul_dsa.builtins
================

Builtin Effect Resolver for the EVM dialect of Yul.

Given a builtin name and what is known about its operands, :func:`resolve`
answers the questions the collector asks about a builtin application:

* does the result depend on the operands (``taints``) and, when every
  operand is a compile-time constant, what is the folded value;
* is the result untrusted by itself (``source``: storage reads, calldata,
  call results, block environment, ...);
* which operands are storage addresses (``protected_operand_indices``);
* which memory ranges are read into the result or written by the call.

New opcodes only need an entry in :data:`BUILTINS`.  Names that are not in
the table get the conservative default: the output is tainted unless every
operand is a constant, nothing is protected and nothing is folded.

Arithmetic follows the EVM: 256-bit words with wrap-around, division by
zero yields zero, signed operations use two's complement.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Optional,
    Sequence,
    Tuple,
)

from yul_dsa.errors import ArityMismatchError
from yul_dsa.ir import WORD_MASK

__all__ = [
    "BuiltinKind",
    "MemoryAccess",
    "BuiltinSpec",
    "BuiltinEffect",
    "BUILTINS",
    "STORAGE_READ",
    "STORAGE_WRITE",
    "lookup",
    "is_builtin",
    "resolve",
]

STORAGE_READ = "sload"
STORAGE_WRITE = "sstore"

_SIGN_BIT = 1 << 255


# ---------------------------------------------------------------------------
# 256-bit helpers
# ---------------------------------------------------------------------------

def _to_signed(x: int) -> int:
    return x - (1 << 256) if x & _SIGN_BIT else x


def _to_word(x: int) -> int:
    return x & WORD_MASK


def _sdiv(a: int, b: int) -> int:
    if b == 0:
        return 0
    sa, sb = _to_signed(a), _to_signed(b)
    q = abs(sa) // abs(sb)
    return _to_word(-q if (sa < 0) != (sb < 0) else q)


def _smod(a: int, b: int) -> int:
    if b == 0:
        return 0
    sa, sb = _to_signed(a), _to_signed(b)
    r = abs(sa) % abs(sb)
    return _to_word(-r if sa < 0 else r)


def _byte(n: int, x: int) -> int:
    if n >= 32:
        return 0
    return (x >> (248 - n * 8)) & 0xFF


def _sar(shift: int, value: int) -> int:
    signed = _to_signed(value)
    if shift >= 256:
        return WORD_MASK if signed < 0 else 0
    return _to_word(signed >> shift)


def _signextend(b: int, x: int) -> int:
    if b >= 31:
        return x
    sign_bit = 1 << (b * 8 + 7)
    if x & sign_bit:
        return _to_word(x | ((1 << 256) - sign_bit))
    return x & (sign_bit - 1)


_FOLDERS: Dict[str, Callable[..., int]] = {
    "add": lambda a, b: _to_word(a + b),
    "sub": lambda a, b: _to_word(a - b),
    "mul": lambda a, b: _to_word(a * b),
    "div": lambda a, b: 0 if b == 0 else a // b,
    "sdiv": _sdiv,
    "mod": lambda a, b: 0 if b == 0 else a % b,
    "smod": _smod,
    "exp": lambda a, b: pow(a, b, 1 << 256),
    "not": lambda a: WORD_MASK ^ a,
    "lt": lambda a, b: int(a < b),
    "gt": lambda a, b: int(a > b),
    "slt": lambda a, b: int(_to_signed(a) < _to_signed(b)),
    "sgt": lambda a, b: int(_to_signed(a) > _to_signed(b)),
    "eq": lambda a, b: int(a == b),
    "iszero": lambda a: int(a == 0),
    "and": lambda a, b: a & b,
    "or": lambda a, b: a | b,
    "xor": lambda a, b: a ^ b,
    "byte": _byte,
    "shl": lambda s, v: 0 if s >= 256 else _to_word(v << s),
    "shr": lambda s, v: 0 if s >= 256 else v >> s,
    "sar": _sar,
    "addmod": lambda a, b, n: 0 if n == 0 else (a + b) % n,
    "mulmod": lambda a, b, n: 0 if n == 0 else (a * b) % n,
    "signextend": _signextend,
    "memoryguard": lambda size: size,
}


# ---------------------------------------------------------------------------
# Table model
# ---------------------------------------------------------------------------

class BuiltinKind(enum.Enum):
    """How a builtin's output relates to its inputs."""

    PURE = "pure"              # value computed from operands only
    SOURCE = "source"          # value comes from outside the program
    OPAQUE = "opaque"          # trusted, but not foldable (address(), codesize())
    EFFECT = "effect"          # no output


@dataclass(frozen=True)
class MemoryAccess:
    """A memory range touched by a builtin.

    The range starts at operand ``offset_index``.  Its size is either the
    fixed ``width`` or the value of operand ``length_index``.  For writes,
    ``value_index`` names the stored operand; ``None`` means the stored data
    is the application's own value (external data, or a memory copy).
    """

    offset_index: int
    width: Optional[int] = None
    length_index: Optional[int] = None
    value_index: Optional[int] = None


@dataclass(frozen=True)
class BuiltinSpec:
    name: str
    arity: int
    returns: int
    kind: BuiltinKind
    protected: FrozenSet[int] = frozenset()
    memory_reads: Tuple[MemoryAccess, ...] = ()
    memory_writes: Tuple[MemoryAccess, ...] = ()

    @property
    def propagates(self) -> bool:
        """Do operand values flow into the application's value?"""
        return self.kind is not BuiltinKind.OPAQUE


@dataclass(frozen=True)
class BuiltinEffect:
    """Answer of :func:`resolve` for one application."""

    name: str
    taints: bool
    source: bool
    constant_value: Optional[int] = None
    protected_operand_indices: FrozenSet[int] = frozenset()
    memory_reads: Tuple[MemoryAccess, ...] = ()
    memory_writes: Tuple[MemoryAccess, ...] = ()
    known: bool = True


def _pure(name: str, arity: int) -> BuiltinSpec:
    return BuiltinSpec(name, arity, 1, BuiltinKind.PURE)


def _source(name: str, arity: int = 0, **kw) -> BuiltinSpec:
    return BuiltinSpec(name, arity, 1, BuiltinKind.SOURCE, **kw)


def _opaque(name: str, arity: int = 0) -> BuiltinSpec:
    return BuiltinSpec(name, arity, 1, BuiltinKind.OPAQUE)


def _effect(name: str, arity: int, **kw) -> BuiltinSpec:
    return BuiltinSpec(name, arity, 0, BuiltinKind.EFFECT, **kw)


_SPECS = [
    # arithmetic / comparison / bitwise
    *(_pure(n, 2) for n in (
        "add", "sub", "mul", "div", "sdiv", "mod", "smod", "exp",
        "lt", "gt", "slt", "sgt", "eq", "and", "or", "xor",
        "byte", "shl", "shr", "sar", "signextend",
    )),
    _pure("not", 1),
    _pure("iszero", 1),
    _pure("addmod", 3),
    _pure("mulmod", 3),
    _pure("memoryguard", 1),

    # storage
    _source(STORAGE_READ, 1, protected=frozenset({0})),
    _effect(STORAGE_WRITE, 2, protected=frozenset({0})),
    _source("tload", 1),
    _effect("tstore", 2),

    # memory
    BuiltinSpec("mload", 1, 1, BuiltinKind.PURE,
                memory_reads=(MemoryAccess(0, width=32),)),
    _effect("mstore", 2, memory_writes=(MemoryAccess(0, width=32, value_index=1),)),
    _effect("mstore8", 2, memory_writes=(MemoryAccess(0, width=1, value_index=1),)),
    BuiltinSpec("mcopy", 3, 0, BuiltinKind.EFFECT,
                memory_reads=(MemoryAccess(1, length_index=2),),
                memory_writes=(MemoryAccess(0, length_index=2),)),
    _source("msize"),
    BuiltinSpec("keccak256", 2, 1, BuiltinKind.PURE,
                memory_reads=(MemoryAccess(0, length_index=1),)),

    # calldata / returndata / code
    _source("calldataload", 1),
    _source("calldatasize"),
    BuiltinSpec("calldatacopy", 3, 0, BuiltinKind.SOURCE,
                memory_writes=(MemoryAccess(0, length_index=2),)),
    _source("returndatasize"),
    BuiltinSpec("returndatacopy", 3, 0, BuiltinKind.SOURCE,
                memory_writes=(MemoryAccess(0, length_index=2),)),
    _opaque("codesize"),
    BuiltinSpec("codecopy", 3, 0, BuiltinKind.EFFECT,
                memory_writes=(MemoryAccess(0, length_index=2),)),
    _source("extcodesize", 1),
    _source("extcodehash", 1),
    BuiltinSpec("extcodecopy", 4, 0, BuiltinKind.SOURCE,
                memory_writes=(MemoryAccess(1, length_index=3),)),

    # transaction / block environment
    *(_source(n) for n in (
        "caller", "callvalue", "origin", "gasprice", "gas", "selfbalance",
        "coinbase", "timestamp", "number", "difficulty", "prevrandao",
        "gaslimit", "basefee", "blobbasefee",
    )),
    _source("balance", 1),
    _source("blockhash", 1),
    _source("blobhash", 1),
    *(_opaque(n) for n in ("address", "chainid", "pc")),
    _opaque("datasize", 1),
    _opaque("dataoffset", 1),
    _opaque("loadimmutable", 1),
    _opaque("linkersymbol", 1),

    # calls and creation
    _source("call", 7,
            memory_reads=(MemoryAccess(3, length_index=4),),
            memory_writes=(MemoryAccess(5, length_index=6),)),
    _source("callcode", 7,
            memory_reads=(MemoryAccess(3, length_index=4),),
            memory_writes=(MemoryAccess(5, length_index=6),)),
    _source("delegatecall", 6,
            memory_reads=(MemoryAccess(2, length_index=3),),
            memory_writes=(MemoryAccess(4, length_index=5),)),
    _source("staticcall", 6,
            memory_reads=(MemoryAccess(2, length_index=3),),
            memory_writes=(MemoryAccess(4, length_index=5),)),
    _source("create", 3, memory_reads=(MemoryAccess(1, length_index=2),)),
    _source("create2", 4, memory_reads=(MemoryAccess(1, length_index=2),)),

    # control / logging
    *(_effect(f"log{i}", 2 + i) for i in range(5)),
    _effect("return", 2),
    _effect("revert", 2),
    _effect("stop", 0),
    _effect("invalid", 0),
    _effect("selfdestruct", 1),
    _effect("pop", 1),
    _effect("setimmutable", 3),
    _effect("datacopy", 3, memory_writes=(MemoryAccess(0, length_index=2),)),
]

BUILTINS: Dict[str, BuiltinSpec] = {spec.name: spec for spec in _SPECS}


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def lookup(name: str) -> Optional[BuiltinSpec]:
    return BUILTINS.get(name)


def is_builtin(name: str) -> bool:
    return name in BUILTINS


def check_arity(name: str, operand_count: int) -> None:
    """Raise :class:`ArityMismatchError` for a known builtin called wrongly."""
    spec = BUILTINS.get(name)
    if spec is not None and spec.arity != operand_count:
        raise ArityMismatchError(name, "arguments", spec.arity, operand_count)


def resolve(name: str, operands: Sequence[Optional[int]]) -> BuiltinEffect:
    """Effect of applying builtin *name*.

    Parameters
    ----------
    name:
        Builtin name.
    operands:
        The operands' compile-time constant values, ``None`` for operands
        that are not constant.
    """
    all_constant = all(op is not None for op in operands)
    spec = BUILTINS.get(name)

    if spec is None:
        return BuiltinEffect(
            name=name,
            taints=True,
            source=not all_constant,
            known=False,
        )

    check_arity(name, len(operands))

    constant_value: Optional[int] = None
    folder = _FOLDERS.get(name)
    if folder is not None and all_constant and not spec.memory_reads:
        constant_value = folder(*operands)

    return BuiltinEffect(
        name=name,
        taints=spec.propagates and not all_constant,
        source=spec.kind is BuiltinKind.SOURCE,
        constant_value=constant_value,
        protected_operand_indices=spec.protected,
        memory_reads=spec.memory_reads,
        memory_writes=spec.memory_writes,
    )
