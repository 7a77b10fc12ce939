"""
yul_dsa.memory_model
====================

Maps EVM memory accesses onto synthetic variables of the flow graph, so
that values stored with ``mstore`` and read back with ``mload`` flow along
ordinary edges.

Memory is modelled as 32-byte words::

    mstore(0x20, v)       v ──► memory[0x20]
                          v ──► memory[*]

    x := mload(0x30)      memory[0x20] ──┐
                          memory[0x40] ──┼──► x
                          memory[?]    ──┘

Aliasing policy
---------------
* A constant offset and width touch the words ``offset // 32`` through
  ``(offset + width - 1) // 32``.  Each word is one global variable
  ``memory[0x..]``, so overlapping accesses alias.
* A store whose offset (or length) is not a compile-time constant writes
  the single word ``memory[?]``.  Every load with a known range also reads
  ``memory[?]``.
* Every store, known or not, also writes ``memory[*]``; a load whose range
  is unknown reads ``memory[*]`` and therefore sees every store.
* Ranges wider than :data:`MAX_TRACKED_WORDS` words are treated as unknown.
* The offset variable itself flows into the stored words and into the
  loaded value.
* A store made under a block node also gets an edge from that block into
  every word it writes, so a word written inside a branch is control
  dependent on the branch condition like any assigned variable.

Memory words are shared by every scope of a run: they are global nodes and
are never cloned when a function is embedded.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from yul_dsa.flow_graph import FlowGraph, Scope

logger = logging.getLogger(__name__)

__all__ = [
    "WORD_SIZE",
    "MAX_TRACKED_WORDS",
    "UNKNOWN_REGION",
    "ANY_REGION",
    "word_name",
    "MemoryModel",
]

WORD_SIZE = 32
MAX_TRACKED_WORDS = 64

UNKNOWN_REGION = "memory[?]"
ANY_REGION = "memory[*]"


def word_name(index: int) -> str:
    """Name of the synthetic variable for the word at ``index * 32``."""
    return f"memory[{index * WORD_SIZE:#04x}]"


class MemoryModel:
    """Resolves memory ranges to global word variables of *graph*."""

    def __init__(self, graph: FlowGraph) -> None:
        self.graph = graph

    # ----- resolution -------------------------------------------------------

    def resolve(self, offset: Optional[int], width: Optional[int]) -> Tuple[int, ...]:
        """Word variables covering ``[offset, offset + width)``.

        ``None`` for either argument means "not a compile-time constant";
        the result is then the unknown region alone.  A zero width touches
        nothing.
        """
        if offset is None or width is None:
            return (self.graph.global_variable(UNKNOWN_REGION),)
        if width == 0:
            return ()
        first = offset // WORD_SIZE
        last = (offset + width - 1) // WORD_SIZE
        if last - first + 1 > MAX_TRACKED_WORDS:
            logger.debug(
                "memory range %#x+%d spans %d words, treated as unknown",
                offset, width, last - first + 1,
            )
            return (self.graph.global_variable(UNKNOWN_REGION),)
        return tuple(
            self.graph.global_variable(word_name(i)) for i in range(first, last + 1)
        )

    def is_known(self, words: Tuple[int, ...]) -> bool:
        unknown = self.graph.memory_word(UNKNOWN_REGION)
        return not (unknown is not None and words == (unknown.id,))

    # ----- edge emission ----------------------------------------------------

    def store(
        self,
        scope: Scope,
        offset_var: int,
        offset: Optional[int],
        width: Optional[int],
        value_var: int,
        block: Optional[int] = None,
    ) -> List[int]:
        """Record a write of *value_var* to the range; returns the words written.

        *block* is the block node governing the store, if any.
        """
        words = list(self.resolve(offset, width))
        if not words:
            return words
        words.append(self.graph.global_variable(ANY_REGION))
        for word in words:
            self.graph.add_edge(value_var, word, scope)
            if offset_var != value_var:
                self.graph.add_edge(offset_var, word, scope)
            if block is not None:
                self.graph.add_edge(block, word, scope)
        return words

    def load(
        self,
        scope: Scope,
        offset_var: int,
        offset: Optional[int],
        width: Optional[int],
        result_var: int,
    ) -> List[int]:
        """Record a read of the range into *result_var*; returns the words read."""
        words = self.resolve(offset, width)
        if not words:
            return []
        if self.is_known(words):
            read = list(words) + [self.graph.global_variable(UNKNOWN_REGION)]
        else:
            read = [self.graph.global_variable(ANY_REGION)]
        for word in read:
            self.graph.add_edge(word, result_var, scope)
        self.graph.add_edge(offset_var, result_var, scope)
        return read
