"""
yul_dsa/checker.py
══════════════════

Violation checker: after propagation, every ``protected`` variable (the
address operand of an ``sload`` or ``sstore``) that is tainted is a
dynamic state access.

Violations are data.  They are returned in arena order, which follows the
collection order of the program and then the order of embeddings, so the
output of a run is reproducible.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from yul_dsa.flow_graph import FlowGraph, FlowNode
from yul_dsa.ir import Loc
from yul_dsa.taint_analysis import TaintConfig, TaintResult

logger = logging.getLogger(__name__)

__all__ = ["ERROR_ID", "Violation", "ViolationChecker", "check"]

ERROR_ID = "dynamicStateAccess"


@dataclass(frozen=True)
class Violation:
    """
    A protected variable that ended up tainted.

    Attributes
    ----------
    variable_name : Name of the variable as declared, before embedding
    scope_chain   : Scope names from the analysed scope down to the one
                    that declared the variable (``("!!main", "f")``)
    message       : Human-readable description
    embedded_name : Name of the node in the resolved graph (``f#0/x``)
    taint_path    : Original names of the nodes taint flowed through, from
                    a source to the variable
    node_id       : Arena id of the flagged node
    loc           : Location of the declaration, when known
    """
    variable_name: str
    scope_chain: Tuple[str, ...]
    message: str
    embedded_name: str = ""
    taint_path: Tuple[str, ...] = ()
    node_id: int = -1
    loc: Optional[Loc] = None

    @property
    def function(self) -> str:
        """Scope that declared the variable."""
        return self.scope_chain[-1] if self.scope_chain else ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "errorId": ERROR_ID,
            "variable": self.variable_name,
            "scopeChain": list(self.scope_chain),
            "message": self.message,
            "embeddedName": self.embedded_name,
            "taintPath": list(self.taint_path),
        }
        if self.loc is not None and self.loc.line:
            result["file"] = self.loc.file
            result["linenr"] = self.loc.line
            result["column"] = self.loc.col
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        prefix = f"{self.loc}: " if self.loc is not None and self.loc.line else ""
        return f"{prefix}warning: {self.message} [{ERROR_ID}]"


class ViolationChecker:
    """Turns tainted protected variables into :class:`Violation` records."""

    def __init__(self, config: Optional[TaintConfig] = None) -> None:
        self.config = config if config is not None else TaintConfig()

    def check(self, graph: FlowGraph, taint: Optional[TaintResult] = None) -> List[Violation]:
        violations: List[Violation] = []
        for node in graph.protected_variables():
            if not node.tainted:
                continue
            violations.append(self._violation(graph, node, taint))
            logger.debug("violation on %s", node.name)
            if self.config.stop_at_first_violation:
                break
        return violations

    def _violation(
        self,
        graph: FlowGraph,
        node: FlowNode,
        taint: Optional[TaintResult],
    ) -> Violation:
        original = graph.original(node.id)
        chain = node.call_chain
        where = " -> ".join(chain)
        message = (
            f"storage address '{original.name}' in '{chain[-1]}' depends on "
            f"untrusted input"
        )
        if len(chain) > 1:
            message += f" (inlined via {where})"

        path: Tuple[str, ...] = ()
        if taint is not None:
            path = tuple(graph.original(nid).name for nid in taint.path_to(node.id))

        return Violation(
            variable_name=original.name,
            scope_chain=chain,
            message=message,
            embedded_name=node.name,
            taint_path=path,
            node_id=node.id,
            loc=node.loc,
        )


def check(
    graph: FlowGraph,
    taint: Optional[TaintResult] = None,
    config: Optional[TaintConfig] = None,
) -> List[Violation]:
    return ViolationChecker(config).check(graph, taint)
