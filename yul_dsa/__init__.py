"""
yul_dsa: Dynamic State Access analysis for Yul IR
=================================================

A static taint-analysis pass that flags *dynamic state access*: ``sload``
and ``sstore`` calls whose storage address depends on untrusted input,
directly or through control flow.

Pipeline
--------
::

    Program ──► collector ──► inliner ──► taint_analysis ──► checker ──► reporter
                   │
                   ├── builtins       (effect of each EVM builtin)
                   └── memory_model   (memory words as variables)

Core modules
------------
ir
    Closed set of Yul AST node kinds.
ir_reader
    S-expression reader for the IR.
flow_graph
    Arena-backed data-flow graph, scopes and call sites.
builtins
    Builtin effect table and 256-bit constant folding.
memory_model
    Maps memory loads and stores to synthetic word variables.
collector
    Builds per-function scopes and edges in one walk.
inliner
    Embeds callee graphs into callers; detects recursion.
taint_analysis
    Reachability-based taint propagation.
checker
    Turns tainted storage addresses into violations.
reporter
    Terminal and JSON rendering.
analyzer
    The whole pipeline, with a result type separating violations from
    fatal errors.

Quick start
-----------
>>> from yul_dsa import analyze
>>> result = analyze("(function f (params slot) (expr (sstore slot 1)))")
>>> [v.variable_name for v in result.violations]
['slot']
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, Any, Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "DsaError",
        "StructuralError",
        "IRSyntaxError",
        "MalformedIRError",
        "UnknownNodeError",
        "UndefinedIdentifierError",
        "DuplicateDefinitionError",
        "ArityMismatchError",
        "UnsupportedConstructError",
        "CallGraphCycleError",
        "InternalError",
        "TaintInvariantError",
        "ErrorCodes",
    ],
    "ir": [
        "Program",
        "FunctionDefinition",
        "Block",
        "Loc",
    ],
    "ir_reader": [
        "load_program",
        "load_program_file",
    ],
    "flow_graph": [
        "FlowGraph",
        "FlowNode",
        "NodeKind",
        "Scope",
        "CallSite",
        "EmbeddingCounter",
        "MAIN_SCOPE",
    ],
    "builtins": [
        "BuiltinEffect",
    ],
    "memory_model": [
        "MemoryModel",
    ],
    "collector": [
        "FlowCollector",
    ],
    "inliner": [
        "FunctionResolver",
        "Embedding",
    ],
    "taint_analysis": [
        "TaintConfig",
        "TaintPropagator",
        "TaintResult",
    ],
    "checker": [
        "Violation",
        "ViolationChecker",
    ],
    "reporter": [
        "Reporter",
    ],
    "analyzer": [
        "DsaAnalyzer",
        "AnalysisResult",
        "AnalysisStatus",
        "EngineState",
        "analyze",
    ],
}

# ---------------------------------------------------------------------------
# Import helper
# ---------------------------------------------------------------------------

def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    Parameters
    ----------
    module_rel_name:
        Module name relative to this package (e.g. ``"collector"``).
    names:
        Public symbols to re-export.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"yul_dsa: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"yul_dsa.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)

    # Also expose the submodule itself, so both
    #   yul_dsa.collector.FlowCollector  and  yul_dsa.FlowCollector
    # work.
    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

# Clean up loop variables from the module namespace
del _mod, _names

# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def list_submodules() -> List[str]:
    """Return the names of all submodules in the package."""
    return sorted(_CORE_MODULES)


def package_info() -> Dict[str, Any]:
    """Return a dict of metadata about the package, for logging."""
    return {
        "version": __version__,
        "modules": list_submodules(),
        "loaded": [m for m in list_submodules() if f"{__name__}.{m}" in sys.modules],
    }


__all__ += ["list_submodules", "package_info", "__version__"]

# ---------------------------------------------------------------------------
# TYPE_CHECKING block
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .errors import (
        DsaError as DsaError,
        StructuralError as StructuralError,
        IRSyntaxError as IRSyntaxError,
        MalformedIRError as MalformedIRError,
        UnknownNodeError as UnknownNodeError,
        UndefinedIdentifierError as UndefinedIdentifierError,
        DuplicateDefinitionError as DuplicateDefinitionError,
        ArityMismatchError as ArityMismatchError,
        UnsupportedConstructError as UnsupportedConstructError,
        CallGraphCycleError as CallGraphCycleError,
        InternalError as InternalError,
        TaintInvariantError as TaintInvariantError,
        ErrorCodes as ErrorCodes,
    )
    from .ir import (
        Program as Program,
        FunctionDefinition as FunctionDefinition,
        Block as Block,
        Loc as Loc,
    )
    from .ir_reader import (
        load_program as load_program,
        load_program_file as load_program_file,
    )
    from .flow_graph import (
        FlowGraph as FlowGraph,
        FlowNode as FlowNode,
        NodeKind as NodeKind,
        Scope as Scope,
        CallSite as CallSite,
        EmbeddingCounter as EmbeddingCounter,
        MAIN_SCOPE as MAIN_SCOPE,
    )
    from .builtins import BuiltinEffect as BuiltinEffect
    from .memory_model import MemoryModel as MemoryModel
    from .collector import FlowCollector as FlowCollector
    from .inliner import (
        FunctionResolver as FunctionResolver,
        Embedding as Embedding,
    )
    from .taint_analysis import (
        TaintConfig as TaintConfig,
        TaintPropagator as TaintPropagator,
        TaintResult as TaintResult,
    )
    from .checker import (
        Violation as Violation,
        ViolationChecker as ViolationChecker,
    )
    from .reporter import Reporter as Reporter
    from .analyzer import (
        DsaAnalyzer as DsaAnalyzer,
        AnalysisResult as AnalysisResult,
        AnalysisStatus as AnalysisStatus,
        EngineState as EngineState,
        analyze as analyze,
    )
