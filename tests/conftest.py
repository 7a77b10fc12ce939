# tests/conftest.py
"""
Shared IR programs and helpers for the yul_dsa test suite.
"""

from yul_dsa.analyzer import AnalysisResult, DsaAnalyzer
from yul_dsa.collector import FlowCollector
from yul_dsa.flow_graph import FlowGraph
from yul_dsa.inliner import FunctionResolver
from yul_dsa.ir_reader import load_program
from yul_dsa.taint_analysis import TaintConfig


# ── Worked examples ─────────────────────────────────────────────

# A switch selector derived from a parameter taints the switch result
# through the case blocks only.
SWITCH_TAINT_IR = """
(function pick (params value) (returns twixt)
  (let dee 45)
  (let dum (add dee value))
  (let rattle 88)
  (let selector (gt dum 100))
  (switch selector
    (case 0 (set twixt dee))
    (default (set twixt rattle))))
"""

# A storage read flows out of a function into the address of a store.
STORAGE_RETURN_IR = """
(function get_value (returns vloc__4)
  (let addr 97)
  (let foo_0 54)
  (let foo_1 (sload addr))
  (set vloc__4 (add foo_0 foo_1)))
(let ret_0 (get_value))
(let zero 0)
(expr (sstore ret_0 zero))
"""

# Only one byte of the loaded word is influenced by storage, but taint is
# tracked per variable.
MEMORY_MASK_IR = """
(expr (mstore 0 0xAB))
(let from_storage (sload 0))
(expr (mstore 1 from_storage))
(let mem_tainted (mload 0))
(let mem_cleaned (and mem_tainted 0xFF))
(expr (sstore mem_cleaned 0xC0FFEE))
"""


# ── Small programs ──────────────────────────────────────────────

DIRECT_IR = """
(function direct (params key)
  (expr (sstore key 1)))
"""

GUARDED_IR = """
(function guarded (params flag)
  (let slot 0)
  (if flag (set slot 1))
  (expr (sstore slot 5)))
"""

CONSTANT_UNDER_TAINT_IR = """
(function fixed (params p)
  (let k 3)
  (if p (set k 3))
  (expr (sstore k 0)))
"""

CLEAN_IR = """
(function store_const (params v)
  (expr (sstore 0x10 v)))
(let slot 7)
(expr (sstore slot (calldataload 4)))
(expr (store_const (caller)))
"""

LOOP_IR = """
(function fill (params n)
  (for (init (let i 0)) (lt i n) (post (set i (add i 1)))
    (expr (sstore i 0))))
"""

UNKNOWN_OFFSET_IR = """
(function spill (params p)
  (expr (mstore p 5))
  (let v (mload 0x40))
  (expr (sstore v 1)))
"""

TWO_CALLS_IR = """
(function double (params a) (returns b)
  (set b (add a a)))
(let x (double 1))
(let y (double 2))
(expr (sstore x y))
"""

NESTED_CALLS_IR = """
(let out (outer 3))
(expr (sstore out 1))
(function outer (params p) (returns q)
  (set q (inner p)))
(function inner (params r) (returns s)
  (set s (sload r)))
"""

MUTUAL_RECURSION_IR = """
(function f (params x) (returns r)
  (set r (g x)))
(function g (params y) (returns s)
  (set s (f y)))
(let out (f 1))
"""

SELF_RECURSION_IR = """
(function walk (params n) (returns m)
  (set m (walk n)))
(function caller_of_walk (returns z)
  (set z (walk 1)))
"""


# ── Helpers ─────────────────────────────────────────────────────

def collect_ir(text: str) -> FlowGraph:
    """Collect *text* without resolving calls."""
    return FlowCollector().collect(load_program(text))


def resolve_ir(text: str) -> FlowGraph:
    """Collect and fully resolve *text*."""
    graph = collect_ir(text)
    FunctionResolver(graph).resolve()
    return graph


def run_ir(text: str, config: TaintConfig = None) -> AnalysisResult:
    return DsaAnalyzer(config).run(load_program(text))
