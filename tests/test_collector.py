# tests/test_collector.py
"""
Tests for the scope & flow collector.
"""

import pytest

from yul_dsa.collector import FlowCollector, collect
from yul_dsa.errors import (
    ArityMismatchError, DuplicateDefinitionError, MalformedIRError,
    UndefinedIdentifierError, UnknownNodeError,
)
from yul_dsa.flow_graph import MAIN_SCOPE
from yul_dsa.ir import Identifier, Program, Switch
from yul_dsa.ir_reader import load_program
from tests.conftest import (
    CONSTANT_UNDER_TAINT_IR, GUARDED_IR, NESTED_CALLS_IR, STORAGE_RETURN_IR,
    SWITCH_TAINT_IR, collect_ir,
)


def _blocks(graph, scope, prefix):
    return [
        graph.node(nid) for nid in graph.scope(scope).nodes
        if graph.node(nid).is_block and graph.node(nid).name.startswith(prefix)
    ]


class TestScopes:

    def test_main_and_functions(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        assert list(graph.scopes) == [MAIN_SCOPE, "get_value"]

    def test_root_block(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        scope = graph.scope("get_value")
        root = graph.node(scope.root_block)
        assert root.is_block
        assert root.name == "get_value:body"

    def test_params_and_returns(self):
        graph = collect_ir(SWITCH_TAINT_IR)
        scope = graph.scope("pick")
        assert [graph.node(n).name for n in scope.params] == ["value"]
        assert [graph.node(n).name for n in scope.returns] == ["twixt"]

    def test_return_variables_start_at_zero(self):
        graph = collect_ir("(function f (returns r))")
        assert graph.variable("f", "r").const_value == 0

    def test_forward_reference(self):
        graph = collect_ir(NESTED_CALLS_IR)
        (site,) = graph.scope(MAIN_SCOPE).call_sites
        assert site.callee == "outer"
        assert not site.resolved
        (inner_site,) = graph.scope("outer").call_sites
        assert inner_site.callee == "inner"

    def test_call_site_wiring(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        (site,) = graph.scope(MAIN_SCOPE).call_sites
        assert site.arguments == []
        assert site.results == [graph.variable(MAIN_SCOPE, "ret_0").id]
        assert site.block == graph.scope(MAIN_SCOPE).root_block

    def test_nested_function_is_hoisted(self):
        graph = collect_ir(
            "(function outer (returns r)\n"
            "  (function helper (returns h) (set h 1))\n"
            "  (set r (helper)))"
        )
        assert "outer/helper" in graph.scopes
        (site,) = graph.scope("outer").call_sites
        assert site.callee == "outer/helper"

    def test_sibling_functions_define_same_helper(self):
        graph = collect_ir(
            "(function a (returns r)\n"
            "  (function helper (returns h) (set h 1))\n"
            "  (set r (helper)))\n"
            "(function b (returns r)\n"
            "  (function helper (returns g) (set g 2))\n"
            "  (set r (helper)))"
        )
        assert list(graph.scopes) == [MAIN_SCOPE, "a", "b", "a/helper", "b/helper"]
        assert graph.scope("b").call_sites[0].callee == "b/helper"
        assert graph.scope("b/helper").lookup("g") is not None
        assert graph.scope("a/helper").lookup("g") is None

    def test_nested_function_sees_enclosing_functions(self):
        graph = collect_ir(
            "(function top (returns t) (set t 1))\n"
            "(function a (returns r)\n"
            "  (function helper (returns h) (set h (top)))\n"
            "  (set r (helper)))"
        )
        (site,) = graph.scope("a/helper").call_sites
        assert site.callee == "top"

    def test_nested_function_is_not_visible_outside(self):
        graph = collect_ir(
            "(function a (function helper))\n"
            "(function b (expr (helper)))"
        )
        assert graph.scope("b").call_sites == []

    def test_sibling_blocks_define_same_function(self):
        graph = collect_ir(
            "(block (function f (returns r) (set r 1)) (let x (f)))\n"
            "(block (function f (returns s) (set s 2)) (let y (f)))"
        )
        first, second = graph.scope(MAIN_SCOPE).call_sites
        assert (first.callee, second.callee) == ("f", "f#1")
        assert graph.scope("f#1").lookup("s") is not None

    def test_module_function(self):
        graph = collect(load_program(STORAGE_RETURN_IR))
        assert "get_value" in graph.scopes


class TestNaming:

    def test_sibling_blocks_reuse_name(self):
        graph = collect_ir(
            "(let c (caller))\n"
            "(if c (let x 1))\n"
            "(if c (let x 2))"
        )
        names = graph.scope(MAIN_SCOPE).names()
        assert "x" in names
        assert "x#1" in names

    def test_temporaries(self):
        graph = collect_ir(
            "(function f (params k v)\n"
            "  (expr (sstore (add k 1) v)))"
        )
        names = graph.scope("f").names()
        assert any(n.startswith("lit#") for n in names)
        assert any(n.startswith("expr#") for n in names)

    def test_builtin_result_goes_to_target(self):
        graph = collect_ir("(let s (sload 0))")
        s = graph.variable(MAIN_SCOPE, "s")
        assert s.source
        assert not any(
            n.startswith("expr#") for n in graph.scope(MAIN_SCOPE).names()
        )


class TestEdges:

    def test_copy_edge(self):
        graph = collect_ir("(let a (caller)) (let b a)")
        a = graph.variable(MAIN_SCOPE, "a")
        b = graph.variable(MAIN_SCOPE, "b")
        assert graph.has_edge(a.id, b.id)

    def test_operand_edges(self):
        graph = collect_ir("(let a (caller)) (let b (add a 1))")
        a = graph.variable(MAIN_SCOPE, "a")
        b = graph.variable(MAIN_SCOPE, "b")
        assert graph.has_edge(a.id, b.id)

    def test_constant_operands_add_no_edge(self):
        graph = collect_ir("(let a 3) (let b (add a 4))")
        a = graph.variable(MAIN_SCOPE, "a")
        b = graph.variable(MAIN_SCOPE, "b")
        assert not graph.has_edge(a.id, b.id)

    def test_unknown_builtin_keeps_constant_operand_edges(self):
        graph = collect_ir("(let a 3) (let b (mystery a))")
        a = graph.variable(MAIN_SCOPE, "a")
        b = graph.variable(MAIN_SCOPE, "b")
        assert graph.has_edge(a.id, b.id)

    def test_store_under_branch_depends_on_block(self):
        graph = collect_ir(
            "(function f (params t)\n"
            "  (let one 1)\n"
            "  (let z 0)\n"
            "  (if t (expr (mstore z one))))"
        )
        (blk,) = _blocks(graph, "f", "if#")
        for name in ("memory[0x00]", "memory[*]"):
            word = graph.memory_word(name)
            assert graph.has_edge(blk.id, word.id)
            assert (blk.id, word.id) in graph.scope("f").edges

    def test_opaque_builtin_has_no_operand_edges(self):
        graph = collect_ir('(let a (caller)) (let b (datasize "x"))')
        b = graph.variable(MAIN_SCOPE, "b")
        preds = {graph.node(p).name for p in graph.predecessors(b.id)}
        assert preds == {f"{MAIN_SCOPE}:body"}

    def test_switch_blocks(self):
        graph = collect_ir(SWITCH_TAINT_IR)
        selector = graph.variable("pick", "selector")
        twixt = graph.variable("pick", "twixt")
        dee = graph.variable("pick", "dee")
        (case,) = _blocks(graph, "pick", "case#")
        (default,) = _blocks(graph, "pick", "default#")
        root = graph.scope("pick").root_block
        for blk in (case, default):
            assert graph.has_edge(selector.id, blk.id)
            assert graph.has_edge(root, blk.id)
            assert graph.has_edge(blk.id, twixt.id)
        assert graph.has_edge(dee.id, twixt.id)
        assert not graph.has_edge(case.id, dee.id)

    def test_if_block(self):
        graph = collect_ir(GUARDED_IR)
        flag = graph.variable("guarded", "flag")
        slot = graph.variable("guarded", "slot")
        (blk,) = _blocks(graph, "guarded", "if#")
        assert graph.has_edge(flag.id, blk.id)
        assert graph.has_edge(blk.id, slot.id)

    def test_leave_ties_to_body(self):
        graph = collect_ir("(function f (params c) (if c (leave)))")
        (blk,) = _blocks(graph, "f", "if#")
        assert graph.has_edge(blk.id, graph.scope("f").root_block)

    def test_break_ties_to_loop(self):
        graph = collect_ir(
            "(function g (params n)\n"
            "  (for (init (let i 0)) (lt i n) (post (set i (add i 1)))\n"
            "    (if (eq i 3) (break))))"
        )
        (loop,) = _blocks(graph, "g", "for#")
        (blk,) = _blocks(graph, "g", "if#")
        assert graph.has_edge(blk.id, loop.id)

    def test_loop_body_governed_by_condition(self):
        graph = collect_ir(
            "(function g (params n)\n"
            "  (for (init (let i 0)) (lt i n) (post (set i (add i 1)))\n"
            "    (let j i)))"
        )
        (loop,) = _blocks(graph, "g", "for#")
        i = graph.variable("g", "i")
        j = graph.variable("g", "j")
        assert graph.has_edge(loop.id, j.id)
        assert graph.has_edge(loop.id, i.id)


class TestConstants:

    def test_folding(self):
        graph = collect_ir("(let a 3) (let b (add a 4))")
        assert graph.variable(MAIN_SCOPE, "b").const_value == 7

    def test_conflicting_definitions(self):
        graph = collect_ir(
            "(let a 3)\n"
            "(let c (caller))\n"
            "(if c (set a 4))"
        )
        assert graph.variable(MAIN_SCOPE, "a").const_value is None

    def test_same_value_twice_stays_constant(self):
        graph = collect_ir(CONSTANT_UNDER_TAINT_IR)
        k = graph.variable("fixed", "k")
        assert k.const_value == 3
        assert k.protected
        assert k.untaintable

    def test_constant_storage_address_is_untaintable(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        addr = graph.variable("get_value", "addr")
        assert addr.const_value == 97
        assert addr.protected
        assert addr.untaintable
        assert graph.variable(MAIN_SCOPE, "ret_0").protected

    def test_parameters_are_not_constant(self):
        graph = collect_ir("(function f (params p) (let q (add p 1)))")
        assert graph.variable("f", "q").const_value is None

    def test_protected_non_constant_is_taintable(self):
        graph = collect_ir(GUARDED_IR)
        slot = graph.variable("guarded", "slot")
        assert slot.protected
        assert not slot.untaintable

    def test_string_literal_value(self):
        graph = collect_ir('(let s "a")')
        assert graph.variable(MAIN_SCOPE, "s").const_value == 0x61 << 248


class TestMalformed:

    def test_shadowing(self):
        with pytest.raises(MalformedIRError, match="shadows"):
            collect_ir("(let x 1) (if x (let x 2))")

    def test_undefined_identifier(self):
        with pytest.raises(UndefinedIdentifierError) as info:
            collect_ir("(let y z)")
        assert info.value.name == "z"
        assert info.value.scope == MAIN_SCOPE

    def test_initializer_cannot_see_its_name(self):
        with pytest.raises(UndefinedIdentifierError):
            collect_ir("(let x (add x 1))")

    def test_duplicate_function(self):
        with pytest.raises(DuplicateDefinitionError):
            collect_ir("(function f) (function f)")

    def test_nested_function_reuses_visible_name(self):
        with pytest.raises(DuplicateDefinitionError):
            collect_ir("(function f (function f))")

    def test_block_function_reuses_visible_name(self):
        with pytest.raises(DuplicateDefinitionError):
            collect_ir("(function f) (block (function f))")

    def test_function_named_after_builtin(self):
        with pytest.raises(MalformedIRError):
            collect_ir("(function sload)")

    def test_variable_named_after_function(self):
        with pytest.raises(MalformedIRError):
            collect_ir("(function f) (let f 1)")

    def test_user_call_argument_count(self):
        with pytest.raises(ArityMismatchError):
            collect_ir("(function f (params a)) (expr (f))")

    def test_user_call_return_count(self):
        with pytest.raises(ArityMismatchError):
            collect_ir("(function f) (let x (f))")

    def test_builtin_argument_count(self):
        with pytest.raises(ArityMismatchError):
            collect_ir("(expr (sstore 1))")

    def test_builtin_return_count(self):
        with pytest.raises(ArityMismatchError):
            collect_ir("(let x (sstore 1 2))")

    def test_break_outside_loop(self):
        with pytest.raises(MalformedIRError):
            collect_ir("(break)")

    def test_leave_outside_function(self):
        with pytest.raises(MalformedIRError):
            collect_ir("(leave)")

    def test_expression_statement_must_be_call(self):
        with pytest.raises(MalformedIRError):
            collect_ir("(let x 1) (expr x)")

    def test_switch_without_cases(self):
        program = Program(statements=[Switch(selector=Identifier("x"))])
        with pytest.raises(MalformedIRError):
            FlowCollector().collect(program)

    def test_duplicate_case(self):
        with pytest.raises(MalformedIRError, match="duplicate case"):
            collect_ir("(let s (caller)) (switch s (case 1) (case 1))")

    def test_unknown_statement_node(self):
        with pytest.raises(UnknownNodeError):
            FlowCollector().collect(Program(statements=["not a statement"]))

    def test_not_a_program(self):
        with pytest.raises(UnknownNodeError):
            FlowCollector().collect(["(let x 1)"])
