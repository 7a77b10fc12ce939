# tests/test_inliner.py
"""
Tests for function embedding and recursion detection.
"""

import pytest

from yul_dsa.errors import CallGraphCycleError, InternalError
from yul_dsa.flow_graph import MAIN_SCOPE, EmbeddingCounter
from yul_dsa.inliner import (
    FunctionResolver, resolve_functions, strongly_connected_components,
)
from tests.conftest import (
    MUTUAL_RECURSION_IR, NESTED_CALLS_IR, SELF_RECURSION_IR,
    STORAGE_RETURN_IR, TWO_CALLS_IR, collect_ir, resolve_ir,
)


class TestEmbedding:

    def test_single_call(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        resolver = FunctionResolver(graph)
        (emb,) = resolver.resolve()
        assert emb.index == 0
        assert emb.site.callee == "get_value"
        assert emb.site.resolved
        assert resolver.is_done()

    def test_clone_names(self):
        graph = resolve_ir(STORAGE_RETURN_IR)
        names = graph.scope(MAIN_SCOPE).names()
        assert "get_value#0/foo_1" in names
        assert "get_value#0/vloc__4" in names

    def test_clone_metadata(self):
        graph = resolve_ir(STORAGE_RETURN_IR)
        clone = graph.variable(MAIN_SCOPE, "get_value#0/foo_1")
        orig = graph.variable("get_value", "foo_1")
        assert clone.origin == orig.id
        assert clone.embedding == 0
        assert clone.call_chain == (MAIN_SCOPE, "get_value")
        assert clone.source
        assert graph.original(clone.id) is orig

    def test_return_flows_to_result(self):
        graph = resolve_ir(STORAGE_RETURN_IR)
        ret = graph.variable(MAIN_SCOPE, "get_value#0/vloc__4")
        result = graph.variable(MAIN_SCOPE, "ret_0")
        assert graph.has_edge(ret.id, result.id)

    def test_argument_flows_to_parameter(self):
        graph = resolve_ir(TWO_CALLS_IR)
        (first, second) = graph.scope(MAIN_SCOPE).call_sites
        a0 = graph.variable(MAIN_SCOPE, "double#0/a")
        a1 = graph.variable(MAIN_SCOPE, "double#1/a")
        assert graph.has_edge(first.arguments[0], a0.id)
        assert graph.has_edge(second.arguments[0], a1.id)

    def test_body_block_governed_by_call_block(self):
        graph = resolve_ir(STORAGE_RETURN_IR)
        body = next(
            graph.node(nid) for nid in graph.scope(MAIN_SCOPE).nodes
            if graph.node(nid).name == "get_value#0/get_value:body"
        )
        assert graph.has_edge(graph.scope(MAIN_SCOPE).root_block, body.id)

    def test_local_edges_copied(self):
        graph = resolve_ir(STORAGE_RETURN_IR)
        foo_1 = graph.variable(MAIN_SCOPE, "get_value#0/foo_1")
        vloc = graph.variable(MAIN_SCOPE, "get_value#0/vloc__4")
        assert graph.has_edge(foo_1.id, vloc.id)

    def test_two_calls_are_disjoint(self):
        graph = collect_ir(TWO_CALLS_IR)
        first, second = FunctionResolver(graph).resolve()
        assert first.index != second.index
        assert not (first.nodes & second.nodes)

    def test_callee_scope_left_intact(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        before = list(graph.scope("get_value").nodes)
        FunctionResolver(graph).resolve()
        assert graph.scope("get_value").nodes == before

    def test_embed_twice_is_internal_error(self):
        graph = collect_ir(STORAGE_RETURN_IR)
        resolver = FunctionResolver(graph)
        (site,) = graph.scope(MAIN_SCOPE).call_sites
        resolver.embed(site)
        with pytest.raises(InternalError):
            resolver.embed(site)


class TestNestedCalls:

    def test_callee_resolved_first(self):
        graph = collect_ir(NESTED_CALLS_IR)
        embeddings = FunctionResolver(graph).resolve()
        assert [(e.site.caller, e.site.callee) for e in embeddings] == [
            ("outer", "inner"),
            (MAIN_SCOPE, "outer"),
        ]

    def test_transitive_clone(self):
        graph = resolve_ir(NESTED_CALLS_IR)
        name = "outer#1/inner#0/r"
        clone = graph.variable(MAIN_SCOPE, name)
        assert clone.call_chain == (MAIN_SCOPE, "outer", "inner")
        assert graph.original(clone.id) is graph.variable("inner", "r")
        assert clone.protected

    def test_shared_counter(self):
        counter = EmbeddingCounter(10)
        graph = collect_ir(NESTED_CALLS_IR)
        _, embeddings = resolve_functions(graph, counter)
        assert [e.index for e in embeddings] == [10, 11]
        assert counter.issued == 12

    def test_step_by_step(self):
        graph = collect_ir(NESTED_CALLS_IR)
        resolver = FunctionResolver(graph)
        assert resolver.step()
        assert resolver.step()
        assert not resolver.step()
        assert len(resolver.embeddings) == 2


class TestRecursion:

    def test_mutual_recursion(self):
        graph = collect_ir(MUTUAL_RECURSION_IR)
        with pytest.raises(CallGraphCycleError) as info:
            FunctionResolver(graph).resolve()
        assert info.value.involved_functions == {"f", "g"}

    def test_self_recursion(self):
        graph = collect_ir(SELF_RECURSION_IR)
        with pytest.raises(CallGraphCycleError) as info:
            FunctionResolver(graph).resolve()
        assert info.value.involved_functions == {"walk"}

    def test_error_names_functions(self):
        graph = collect_ir(MUTUAL_RECURSION_IR)
        with pytest.raises(CallGraphCycleError, match="f, g"):
            FunctionResolver(graph).resolve()


class TestStronglyConnectedComponents:

    def test_chain(self):
        comps = strongly_connected_components({"a": {"b"}, "b": {"c"}, "c": set()})
        assert comps == [["c"], ["b"], ["a"]]

    def test_cycle(self):
        comps = strongly_connected_components({"a": {"b"}, "b": {"a"}, "c": {"a"}})
        assert sorted(map(sorted, comps)) == [["a", "b"], ["c"]]
