# tests/test_inference_rules.py
"""
Tests for the individual type rules and the pruning primitives below them.
"""

import pytest

from reiminfer.config import AnalysisConfig, AnalysisMode
from reiminfer.constraint_solver import prune, satisfy_subtype
from reiminfer.errors import DiagnosticKind
from reiminfer.inference_rules import InferenceRules
from reiminfer.program_graph import EdgeKind, NodeKind
from reiminfer.qualifier_store import QualifierStore
from reiminfer.qualifiers import ImmutabilityType
from tests.conftest import (
    add_call,
    add_class,
    add_field,
    add_field_read,
    add_local,
    add_method,
)

M = ImmutabilityType.MUTABLE
P = ImmutabilityType.POLYREAD
R = ImmutabilityType.READONLY


# ── Pruning primitives ───────────────────────────────────────────

class TestPrune:

    def test_subtype_prunes_both_sides(self, graph, store):
        graph.add_node("a", NodeKind.LOCAL_VARIABLE)
        graph.add_node("b", NodeKind.LOCAL_VARIABLE)
        store.seed("a", {P, R})
        store.seed("b", {M, P})
        assert satisfy_subtype(store, graph.node("a"), graph.node("b")) is True
        assert store.types("a") == {P}
        assert store.types("b") == {P}

    def test_unsatisfiable_predicate_empties_sets(self, graph, store):
        graph.add_node("a", NodeKind.LOCAL_VARIABLE)
        prune(store, [graph.node("a")], lambda q: False)
        assert store.types("a") == set()
        assert store.diagnostics

    def test_no_change_returns_false(self, graph, store):
        graph.add_node("a", NodeKind.LOCAL_VARIABLE)
        graph.add_node("b", NodeKind.LOCAL_VARIABLE)
        assert satisfy_subtype(store, graph.node("a"), graph.node("b")) is False


# ── TASSIGN ──────────────────────────────────────────────────────

class TestAssignment:
    """x = y enforces q_y <: q_x."""

    def test_fresh_object_leaves_target_open(self, graph, store, rules):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        y = add_local(graph, m, "m.new", NodeKind.INSTANTIATION)
        assert rules.handle_assignment(x, y) is False
        assert store.types(y) == {M}
        assert store.types(x) == {R, P, M}

    def test_mutable_target_makes_source_mutable(self, graph, store, rules):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        y = add_local(graph, m, "m.y")
        store.force(x, M)
        assert rules.handle_assignment(x, y) is True
        assert store.types(y) == {M}
        assert store.types(x) == {M}

    def test_polyread_target(self, graph, store, rules):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        y = add_local(graph, m, "m.y")
        store.seed(x.id, {P})
        rules.handle_assignment(x, y)
        assert store.types(y) == {M, P}

    def test_missing_operand_is_skipped(self, graph, store, rules):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        assert rules.handle_assignment(x, None) is False
        assert store.diagnostics[-1].kind is DiagnosticKind.MISSING_RULE_OPERAND
        assert rules.fired["TASSIGN"] == 0


# ── TWRITE / TREAD ───────────────────────────────────────────────

@pytest.fixture
def boxes(graph):
    """Box.item, held by Crate.box, held by Depot.crate."""
    obj = add_class(graph, "Object")
    box = add_class(graph, "Box")
    crate = add_class(graph, "Crate")
    depot = add_class(graph, "Depot")
    return {
        "item": add_field(graph, box, "item", type_cls=obj),
        "crate_box": add_field(graph, crate, "box", type_cls=box),
        "depot_crate": add_field(graph, depot, "crate", type_cls=crate),
    }


class TestFieldWrite:
    """x.f = y forces x to mutable."""

    @pytest.mark.parametrize("initial", [{R}, {P}, {R, P, M}, {P, M}])
    def test_receiver_is_forced_mutable(self, graph, store, rules, boxes, initial):
        add_method(graph, "m", params=1)
        this = graph.node("m.this")
        store.seed(this.id, initial)
        rules.handle_field_write(this, boxes["item"], graph.node("m.p0"))
        assert store.types(this) == {M}

    def test_field_receiver_forces_container_closure(self, graph, store, rules, boxes):
        add_method(graph, "m", params=1)
        rules.handle_field_write(boxes["crate_box"], boxes["item"],
                                 graph.node("m.p0"))
        assert store.types(boxes["crate_box"]) == {M}
        assert store.types(boxes["depot_crate"]) == {M}
        assert store.types(boxes["item"]) == {R, P}

    def test_second_application_is_stable(self, graph, rules, boxes):
        add_method(graph, "m", params=1)
        args = (graph.node("m.this"), boxes["item"], graph.node("m.p0"))
        assert rules.handle_field_write(*args) is True
        assert rules.handle_field_write(*args) is False

    def test_missing_receiver_is_skipped(self, graph, store, rules, boxes):
        add_method(graph, "m", params=1)
        assert rules.handle_field_write(None, boxes["item"], graph.node("m.p0")) is False


class TestFieldRead:
    """x = y.f enforces q_y |> q_f <: q_x."""

    def test_readonly_target_keeps_everything(self, graph, store, rules, boxes):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        assert rules.handle_field_read(x, graph.node("m.this"), boxes["item"]) is False
        assert store.types(boxes["item"]) == {R, P}

    def test_mutable_target_makes_field_mutable(self, graph, store, rules, boxes):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        store.force(x, M)
        assert rules.handle_field_read(x, graph.node("m.this"), boxes["crate_box"])
        assert store.types(boxes["crate_box"]) == {M}
        assert store.types(boxes["depot_crate"]) == {M}

    def test_polyread_target_excludes_readonly_field(self, graph, store, rules, boxes):
        m = add_method(graph, "m")
        x = add_local(graph, m, "m.x")
        this = graph.node("m.this")
        store.seed(x.id, {P})
        rules.handle_field_read(x, this, boxes["item"])
        assert store.types(boxes["item"]) == {P}
        assert store.types(this) == {P, M}


# ── Static fields ────────────────────────────────────────────────

class TestStaticFields:

    def test_static_write_marks_method_mutating(self, graph, store, rules):
        registry = add_class(graph, "Registry")
        count = add_field(graph, registry, "count", static=True)
        m = add_method(graph, "Registry.bump", params=1)
        assert rules.handle_static_field_write(count, graph.node("Registry.bump.p0"), m)
        assert store.types(m) == {M}

    def test_static_read_into_mutable_reference(self, graph, store, rules):
        registry = add_class(graph, "Registry")
        inst = add_field(graph, registry, "instance", static=True)
        m = add_method(graph, "Registry.use")
        x = add_local(graph, m, "Registry.use.x")
        store.force(x, M)
        rules.handle_static_field_read(x, inst, m)
        assert store.types(inst) == {M}
        assert store.types(m) == {R, P, M}


# ── TCALL ────────────────────────────────────────────────────────

@pytest.fixture
def getter(graph, boxes):
    """Box.get returns this.item; Main.peek does v = b.get()."""
    box_get = add_method(graph, "Box.get")
    ret = graph.node("Box.get.ret")
    add_field_read(graph, box_get, "Box.get.r", graph.node("Box.get.this"),
                   boxes["item"], ret)
    peek = add_method(graph, "Main.peek", params=1, instance=False, returns=False)
    v = add_local(graph, peek, "Main.peek.v")
    c = add_call(graph, peek, "Main.peek.c1", box_get,
                 receiver=graph.node("Main.peek.p0"), result=v)
    return {"method": box_get, "callsite": c, "v": v, "ret": ret,
            "receiver": graph.node("Main.peek.p0")}


class TestCall:
    """x = y.m(z)."""

    def test_readonly_use_changes_nothing(self, store, rules, getter):
        assert rules.handle_call(getter["v"], getter["callsite"]) is False
        assert rules.fired["TCALL"] == 1

    def test_mutable_result_aliases_internal_state(self, store, rules, getter, boxes):
        store.force(getter["v"], M)
        assert rules.handle_call(getter["v"], getter["callsite"]) is True
        assert store.types(getter["ret"]) == {P}
        assert store.types(boxes["item"]) == {P}
        assert store.types(getter["receiver"]) == {M}

    def test_arguments_flow_into_formals(self, graph, store, rules):
        callee = add_method(graph, "Sink.put", params=1)
        store.force(graph.node("Sink.put.p0"), M)
        caller = add_method(graph, "Main.go", params=1)
        res = add_local(graph, caller, "Main.go.res")
        c = add_call(graph, caller, "Main.go.c1", callee,
                     receiver=graph.node("Main.go.this"),
                     args=[graph.node("Main.go.p0")], result=res)
        rules.handle_call(res, c)
        assert store.types(graph.node("Main.go.c1.a0")) == {M}

    def test_static_call_without_receiver(self, graph, store, rules):
        callee = add_method(graph, "Util.make", instance=False)
        caller = add_method(graph, "Main.go")
        res = add_local(graph, caller, "Main.go.res")
        c = add_call(graph, caller, "Main.go.c1", callee, result=res)
        assert rules.handle_call(res, c) is False
        assert rules.fired["TCALL"] == 1

    def test_missing_receiver_on_instance_call(self, graph, store, rules):
        callee = add_method(graph, "Box.size")
        caller = add_method(graph, "Main.go")
        res = add_local(graph, caller, "Main.go.res")
        c = add_call(graph, caller, "Main.go.c1", callee, result=res)
        assert rules.handle_call(res, c) is False
        assert rules.fired["TCALL"] == 0


class TestOverride:
    """m overrides m': covariant return, contravariant receiver/parameters."""

    @pytest.fixture
    def pair(self, graph):
        base = add_method(graph, "A.get", params=1)
        sub = add_method(graph, "B.get", params=1)
        graph.add_edge(sub, base, EdgeKind.OVERRIDES)
        return base, sub

    def test_return_covariance_converges(self, graph, store, rules, pair):
        base, sub = pair
        store.seed("A.get.ret", {M, P, R})
        assert store.types("B.get.ret") == {R, P}
        rules.handle_override(graph.method_signature(sub))
        assert store.types("A.get.ret") == {R, P}
        assert store.types("B.get.ret") == {R, P}

    def test_mutating_override_makes_base_receiver_mutable(self, graph, store, rules, pair):
        base, sub = pair
        store.force("B.get.this", M)
        store.force("B.get.p0", M)
        assert rules.handle_override(graph.method_signature(sub)) is True
        assert store.types("A.get.this") == {M}
        assert store.types("A.get.p0") == {M}


class TestCallsiteRecheck:

    @pytest.fixture
    def hierarchy(self, graph):
        base = add_method(graph, "A.run", returns=False)
        sub = add_method(graph, "B.run", returns=False)
        graph.add_edge(sub, base, EdgeKind.OVERRIDES)
        main = add_method(graph, "Main.go", params=2, returns=False)
        ca = add_call(graph, main, "Main.go.ca", base,
                      receiver=graph.node("Main.go.p0"))
        cb = add_call(graph, main, "Main.go.cb", sub,
                      receiver=graph.node("Main.go.p1"))
        return {"base": base, "sub": sub, "ca": ca, "cb": cb}

    def test_inference_mode_includes_super_call_sites(self, rules, hierarchy):
        assert rules.callsites_for(hierarchy["sub"]) == [hierarchy["ca"], hierarchy["cb"]]

    def test_points_to_mode_is_exact(self, graph, hierarchy):
        config = AnalysisConfig(log_general=False, mode=AnalysisMode.POINTS_TO)
        rules = InferenceRules(graph, QualifierStore(graph, config), config)
        assert rules.callsites_for(hierarchy["sub"]) == [hierarchy["cb"]]

    def test_mutable_receiver_narrows_callee_receiver(self, graph, store, rules, hierarchy):
        store.force("Main.go.p1", M)
        assert rules.recheck_callsites(hierarchy["sub"]) is True
        assert store.types("B.run.this") == {M}
        assert store.types("Main.go.p0") == {R, P, M}

    def test_readonly_client_of_polyread_method(self, store, rules, getter):
        store.seed("Box.get.this", {P, M})
        assert rules.check_callsite(getter["callsite"]) is False
        assert store.types(getter["receiver"]) == {R, P, M}

    def test_actual_flows_into_formal(self, graph, store, rules):
        callee = add_method(graph, "Sink.put", params=1, returns=False)
        store.force("Sink.put.p0", M)
        caller = add_method(graph, "Main.go", params=1, returns=False)
        c = add_call(graph, caller, "Main.go.c1", callee,
                     receiver=graph.node("Main.go.this"),
                     args=[graph.node("Main.go.p0")])
        assert rules.check_callsite(c) is True
        assert store.types("Main.go.c1.a0") == {M}


class TestUnboundCall:
    """The call site stands in for a value no assignment receives."""

    def test_void_mutator_makes_receiver_mutable(self, graph, store, rules):
        callee = add_method(graph, "Box.clear", returns=False)
        store.force("Box.clear.this", M)
        caller = add_method(graph, "Main.go", params=1, returns=False)
        c = add_call(graph, caller, "Main.go.c1", callee,
                     receiver=graph.node("Main.go.p0"))
        assert rules.handle_unbound_call(c) is True
        assert store.types("Main.go.p0") == {M}
        assert store.types(c) == {R, P, M}
        assert rules.fired["TCALL"] == 1

    def test_mutable_use_of_value(self, graph, store, rules, getter):
        c = add_call(graph, graph.node("Main.peek"), "Main.peek.c2",
                     getter["method"], receiver=getter["receiver"])
        store.force(c, M)
        assert rules.handle_unbound_call(c) is True
        assert store.types(getter["ret"]) == {P}
        assert store.types(getter["receiver"]) == {M}

    def test_chained_receiver_is_the_inner_call(self, graph, store, rules, getter):
        clear = add_method(graph, "Object.clear", returns=False)
        store.force("Object.clear.this", M)
        outer = add_call(graph, graph.node("Main.peek"), "Main.peek.c2",
                         clear, receiver=getter["callsite"])
        assert rules.handle_unbound_call(outer) is True
        assert store.types(getter["callsite"]) == {M}

    def test_static_void_call(self, graph, store, rules):
        callee = add_method(graph, "Util.log", instance=False, returns=False)
        caller = add_method(graph, "Main.go", returns=False)
        c = add_call(graph, caller, "Main.go.c1", callee)
        assert rules.handle_unbound_call(c) is False
        assert rules.fired["TCALL"] == 1
