# tests/test_container_fields.py
"""
Tests for the container-field closure and field-access helpers.
"""

import pytest

from reiminfer.container_fields import (
    accessed_containers,
    container_fields,
    field_behind,
)
from reiminfer.errors import MalformedGraphError
from reiminfer.program_graph import EdgeKind, NodeKind
from tests.conftest import (
    add_class,
    add_field,
    add_field_read,
    add_field_write,
    add_local,
    add_method,
)


class TestClosure:

    def test_unreferenced_class_gives_singleton(self, graph):
        box = add_class(graph, "Box")
        item = add_field(graph, box, "item")
        assert container_fields(graph, item) == {item}

    def test_holder_fields_are_added_transitively(self, graph):
        box = add_class(graph, "Box")
        crate = add_class(graph, "Crate")
        depot = add_class(graph, "Depot")
        item = add_field(graph, box, "item")
        crate_box = add_field(graph, crate, "box", type_cls=box)
        depot_crate = add_field(graph, depot, "crate", type_cls=crate)
        assert container_fields(graph, item) == {item, crate_box, depot_crate}

    def test_public_field_widens_through_subtypes(self, graph):
        base = add_class(graph, "Base")
        derived = add_class(graph, "Derived", supertype=base)
        holder = add_class(graph, "Holder")
        f = add_field(graph, base, "f")
        h = add_field(graph, holder, "d", type_cls=derived)
        assert container_fields(graph, f) == {f, h}

    def test_private_field_does_not_widen(self, graph):
        base = add_class(graph, "Base")
        derived = add_class(graph, "Derived", supertype=base)
        holder = add_class(graph, "Holder")
        f = add_field(graph, base, "f", private=True)
        add_field(graph, holder, "d", type_cls=derived)
        assert container_fields(graph, f) == {f}

    def test_cyclic_containment_terminates(self, graph):
        node_cls = add_class(graph, "Node")
        nxt = add_field(graph, node_cls, "next", type_cls=node_cls)
        assert container_fields(graph, nxt) == {nxt}


class TestFieldAccess:

    def test_field_behind_read(self, graph):
        box = add_class(graph, "Box")
        item = add_field(graph, box, "item")
        m = add_method(graph, "m")
        v = add_local(graph, m, "m.v")
        r = add_field_read(graph, m, "m.r", graph.node("m.this"), item, v)
        assert field_behind(graph, r) is item
        assert field_behind(graph, v) is None

    def test_field_behind_missing_edge_fails_fast(self, graph):
        m = add_method(graph, "m")
        r = add_local(graph, m, "m.r", NodeKind.FIELD_READ)
        with pytest.raises(MalformedGraphError):
            field_behind(graph, r)

    def test_field_behind_ambiguous_write_fails_fast(self, graph):
        box = add_class(graph, "Box")
        item = add_field(graph, box, "item")
        other = add_field(graph, box, "other")
        m = add_method(graph, "m", params=1)
        w = add_field_write(graph, m, "m.w", graph.node("m.this"), item,
                            graph.node("m.p0"))
        graph.add_edge(w, other, EdgeKind.INTERPROCEDURAL_FLOW)
        with pytest.raises(MalformedGraphError, match="expected one"):
            field_behind(graph, w)

    def test_accessed_containers_walks_receiver_chain(self, graph):
        a_cls = add_class(graph, "A")
        b_cls = add_class(graph, "B")
        b = add_field(graph, a_cls, "b", type_cls=b_cls)
        c = add_field(graph, b_cls, "c")
        m = add_method(graph, "m")
        a = add_local(graph, m, "m.a")
        t1 = add_local(graph, m, "m.t1")
        t2 = add_local(graph, m, "m.t2")
        read_b = add_field_read(graph, m, "m.rb", a, b, t1)
        read_c = add_field_read(graph, m, "m.rc", read_b, c, t2)
        assert accessed_containers(graph, read_c) == [c, b, a]
