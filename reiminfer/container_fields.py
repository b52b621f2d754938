"""
reiminfer.container_fields
============================

Container-field closure: the fields that must become mutable together
with a given field.

If a field ``f`` declared in class ``C`` is mutated, every object holding a
``C`` is mutated too, so any field whose declared type is ``C`` must be
mutable as well.  For a non-private ``f`` the holder may be typed as any
subtype of ``C``; a private ``f`` is only reachable through ``C`` itself.
The rule is applied until no new field is added; the class graph is
finite, so this terminates.
"""

from __future__ import annotations

from typing import List, Optional, Set

from reiminfer.program_graph import EdgeKind, GraphNode, NodeKind, ProgramGraph


def container_fields(graph: ProgramGraph, field: GraphNode) -> Set[GraphNode]:
    """Least set containing *field* closed under the containment rule."""
    fields: Set[GraphNode] = {field}
    frontier: List[GraphNode] = [field]
    while frontier:
        containers: Set[GraphNode] = set()
        for f in frontier:
            for cls in graph.predecessors(f, EdgeKind.CONTAINS):
                if cls.kind is not NodeKind.CLASS:
                    continue
                if f.is_private:
                    containers.add(cls)
                else:
                    containers |= graph.subtypes(cls)
        frontier = []
        for cls in sorted(containers):
            for holder in graph.predecessors(cls, EdgeKind.TYPE_OF):
                if holder.kind is NodeKind.INSTANCE_FIELD and holder not in fields:
                    fields.add(holder)
                    frontier.append(holder)
    return fields


def field_behind(graph: ProgramGraph, node: GraphNode) -> Optional[GraphNode]:
    """The field a field-read/write node accesses, or ``None`` for others."""
    if node.kind is NodeKind.FIELD_READ:
        return graph.the_predecessor(node, EdgeKind.INTERPROCEDURAL_FLOW)
    if node.kind is NodeKind.FIELD_WRITE:
        return graph.the_successor(node, EdgeKind.INTERPROCEDURAL_FLOW)
    return None


def accessed_containers(graph: ProgramGraph,
                        field_access: GraphNode) -> List[GraphNode]:
    """References a field-access chain goes through.

    For ``a.b.c`` (the read of ``c``) this returns the field ``c`` plus the
    receivers it is reached through: the field ``b`` and the local ``a``.
    """
    result: List[GraphNode] = []
    seen: Set[str] = set()
    current: Optional[GraphNode] = field_access
    while current is not None and current.id not in seen:
        seen.add(current.id)
        accessed = field_behind(graph, current)
        if accessed is not None:
            result.append(accessed)
            current = graph.first_predecessor(current, EdgeKind.FIELD_ACCESS)
        else:
            result.append(current)
            current = None
    return result


__all__ = ["container_fields", "field_behind", "accessed_containers"]
