"""
reiminfer.program_graph
=========================

In-memory model of the program dependence graph consumed by the
inference engine.

The graph is produced by an external frontend (parsing, call-graph and
points-to construction are out of scope here) and is read-only to the
engine, apart from the transient tags used to mark static-field accesses
for the duration of a run.

Nodes
-----
Every node carries an immutable :class:`NodeKind`.  The kind decides the
node's default qualifier set and which inference rule an edge touching it
selects.  A ``CALL_SITE`` stands for the value of the call.  Structural
kinds (``FIELD_READ``, ``FIELD_WRITE``, ``IDENTITY_PASS``, ``CLASS``) never
carry qualifiers themselves.

Edges
-----
``LOCAL_FLOW``            direct data flow within one method
``INTERPROCEDURAL_FLOW``  flow across field / parameter / return boundaries
``FIELD_ACCESS``          receiver reference -> field read/write node
``IDENTITY_PASSED_TO``    ".this" argument node -> call site
``CONTAINS``              structural containment (class -> field,
                          method -> identity / parameters / return,
                          call site -> parameter-pass nodes)
``PARAMETER_PASS``        actual argument -> callee formal
``OVERRIDES``             sub-method -> super-method
``SUPERTYPE``             sub-class -> super-class
``TYPE_OF``               reference -> its declared class
``INVOKES``               call site -> the method it was resolved to

Public API
----------
    NodeKind          - closed enumeration of node kinds
    EdgeKind          - enumeration of edge kinds
    GraphNode         - a vertex
    GraphEdge         - a directed, kinded edge
    MethodSignature   - derived {identity, return, parameters, overridden} view
    ProgramGraph      - the graph plus the queries the engine needs

Typical usage::

    g = ProgramGraph()
    box = g.add_node("Box", NodeKind.CLASS)
    item = g.add_node("Box.item", NodeKind.INSTANCE_FIELD, name="item")
    g.add_edge(box, item, EdgeKind.CONTAINS)
    print(g.to_dot())
"""

from __future__ import annotations

import enum
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from typing import (
    Deque,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from reiminfer.errors import MalformedGraphError


# ---------------------------------------------------------------------------
# Node kinds
# ---------------------------------------------------------------------------

class NodeKind(enum.Enum):
    """Classification of a program-graph node."""

    LITERAL         = "literal"
    NULL_LITERAL    = "null"
    INSTANTIATION   = "new"
    PARAMETER       = "parameter"
    METHOD_RETURN   = "return"
    IDENTITY        = "this"
    INSTANCE_FIELD  = "field"
    STATIC_FIELD    = "static_field"
    METHOD          = "method"
    CALL_SITE       = "callsite"
    OPERATOR        = "operator"
    ASSIGNMENT      = "assignment"
    LOCAL_VARIABLE  = "local"
    PARAMETER_PASS  = "parameter_pass"
    # structural kinds, never typed
    FIELD_READ      = "field_read"
    FIELD_WRITE     = "field_write"
    IDENTITY_PASS   = "identity_pass"
    CLASS           = "class"

    @property
    def is_field(self) -> bool:
        return self in (NodeKind.INSTANCE_FIELD, NodeKind.STATIC_FIELD)

    @property
    def is_field_access(self) -> bool:
        return self in (NodeKind.FIELD_READ, NodeKind.FIELD_WRITE)


# Kinds whose incoming local flow makes them the written side of a rule.
ASSIGNMENT_LIKE_KINDS = frozenset({
    NodeKind.ASSIGNMENT,
    NodeKind.LOCAL_VARIABLE,
    NodeKind.FIELD_WRITE,
    NodeKind.PARAMETER_PASS,
    NodeKind.METHOD_RETURN,
})


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a program-graph edge."""

    LOCAL_FLOW           = "local_flow"
    INTERPROCEDURAL_FLOW = "interprocedural_flow"
    FIELD_ACCESS         = "field_access"
    IDENTITY_PASSED_TO   = "identity_passed_to"
    CONTAINS             = "contains"
    PARAMETER_PASS       = "parameter_pass"
    OVERRIDES            = "overrides"
    SUPERTYPE            = "supertype"
    TYPE_OF              = "type_of"
    INVOKES              = "invokes"


# Transient tags placed on field accesses that target static fields.
STATIC_FIELD_ASSIGNMENT = "static_field_assignment"
STATIC_FIELD_VALUE = "static_field_value"
STATIC_FIELD_ACCESS = "static_field_access"


# ---------------------------------------------------------------------------
# GraphNode
# ---------------------------------------------------------------------------

class GraphNode:
    """A vertex of the program graph.

    Attributes
    ----------
    id : str
        Unique identifier.
    name : str
        Human-readable name used in logs and reports.
    kind : NodeKind
        Immutable classification.
    tags : set[str]
        Transient tags added by the engine during a run.
    parameter_index : int or None
        Position of a ``PARAMETER`` / ``PARAMETER_PASS`` node.
    is_private : bool
        Visibility of a field (used by container-field closure).
    signature : str
        Method signature, e.g. ``"Point.equals(Object)"``.
    is_primitive : bool
        For ``CLASS`` nodes: a primitive type.
    """

    __slots__ = ("_id", "name", "_kind", "tags", "parameter_index",
                 "is_private", "signature", "is_primitive")

    def __init__(
        self,
        node_id: str,
        kind: NodeKind,
        name: Optional[str] = None,
        parameter_index: Optional[int] = None,
        is_private: bool = False,
        signature: str = "",
        is_primitive: bool = False,
    ) -> None:
        self._id = node_id
        self._kind = kind
        self.name: str = name if name is not None else node_id
        self.tags: Set[str] = set()
        self.parameter_index = parameter_index
        self.is_private = is_private
        self.signature = signature
        self.is_primitive = is_primitive

    @property
    def id(self) -> str:
        return self._id

    @property
    def kind(self) -> NodeKind:
        return self._kind

    def tagged(self, tag: str) -> bool:
        return tag in self.tags

    def __repr__(self) -> str:
        return f"GraphNode({self._id!r}, kind={self._kind.value})"

    def __hash__(self) -> int:
        return hash(self._id)

    def __eq__(self, other) -> bool:
        if isinstance(other, GraphNode):
            return self._id == other._id
        return NotImplemented

    def __lt__(self, other: "GraphNode") -> bool:
        return self._id < other._id


# ---------------------------------------------------------------------------
# GraphEdge
# ---------------------------------------------------------------------------

class GraphEdge:
    """A directed edge ``source -> target`` of a given kind."""

    __slots__ = ("source", "target", "kind")

    def __init__(self, source: GraphNode, target: GraphNode,
                 kind: EdgeKind) -> None:
        self.source = source
        self.target = target
        self.kind = kind

    def __repr__(self) -> str:
        return (f"GraphEdge({self.source.id} -> {self.target.id}, "
                f"{self.kind.value})")

    def __hash__(self) -> int:
        return hash((self.source.id, self.target.id, self.kind))

    def __eq__(self, other) -> bool:
        if isinstance(other, GraphEdge):
            return (self.source.id == other.source.id
                    and self.target.id == other.target.id
                    and self.kind is other.kind)
        return NotImplemented


@dataclass
class MethodSignature:
    """Derived view of a method's typed slots."""
    method: GraphNode
    identity: Optional[GraphNode] = None
    return_value: Optional[GraphNode] = None
    parameters: List[GraphNode] = field(default_factory=list)
    overridden: Optional[GraphNode] = None

    @property
    def is_instance_method(self) -> bool:
        return self.identity is not None

    def parameter_at(self, index: int) -> Optional[GraphNode]:
        for p in self.parameters:
            if p.parameter_index == index:
                return p
        return None


NodeRef = Union[GraphNode, str]


# ---------------------------------------------------------------------------
# ProgramGraph
# ---------------------------------------------------------------------------

class ProgramGraph:
    """A finite directed multigraph over :class:`NodeKind` vertices.

    Attributes
    ----------
    nodes : OrderedDict[str, GraphNode]
        All nodes keyed by id, in insertion order.
    edges : list[GraphEdge]
        All edges.
    """

    def __init__(self) -> None:
        self.nodes: OrderedDict[str, GraphNode] = OrderedDict()
        self.edges: List[GraphEdge] = []
        self._out: Dict[Tuple[str, EdgeKind], List[GraphEdge]] = defaultdict(list)
        self._in: Dict[Tuple[str, EdgeKind], List[GraphEdge]] = defaultdict(list)
        self._by_kind: Dict[NodeKind, List[GraphNode]] = defaultdict(list)

    # ----- construction -----------------------------------------------------

    def add_node(self, node_id: str, kind: NodeKind, **attrs) -> GraphNode:
        """Create and register a node.  Re-adding an id is an error."""
        if node_id in self.nodes:
            raise ValueError(f"duplicate node id {node_id!r}")
        node = GraphNode(node_id, kind, **attrs)
        self.nodes[node_id] = node
        self._by_kind[kind].append(node)
        return node

    def add_edge(self, source: NodeRef, target: NodeRef,
                 kind: EdgeKind) -> GraphEdge:
        src = self.node(source)
        dst = self.node(target)
        edge = GraphEdge(src, dst, kind)
        self.edges.append(edge)
        self._out[(src.id, kind)].append(edge)
        self._in[(dst.id, kind)].append(edge)
        return edge

    def node(self, ref: NodeRef) -> GraphNode:
        if isinstance(ref, GraphNode):
            return ref
        try:
            return self.nodes[ref]
        except KeyError:
            raise MalformedGraphError(f"unknown node {ref!r}", ref) from None

    # ----- basic queries ----------------------------------------------------

    def nodes_of_kind(self, *kinds: NodeKind) -> List[GraphNode]:
        result: List[GraphNode] = []
        for k in kinds:
            result.extend(self._by_kind.get(k, ()))
        return result

    def in_edges(self, node: NodeRef, kind: EdgeKind) -> List[GraphEdge]:
        return list(self._in.get((self.node(node).id, kind), ()))

    def out_edges(self, node: NodeRef, kind: EdgeKind) -> List[GraphEdge]:
        return list(self._out.get((self.node(node).id, kind), ()))

    def predecessors(self, node: NodeRef, kind: EdgeKind) -> List[GraphNode]:
        return [e.source for e in self.in_edges(node, kind)]

    def successors(self, node: NodeRef, kind: EdgeKind) -> List[GraphNode]:
        return [e.target for e in self.out_edges(node, kind)]

    def the_predecessor(self, node: NodeRef, kind: EdgeKind) -> GraphNode:
        """Return the predecessor along *kind*; exactly one is expected.

        Raises
        ------
        MalformedGraphError
            If *node* has no predecessor along *kind*, or several.
        """
        return self._exactly_one(node, kind, self.predecessors(node, kind),
                                 "incoming")

    def the_successor(self, node: NodeRef, kind: EdgeKind) -> GraphNode:
        """Return the successor along *kind*; exactly one is expected."""
        return self._exactly_one(node, kind, self.successors(node, kind),
                                 "outgoing")

    def _exactly_one(self, node: NodeRef, kind: EdgeKind,
                     found: List[GraphNode], direction: str) -> GraphNode:
        if len(found) == 1:
            return found[0]
        n = self.node(node)
        if not found:
            raise MalformedGraphError(
                f"{n.kind.value} node {n.name!r} has no {direction} "
                f"{kind.value} edge", n.id)
        raise MalformedGraphError(
            f"{n.kind.value} node {n.name!r} has {len(found)} {direction} "
            f"{kind.value} edges, expected one", n.id)

    def first_predecessor(self, node: NodeRef,
                          kind: EdgeKind) -> Optional[GraphNode]:
        preds = self.predecessors(node, kind)
        return preds[0] if preds else None

    def first_successor(self, node: NodeRef,
                        kind: EdgeKind) -> Optional[GraphNode]:
        succs = self.successors(node, kind)
        return succs[0] if succs else None

    # ----- containment ------------------------------------------------------

    def parent(self, node: NodeRef) -> Optional[GraphNode]:
        return self.first_predecessor(node, EdgeKind.CONTAINS)

    def children(self, node: NodeRef,
                 *kinds: NodeKind) -> List[GraphNode]:
        kids = self.successors(node, EdgeKind.CONTAINS)
        if kinds:
            kids = [k for k in kids if k.kind in kinds]
        return kids

    def containing_node(self, node: NodeRef,
                        kind: NodeKind) -> Optional[GraphNode]:
        """Walk ``CONTAINS`` upwards to the nearest ancestor of *kind*.

        Never returns *node* itself.
        """
        current = self.parent(node)
        seen: Set[str] = set()
        while current is not None and current.id not in seen:
            if current.kind is kind:
                return current
            seen.add(current.id)
            current = self.parent(current)
        return None

    def containing_method(self, node: NodeRef) -> Optional[GraphNode]:
        return self.containing_node(node, NodeKind.METHOD)

    # ----- types ------------------------------------------------------------

    def type_of(self, node: NodeRef) -> Optional[GraphNode]:
        return self.first_successor(node, EdgeKind.TYPE_OF)

    def subtypes(self, cls: NodeRef) -> Set[GraphNode]:
        """Reflexive-transitive subtypes of *cls* along ``SUPERTYPE``."""
        start = self.node(cls)
        result: Set[GraphNode] = {start}
        queue: Deque[GraphNode] = deque([start])
        while queue:
            current = queue.popleft()
            for sub in self.predecessors(current, EdgeKind.SUPERTYPE):
                if sub not in result:
                    result.add(sub)
                    queue.append(sub)
        return result

    # ----- methods and call sites -------------------------------------------

    def method_signature(self, method: NodeRef) -> MethodSignature:
        m = self.node(method)
        identities = self.children(m, NodeKind.IDENTITY)
        returns = self.children(m, NodeKind.METHOD_RETURN)
        params = sorted(
            self.children(m, NodeKind.PARAMETER),
            key=lambda p: (p.parameter_index is None, p.parameter_index or 0),
        )
        return MethodSignature(
            method=m,
            identity=identities[0] if identities else None,
            return_value=returns[0] if returns else None,
            parameters=params,
            overridden=self.first_successor(m, EdgeKind.OVERRIDES),
        )

    def invoked_method(self, callsite: NodeRef) -> GraphNode:
        """The method a call site was resolved to (exactly one expected)."""
        return self.the_successor(callsite, EdgeKind.INVOKES)

    def callsites_of(self, method: NodeRef) -> List[GraphNode]:
        """Call sites whose resolution targets *method*."""
        return self.predecessors(method, EdgeKind.INVOKES)

    def overriding_methods(self, method: NodeRef) -> List[GraphNode]:
        return self.predecessors(method, EdgeKind.OVERRIDES)

    def receiver_of(self, callsite: NodeRef) -> Optional[GraphNode]:
        """The reference flowing into the call's ".this" argument."""
        identity_pass = self.first_predecessor(
            callsite, EdgeKind.IDENTITY_PASSED_TO)
        if identity_pass is None:
            return None
        return self.first_predecessor(identity_pass, EdgeKind.LOCAL_FLOW)

    def actuals_of(self, callsite: NodeRef) -> List[GraphNode]:
        return self.children(callsite, NodeKind.PARAMETER_PASS)

    def argument_bindings(
        self, callsite: NodeRef, signature: MethodSignature,
    ) -> List[Tuple[GraphNode, GraphNode]]:
        """``(actual, formal)`` pairs of *callsite* bound into *signature*."""
        formals = {p.id for p in signature.parameters}
        pairs: List[Tuple[GraphNode, GraphNode]] = []
        for z in self.actuals_of(callsite):
            for p in self.successors(z, EdgeKind.PARAMETER_PASS):
                if p.id in formals:
                    pairs.append((z, p))
        return pairs

    # ----- iteration / output -----------------------------------------------

    def __iter__(self) -> Iterator[GraphNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, ref) -> bool:
        if isinstance(ref, GraphNode):
            return ref.id in self.nodes
        return ref in self.nodes

    def to_dot(self, title: Optional[str] = None,
               labels: Optional[Dict[str, str]] = None) -> str:
        """Return a Graphviz DOT representation.

        *labels* optionally maps node ids to an extra label line (e.g. the
        inferred qualifier set).
        """
        lines = ["digraph ProgramGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        kind_attrs = {
            NodeKind.CLASS:         'style=filled, fillcolor="#eeeeee", shape=folder',
            NodeKind.METHOD:        'style=filled, fillcolor="#ddeeff"',
            NodeKind.CALL_SITE:     'style=filled, fillcolor="#fff3cd", shape=ellipse',
            NodeKind.INSTANTIATION: 'style=filled, fillcolor="#ccffcc"',
        }
        for n in self.nodes.values():
            attrs = kind_attrs.get(n.kind, "shape=box")
            text = f"{n.name}\\n{n.kind.value}"
            if labels and n.id in labels:
                text += f"\\n{labels[n.id]}"
            escaped = text.replace('"', '\\"')
            lines.append(f'  "{n.id}" [label="{escaped}", {attrs}];')

        edge_attrs = {
            EdgeKind.LOCAL_FLOW: "",
            EdgeKind.INTERPROCEDURAL_FLOW: ", style=dashed",
            EdgeKind.CONTAINS: ", style=dotted, color=gray",
            EdgeKind.INVOKES: ", color=blue",
        }
        for e in self.edges:
            attrs = edge_attrs.get(e.kind, ", color=darkgreen")
            lines.append(
                f'  "{e.source.id}" -> "{e.target.id}" '
                f'[label="{e.kind.value}"{attrs}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ProgramGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"


def iter_field_accesses(graph: ProgramGraph) -> Iterable[GraphNode]:
    return graph.nodes_of_kind(NodeKind.FIELD_READ, NodeKind.FIELD_WRITE)


__all__ = [
    "NodeKind",
    "EdgeKind",
    "GraphNode",
    "GraphEdge",
    "MethodSignature",
    "ProgramGraph",
    "ASSIGNMENT_LIKE_KINDS",
    "STATIC_FIELD_ASSIGNMENT",
    "STATIC_FIELD_VALUE",
    "STATIC_FIELD_ACCESS",
    "iter_field_accesses",
]
