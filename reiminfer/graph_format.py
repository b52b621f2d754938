"""
reiminfer/graph_format.py
═════════════════════════

A small line-oriented text format for program graphs.

The real frontend that extracts graphs from source code lives outside this
package.  This format lets graphs be written by hand, kept in test fixtures
and fed to the ``reiminfer`` command line.

Syntax
──────

    # comment
    class Object
    class Box extends Object
    class int primitive
    field Box.item : Object private
    field Registry.instance : Registry static
    node  m_set      : method signature="Box.set(Object)"
    node  m_set.this : this
    node  m_set.p0   : parameter index=0 type=Object
    edge  m_set -> m_set.this : contains

``field`` creates the field node (id ``<class>.<name>``), a ``contains``
edge from its class and a ``type_of`` edge to its type.  ``node`` takes a
kind (``NodeKind`` value or name) and optional attributes: ``name``,
``index``, ``signature``, ``private``, ``primitive`` and ``type``.  Classes
referenced but never declared are created implicitly.

Usage::

    graph = parse_graph(text)
    graph = load_graph("graphs/box.rg")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from parsimonious.exceptions import IncompleteParseError, ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from reiminfer.errors import GraphFormatError
from reiminfer.program_graph import EdgeKind, GraphNode, NodeKind, ProgramGraph

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR
# ═════════════════════════════════════════════════════════════════════════

GRAPH_GRAMMAR = Grammar(r'''
    document        = entry* hspace? comment?
    entry           = blank / statement_line
    blank           = hspace? comment? newline
    statement_line  = hspace? statement hspace? comment? line_end

    statement       = class_decl / field_decl / node_decl / edge_decl

    class_decl      = "class" hs ident extends_clause? primitive_clause?
    extends_clause  = hs "extends" hs ident
    primitive_clause = hs "primitive"

    field_decl      = "field" hs ident colon ident modifiers
    modifiers       = modifier_clause*
    modifier_clause = hs modifier
    modifier        = "private" / "static"

    node_decl       = "node" hs ident colon ident attributes
    attributes      = attr_clause*
    attr_clause     = hs attribute
    attribute       = ident "=" value
    value           = quoted / bare
    quoted          = ~'"[^"\n]*"'
    bare            = ~r'[^\s#"]+'

    edge_decl       = "edge" hs ident arrow ident colon ident

    colon           = hspace? ":" hspace?
    arrow           = hspace? "->" hspace?
    ident           = ~r"[A-Za-z_$][\w$.#\[\]]*"
    comment         = ~r"#[^\n]*"
    hs              = ~r"[ \t]+"
    hspace          = ~r"[ \t]+"
    newline         = ~r"\r?\n"
    line_end        = newline / ~r"\Z"
''')


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — DECLARATIONS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class ClassDecl:
    name: str
    supertype: Optional[str]
    primitive: bool
    line: int


@dataclass
class FieldDecl:
    owner: str
    name: str
    type_name: str
    is_private: bool
    is_static: bool
    line: int


@dataclass
class NodeDecl:
    node_id: str
    kind: str
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    line: int = 0


@dataclass
class EdgeDecl:
    source: str
    target: str
    kind: str
    line: int


Declaration = Union[ClassDecl, FieldDecl, NodeDecl, EdgeDecl]


class GraphDeclarationVisitor(NodeVisitor):
    """Turns the parse tree into a flat list of declarations."""

    grammar = GRAPH_GRAMMAR
    unwrapped_exceptions = (GraphFormatError,)

    def __init__(self, text: str) -> None:
        self._text = text

    def _line(self, node) -> int:
        return self._text.count("\n", 0, node.start) + 1

    def generic_visit(self, node, visited_children):
        if visited_children:
            if len(visited_children) == 1:
                return visited_children[0]
            return visited_children
        return node.text.strip()

    def visit_document(self, node, visited_children):
        entries, _, _ = visited_children
        if not isinstance(entries, list):
            entries = [entries]
        return [e for e in entries
                if isinstance(e, (ClassDecl, FieldDecl, NodeDecl, EdgeDecl))]

    def visit_entry(self, node, visited_children):
        return visited_children[0]

    def visit_blank(self, node, visited_children):
        return None

    def visit_statement_line(self, node, visited_children):
        _, statement, _, _, _ = visited_children
        return statement

    def visit_statement(self, node, visited_children):
        return visited_children[0]

    def visit_ident(self, node, visited_children):
        return node.text

    # ----- class / field ----------------------------------------------------

    def visit_class_decl(self, node, visited_children):
        _, _, name, supertype, primitive = visited_children
        return ClassDecl(name=name, supertype=supertype or None,
                         primitive=bool(primitive), line=self._line(node))

    def visit_extends_clause(self, node, visited_children):
        return visited_children[3]

    def visit_primitive_clause(self, node, visited_children):
        return True

    def visit_field_decl(self, node, visited_children):
        _, _, qualified, _, type_name, modifiers = visited_children
        line = self._line(node)
        owner, dot, name = qualified.rpartition(".")
        if not dot or not owner or not name:
            raise GraphFormatError(
                f"field {qualified!r} must be written as <class>.<name>", line)
        return FieldDecl(owner=owner, name=name, type_name=type_name,
                         is_private="private" in modifiers,
                         is_static="static" in modifiers, line=line)

    def visit_modifiers(self, node, visited_children):
        return list(visited_children)

    def visit_modifier_clause(self, node, visited_children):
        return visited_children[1]

    def visit_modifier(self, node, visited_children):
        return node.text

    # ----- node / edge ------------------------------------------------------

    def visit_node_decl(self, node, visited_children):
        _, _, node_id, _, kind, attributes = visited_children
        return NodeDecl(node_id=node_id, kind=kind, attributes=attributes,
                        line=self._line(node))

    def visit_attributes(self, node, visited_children):
        return list(visited_children)

    def visit_attr_clause(self, node, visited_children):
        return visited_children[1]

    def visit_attribute(self, node, visited_children):
        key, _, value = visited_children
        return (key, value)

    def visit_value(self, node, visited_children):
        return visited_children[0]

    def visit_quoted(self, node, visited_children):
        return node.text[1:-1]

    def visit_bare(self, node, visited_children):
        return node.text

    def visit_edge_decl(self, node, visited_children):
        _, _, source, _, target, _, kind = visited_children
        return EdgeDecl(source=source, target=target, kind=kind,
                        line=self._line(node))


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — GRAPH CONSTRUCTION
# ═════════════════════════════════════════════════════════════════════════

_TRUE = ("true", "yes", "1")


def _node_kind(text: str, line: int) -> NodeKind:
    for kind in NodeKind:
        if text == kind.value or text.upper() == kind.name:
            return kind
    raise GraphFormatError(f"unknown node kind {text!r}", line)


def _edge_kind(text: str, line: int) -> EdgeKind:
    for kind in EdgeKind:
        if text == kind.value or text.upper() == kind.name:
            return kind
    raise GraphFormatError(f"unknown edge kind {text!r}", line)


class _GraphBuilder:

    def __init__(self) -> None:
        self.graph = ProgramGraph()
        self._implicit: Dict[str, GraphNode] = {}

    def ensure_class(self, name: str, line: int) -> GraphNode:
        if name in self.graph:
            cls = self.graph.node(name)
            if cls.kind is not NodeKind.CLASS:
                raise GraphFormatError(
                    f"{name!r} is used as a class but is a {cls.kind.value}", line)
            return cls
        cls = self.graph.add_node(name, NodeKind.CLASS)
        self._implicit[name] = cls
        return cls

    def declare(self, node_id: str, kind: NodeKind, line: int,
                **attrs) -> GraphNode:
        if node_id in self.graph:
            raise GraphFormatError(f"duplicate node id {node_id!r}", line)
        return self.graph.add_node(node_id, kind, **attrs)

    def build(self, declarations: List[Declaration]) -> ProgramGraph:
        classes = [d for d in declarations if isinstance(d, ClassDecl)]
        fields = [d for d in declarations if isinstance(d, FieldDecl)]
        nodes = [d for d in declarations if isinstance(d, NodeDecl)]
        edges = [d for d in declarations if isinstance(d, EdgeDecl)]

        for c in classes:
            self.declare(c.name, NodeKind.CLASS, c.line, is_primitive=c.primitive)
        for c in classes:
            if c.supertype:
                sup = self.ensure_class(c.supertype, c.line)
                self.graph.add_edge(c.name, sup, EdgeKind.SUPERTYPE)
        for f in fields:
            owner = self.ensure_class(f.owner, f.line)
            kind = NodeKind.STATIC_FIELD if f.is_static else NodeKind.INSTANCE_FIELD
            node = self.declare(f"{f.owner}.{f.name}", kind, f.line,
                                name=f.name, is_private=f.is_private)
            self.graph.add_edge(owner, node, EdgeKind.CONTAINS)
            self.graph.add_edge(node, self.ensure_class(f.type_name, f.line),
                                EdgeKind.TYPE_OF)
        for n in nodes:
            self._declare_node(n)
        for e in edges:
            for endpoint in (e.source, e.target):
                if endpoint not in self.graph:
                    raise GraphFormatError(
                        f"edge refers to undeclared node {endpoint!r}", e.line)
            self.graph.add_edge(e.source, e.target, _edge_kind(e.kind, e.line))
        if self._implicit:
            logger.debug("Implicitly declared classes: %s",
                         ", ".join(sorted(self._implicit)))
        return self.graph

    def _declare_node(self, decl: NodeDecl) -> None:
        kind = _node_kind(decl.kind, decl.line)
        attrs: Dict[str, object] = {}
        type_name: Optional[str] = None
        for key, value in decl.attributes:
            if key == "name":
                attrs["name"] = value
            elif key == "index":
                try:
                    attrs["parameter_index"] = int(value)
                except ValueError:
                    raise GraphFormatError(
                        f"index of {decl.node_id!r} must be an integer",
                        decl.line) from None
            elif key == "signature":
                attrs["signature"] = value
            elif key == "private":
                attrs["is_private"] = value.lower() in _TRUE
            elif key == "primitive":
                attrs["is_primitive"] = value.lower() in _TRUE
            elif key == "type":
                type_name = value
            else:
                raise GraphFormatError(
                    f"unknown attribute {key!r} on node {decl.node_id!r}",
                    decl.line)
        node = self.declare(decl.node_id, kind, decl.line, **attrs)
        if type_name is not None:
            self.graph.add_edge(node, self.ensure_class(type_name, decl.line),
                                EdgeKind.TYPE_OF)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — PUBLIC API
# ═════════════════════════════════════════════════════════════════════════

def parse_graph(text: str) -> ProgramGraph:
    """Parse a textual graph description.

    Raises
    ------
    GraphFormatError
        On a syntax error (with line and column) or an inconsistent
        declaration such as a duplicate id or an edge to an unknown node.
    """
    try:
        tree = GRAPH_GRAMMAR.parse(text)
    except IncompleteParseError as exc:
        raise GraphFormatError(
            "unexpected text", exc.line(), exc.column()) from exc
    except ParseError as exc:
        raise GraphFormatError(
            "syntax error", exc.line(), exc.column()) from exc
    visitor = GraphDeclarationVisitor(text)
    declarations = visitor.visit(tree)
    return _GraphBuilder().build(declarations)


def load_graph(path: str) -> ProgramGraph:
    """Read and parse the graph description stored at *path*."""
    with open(path, "r", encoding="utf-8") as fh:
        text = fh.read()
    graph = parse_graph(text)
    logger.debug("Loaded %r from %s", graph, path)
    return graph


__all__ = [
    "GRAPH_GRAMMAR",
    "GraphDeclarationVisitor",
    "parse_graph",
    "load_graph",
]
